from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from django.db import IntegrityError, transaction
from django.db.models import ProtectedError
from django.shortcuts import get_object_or_404
import logging

from procurement.core.utils import create_audit_log
from .filters import ProductFilter
from .models import Product
from .serializers import ProductSerializer

logger = logging.getLogger(__name__)

DUPLICATE_CODE_MESSAGE = 'Product code is already in use. Choose a different code.'


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def product_list_create(request):
    """List products or create a new product"""
    if request.method == 'GET':
        queryset = Product.objects.select_related('main_supplier').order_by('-created_at')
        filterset = ProductFilter(request.query_params, queryset=queryset)
        serializer = ProductSerializer(filterset.qs, many=True)
        return Response(serializer.data)
    else:
        serializer = ProductSerializer(data=request.data)
        if serializer.is_valid():
            try:
                with transaction.atomic():
                    product = serializer.save()
            except IntegrityError:
                # Lost a race with a concurrent insert of the same code
                return Response({'product_code': [DUPLICATE_CODE_MESSAGE]}, status=status.HTTP_400_BAD_REQUEST)
            create_audit_log(
                request=request,
                action='create',
                model_name='Product',
                object_id=product.id,
                object_name=product.name,
                object_reference=product.product_code,
            )
            return Response(serializer.data, status=status.HTTP_201_CREATED)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def product_detail(request, pk):
    """Retrieve, update or delete a product"""
    product = get_object_or_404(Product.objects.select_related('main_supplier'), pk=pk)

    if request.method == 'GET':
        serializer = ProductSerializer(product)
        return Response(serializer.data)
    elif request.method in ('PUT', 'PATCH'):
        serializer = ProductSerializer(product, data=request.data, partial=request.method == 'PATCH')
        if serializer.is_valid():
            try:
                with transaction.atomic():
                    serializer.save()
            except IntegrityError:
                return Response({'product_code': [DUPLICATE_CODE_MESSAGE]}, status=status.HTTP_400_BAD_REQUEST)
            return Response(serializer.data)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    else:  # DELETE
        product_id = product.id
        product_name = product.name
        product_code = product.product_code
        try:
            product.delete()
        except ProtectedError:
            return Response(
                {'error': 'Product is referenced by purchase orders or transactions', 'code': 'PRODUCT_IN_USE'},
                status=status.HTTP_409_CONFLICT
            )
        logger.info(f"Product {product_code} deleted by {request.user.username}")
        create_audit_log(
            request=request,
            action='delete',
            model_name='Product',
            object_id=product_id,
            object_name=product_name,
            object_reference=product_code,
        )
        return Response(status=status.HTTP_204_NO_CONTENT)
