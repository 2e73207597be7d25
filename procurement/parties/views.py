from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from django.db.models import ProtectedError
from django.shortcuts import get_object_or_404
from .filters import PartnerFilter
from .models import Partner
from .serializers import PartnerSerializer, SupplierOptionSerializer


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def partner_list_create(request):
    """List partners or create a new partner"""
    if request.method == 'GET':
        filterset = PartnerFilter(request.query_params, queryset=Partner.objects.all())
        serializer = PartnerSerializer(filterset.qs, many=True)
        return Response(serializer.data)
    else:
        serializer = PartnerSerializer(data=request.data)
        if serializer.is_valid():
            serializer.save()
            return Response(serializer.data, status=status.HTTP_201_CREATED)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def partner_detail(request, pk):
    """Retrieve, update or delete a partner"""
    partner = get_object_or_404(Partner, pk=pk)

    if request.method == 'GET':
        serializer = PartnerSerializer(partner)
        return Response(serializer.data)
    elif request.method in ('PUT', 'PATCH'):
        serializer = PartnerSerializer(partner, data=request.data, partial=request.method == 'PATCH')
        if serializer.is_valid():
            serializer.save()
            return Response(serializer.data)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    else:  # DELETE
        try:
            partner.delete()
        except ProtectedError:
            return Response(
                {'error': 'Partner has purchase orders and cannot be deleted; deactivate it instead', 'code': 'PARTNER_IN_USE'},
                status=status.HTTP_409_CONFLICT
            )
        return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def supplier_list(request):
    """Active partners that can receive purchase orders"""
    suppliers = Partner.objects.filter(
        partner_type__in=['supplier', 'both'],
        is_active=True
    ).order_by('name')
    serializer = SupplierOptionSerializer(suppliers, many=True)
    return Response(serializer.data)
