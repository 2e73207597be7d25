from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from django.shortcuts import get_object_or_404

from .models import InventoryMovement
from .serializers import InventoryMovementSerializer
from .services import record_movement, delete_movement, DuplicateMovementError


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def movement_list_create(request):
    """List inventory movements or record a new one"""
    if request.method == 'GET':
        queryset = InventoryMovement.objects.select_related(
            'product', 'transaction', 'transaction__parent_order', 'created_by'
        )

        product = request.query_params.get('product', None)
        movement_type = request.query_params.get('movement_type', None)
        transaction_id = request.query_params.get('transaction', None)
        date_from = request.query_params.get('date_from', None)
        date_to = request.query_params.get('date_to', None)

        if product:
            queryset = queryset.filter(product_id=product)
        if movement_type:
            queryset = queryset.filter(movement_type=movement_type)
        if transaction_id:
            queryset = queryset.filter(transaction_id=transaction_id)
        if date_from:
            queryset = queryset.filter(created_at__date__gte=date_from)
        if date_to:
            queryset = queryset.filter(created_at__date__lte=date_to)

        try:
            limit = int(request.query_params.get('limit', 50))
        except ValueError:
            limit = 50
        queryset = queryset.order_by('-created_at', '-id')[:max(1, min(limit, 500))]
        serializer = InventoryMovementSerializer(queryset, many=True)
        return Response(serializer.data)
    else:
        serializer = InventoryMovementSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
        data = serializer.validated_data
        try:
            movement = record_movement(
                product=data['product'],
                movement_type=data['movement_type'],
                quantity=data['quantity'],
                transaction=data.get('transaction'),
                unit_price=data.get('unit_price') or 0,
                note=data.get('note'),
                user=request.user,
                request=request,
            )
        except DuplicateMovementError as e:
            return Response(
                {'error': str(e), 'code': 'DUPLICATE_MOVEMENT', 'existing_id': e.existing_id},
                status=status.HTTP_409_CONFLICT
            )
        except ValueError as e:
            return Response({'error': str(e), 'code': 'VALIDATION_FAILED'}, status=status.HTTP_400_BAD_REQUEST)
        return Response(InventoryMovementSerializer(movement).data, status=status.HTTP_201_CREATED)


@api_view(['GET', 'DELETE'])
@permission_classes([IsAuthenticated])
def movement_detail(request, pk):
    """Retrieve or delete an inventory movement"""
    movement = get_object_or_404(
        InventoryMovement.objects.select_related('product', 'transaction', 'transaction__parent_order'),
        pk=pk
    )

    if request.method == 'GET':
        serializer = InventoryMovementSerializer(movement)
        return Response(serializer.data)
    else:  # DELETE
        delete_movement(movement, user=request.user, request=request)
        return Response(status=status.HTTP_204_NO_CONTENT)
