from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated, IsAdminUser
from django.core.paginator import Paginator
from django.shortcuts import get_object_or_404
import logging

from procurement.core.utils import create_audit_log, parse_bool
from .filters import PurchaseOrderFilter, TransactionFilter
from .models import PurchaseOrder, Transaction
from .repair import resequence_installments
from .serializers import (
    PurchaseOrderSerializer, InstallmentSerializer, InstallmentCreateSerializer,
    InstallmentConfirmSerializer, TransactionSerializer
)
from .services import (
    InstallmentError, create_installment, confirm_installment, delete_installment,
    get_order_installment_summary, calculate_delivery_status, with_retry,
    generate_transaction_no
)

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    'ORDER_NOT_FOUND': status.HTTP_404_NOT_FOUND,
    'TRANSACTION_NOT_FOUND': status.HTTP_404_NOT_FOUND,
    'AMOUNT_EXCEEDED': status.HTTP_409_CONFLICT,
    'NETWORK_ERROR': status.HTTP_503_SERVICE_UNAVAILABLE,
    'UNKNOWN_ERROR': status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def installment_error_response(error):
    """Translate an InstallmentError into an API response"""
    http_status = ERROR_STATUS.get(error.code, status.HTTP_400_BAD_REQUEST)
    if http_status >= 500:
        logger.error(f"Installment operation failed: {error.code} {error.message}")
    return Response(
        {'error': error.message, 'code': error.code, 'details': error.details},
        status=http_status
    )


def _paginate(request, queryset, serializer_class, default_limit=15):
    try:
        page = int(request.query_params.get('page', 1))
        limit = int(request.query_params.get('limit', default_limit))
    except ValueError:
        page, limit = 1, default_limit
    limit = max(1, min(limit, 200))

    paginator = Paginator(queryset, limit)
    page_obj = paginator.get_page(page)
    serializer = serializer_class(page_obj, many=True)
    return Response({
        'results': serializer.data,
        'count': paginator.count,
        'next': page_obj.next_page_number() if page_obj.has_next() else None,
        'previous': page_obj.previous_page_number() if page_obj.has_previous() else None,
        'page': page_obj.number,
        'page_size': limit,
        'total_pages': paginator.num_pages,
    })


# PurchaseOrder views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def purchase_order_list_create(request):
    """List purchase orders or create a new one"""
    if request.method == 'GET':
        queryset = PurchaseOrder.objects.select_related(
            'partner', 'assigned_manager', 'created_by'
        ).prefetch_related('items', 'items__product')
        filterset = PurchaseOrderFilter(request.query_params, queryset=queryset)
        queryset = filterset.qs.order_by('-order_date', '-created_at', '-id')
        return _paginate(request, queryset, PurchaseOrderSerializer)
    else:  # POST
        data = request.data.copy()
        items_data = data.pop('items', [])

        serializer = PurchaseOrderSerializer(
            data=data,
            context={'items_data': items_data, 'request': request}
        )
        if serializer.is_valid():
            order = serializer.save(created_by=request.user)
            return Response(PurchaseOrderSerializer(order).data, status=status.HTTP_201_CREATED)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def purchase_order_detail(request, pk):
    """Retrieve, update or delete a purchase order"""
    order = get_object_or_404(
        PurchaseOrder.objects.select_related('partner', 'assigned_manager').prefetch_related('items', 'items__product'),
        pk=pk
    )

    if request.method == 'GET':
        serializer = PurchaseOrderSerializer(order)
        return Response(serializer.data)
    elif request.method in ('PUT', 'PATCH'):
        data = request.data.copy()
        items_data = data.pop('items', None)
        serializer = PurchaseOrderSerializer(
            order,
            data=data,
            partial=request.method == 'PATCH',
            context={'items_data': items_data, 'request': request}
        )
        if serializer.is_valid():
            serializer.save()
            return Response(serializer.data)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    else:  # DELETE
        if order.installments().filter(status__in=('confirmed', 'completed')).exists():
            return Response(
                {'error': 'Order has confirmed installments and cannot be deleted', 'code': 'CANNOT_DELETE_CONFIRMED'},
                status=status.HTTP_400_BAD_REQUEST
            )
        order_id = order.id
        order_no = order.order_no
        order.delete()
        create_audit_log(
            request=request,
            action='delete',
            model_name='PurchaseOrder',
            object_id=order_id,
            object_name=order_no,
            object_reference=order_no,
        )
        return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def purchase_order_installments(request, pk):
    """List an order's installments or record a new one"""
    order = get_object_or_404(PurchaseOrder, pk=pk)

    if request.method == 'GET':
        installments = order.installments().select_related(
            'partner', 'created_by', 'parent_order'
        ).prefetch_related('items', 'items__product').order_by('installment_no', 'created_at', 'id')
        serializer = InstallmentSerializer(installments, many=True)
        return Response(serializer.data)

    serializer = InstallmentCreateSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    data = serializer.validated_data

    try:
        installment = with_retry(lambda: create_installment(
            order.pk,
            amount=data['amount'],
            status=data.get('status', 'draft'),
            due_date=data.get('due_date'),
            memo=data.get('memo') or None,
            items=data.get('items'),
            user=request.user,
            request=request,
        ))
    except InstallmentError as e:
        return installment_error_response(e)

    return Response(InstallmentSerializer(installment).data, status=status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def purchase_order_summary(request, pk):
    """Installment totals and integrity status for one order"""
    order = get_object_or_404(PurchaseOrder.objects.select_related('partner'), pk=pk)
    return Response(get_order_installment_summary(order))


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def purchase_order_delivery_status(request, pk):
    """Amount and per-product delivery progress for one order"""
    order = get_object_or_404(PurchaseOrder, pk=pk)
    return Response(calculate_delivery_status(order))


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsAdminUser])
def purchase_order_resequence(request, pk):
    """Renumber an order's installments by creation time"""
    order = get_object_or_404(PurchaseOrder, pk=pk)
    dry_run = parse_bool(request.data.get('dry_run', request.query_params.get('dry_run')))
    include_drafts = parse_bool(request.data.get('include_drafts', request.query_params.get('include_drafts')))
    report = resequence_installments(order, dry_run=dry_run, include_drafts=include_drafts, user=request.user)
    return Response(report)


# Transaction views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def transaction_list_create(request):
    """List transactions or create a sale/adjustment slip"""
    if request.method == 'GET':
        queryset = Transaction.objects.select_related('partner', 'parent_order').prefetch_related('items', 'items__product')
        filterset = TransactionFilter(request.query_params, queryset=queryset)
        queryset = filterset.qs.order_by('-created_at', '-id')
        return _paginate(request, queryset, TransactionSerializer, default_limit=50)
    else:
        serializer = TransactionSerializer(data=request.data)
        if serializer.is_valid():
            txn_date = serializer.validated_data.get('transaction_date')
            txn = serializer.save(transaction_no=generate_transaction_no(txn_date), created_by=request.user)
            create_audit_log(
                request=request,
                action='create',
                model_name='Transaction',
                object_id=txn.id,
                object_reference=txn.transaction_no,
                changes={'transaction_type': txn.transaction_type, 'total_amount': str(txn.total_amount)},
            )
            return Response(serializer.data, status=status.HTTP_201_CREATED)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def transaction_detail(request, pk):
    """Retrieve, update or delete a transaction"""
    txn = get_object_or_404(
        Transaction.objects.select_related('partner', 'parent_order').prefetch_related('items', 'items__product'),
        pk=pk
    )

    if request.method == 'GET':
        serializer = TransactionSerializer(txn)
        return Response(serializer.data)
    elif request.method == 'PATCH':
        if txn.parent_order_id and any(k in request.data for k in ('total_amount', 'status')):
            return Response(
                {'error': 'Use the installment endpoints to change amount or status', 'code': 'VALIDATION_FAILED'},
                status=status.HTTP_400_BAD_REQUEST
            )
        serializer = TransactionSerializer(txn, data=request.data, partial=True)
        if serializer.is_valid():
            serializer.save()
            return Response(serializer.data)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    else:  # DELETE
        if txn.transaction_type == 'purchase' and txn.parent_order_id:
            force = parse_bool(request.query_params.get('force', request.data.get('force') if hasattr(request.data, 'get') else None))
            try:
                result = delete_installment(txn, force=force, user=request.user, request=request)
            except InstallmentError as e:
                return installment_error_response(e)
            return Response(result)
        txn_id = txn.id
        txn_no = txn.transaction_no
        txn.delete()
        create_audit_log(
            request=request,
            action='delete',
            model_name='Transaction',
            object_id=txn_id,
            object_reference=txn_no,
        )
        return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def transaction_confirm(request, pk):
    """Confirm a draft installment, optionally with a corrected amount"""
    serializer = InstallmentConfirmSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    try:
        result = confirm_installment(
            pk,
            confirm_amount=serializer.validated_data.get('confirm_amount'),
            user=request.user,
            request=request,
        )
    except InstallmentError as e:
        return installment_error_response(e)
    installment = Transaction.objects.get(pk=pk)
    result['installment'] = InstallmentSerializer(installment).data
    return Response(result)
