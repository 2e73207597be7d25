"""
Repair tools for installment numbering.

Older data could end up with two installments sharing a number, or with
numbers that do not follow creation order. ``resequence_installments``
renumbers an order's installments 1..N by creation time and rewrites the
default memo to match.
"""
import logging
from decimal import Decimal

from django.db import transaction as db_transaction
from django.db import DatabaseError
from django.db.models import Count, DecimalField, F, Q, Sum, Value
from django.db.models.functions import Coalesce

from procurement.core.cache_signals import suspend_cache_signals
from procurement.core.errors import describe_database_error
from procurement.core.utils import create_audit_log
from .models import PurchaseOrder, Transaction
from .services import ALLOCATED_STATUSES, default_memo

logger = logging.getLogger(__name__)

ROW_UNCHANGED = 'unchanged'
ROW_UPDATED = 'updated'
ROW_WOULD_UPDATE = 'would_update'
ROW_FAILED = 'failed'


def select_installments(order, include_drafts=False):
    """Installments that take part in numbering, in creation order"""
    statuses = ['confirmed', 'draft'] if include_drafts else ['confirmed']
    return order.installments().filter(
        status__in=statuses,
        total_amount__gt=0,
    ).order_by('created_at', 'id')


def expected_numbering(order, include_drafts=False):
    """List of (transaction, stored_no, expected_no) in creation order"""
    return [
        (txn, txn.installment_no, index)
        for index, txn in enumerate(select_installments(order, include_drafts=include_drafts), start=1)
    ]


def find_duplicate_installments(order=None):
    """Groups of installments sharing a number within one order"""
    queryset = Transaction.objects.filter(
        transaction_type='purchase',
        parent_order__isnull=False,
        installment_no__isnull=False,
    )
    if order is not None:
        queryset = queryset.filter(parent_order=order)
    return list(
        queryset.values('parent_order_id', 'parent_order__order_no', 'installment_no')
        .annotate(count=Count('id'))
        .filter(count__gt=1)
        .order_by('parent_order_id', 'installment_no')
    )


def find_misnumbered_orders():
    """Orders whose confirmed installments are not numbered 1..N by creation time"""
    order_ids = Transaction.objects.filter(
        transaction_type='purchase',
        parent_order__isnull=False,
        status='confirmed',
    ).values_list('parent_order_id', flat=True).distinct()

    misnumbered = []
    for order in PurchaseOrder.objects.filter(id__in=order_ids).order_by('id'):
        mismatches = [row for row in expected_numbering(order) if row[1] != row[2]]
        if mismatches:
            misnumbered.append({
                'order_id': order.id,
                'order_no': order.order_no,
                'mismatches': [
                    {'transaction_id': txn.id, 'stored_no': stored, 'expected_no': expected}
                    for txn, stored, expected in mismatches
                ],
            })
    return misnumbered


def _update_row(txn, number, memo):
    with db_transaction.atomic():
        Transaction.objects.filter(pk=txn.pk).update(
            installment_no=number,
            delivery_sequence=number,
            memo=memo,
        )


def resequence_installments(order, dry_run=False, include_drafts=False, user=None):
    """
    Renumber an order's installments 1..N by creation time.

    Only confirmed installments with a positive amount are renumbered unless
    ``include_drafts`` is set. Installments left out of the selection whose
    number collides with the new range are moved past it. Each row is
    updated in its own savepoint; a failing row is reported and the rest
    continue.

    Returns a report dict with one entry per row.
    """
    if not isinstance(order, PurchaseOrder):
        order = PurchaseOrder.objects.get(pk=order)

    report = {
        'order_id': order.id,
        'order_no': order.order_no,
        'dry_run': dry_run,
        'include_drafts': include_drafts,
        'rows': [],
        'updated': 0,
        'unchanged': 0,
        'failed': 0,
    }

    with suspend_cache_signals(), db_transaction.atomic():
        order = PurchaseOrder.objects.select_for_update().get(pk=order.pk)
        numbering = expected_numbering(order, include_drafts=include_drafts)
        selected_ids = {txn.pk for txn, _, _ in numbering}

        # Rows outside the selection keep their number unless it falls in 1..N;
        # those are moved to the lowest numbers above N that nothing else holds
        outside = list(order.installments().exclude(pk__in=selected_ids).order_by('created_at', 'id'))
        taken = {
            txn.installment_no for txn in outside
            if txn.installment_no is not None and txn.installment_no > len(numbering)
        }
        displaced = []
        next_free = len(numbering) + 1
        for txn in outside:
            if txn.installment_no is not None and txn.installment_no <= len(numbering):
                while next_free in taken:
                    next_free += 1
                displaced.append((txn, txn.installment_no, next_free))
                taken.add(next_free)

        for txn, stored, expected in numbering + displaced:
            expected_memo = default_memo(expected)
            row = {
                'transaction_id': txn.id,
                'transaction_no': txn.transaction_no,
                'status': txn.status,
                'amount': txn.total_amount,
                'created_at': txn.created_at,
                'stored_no': stored,
                'expected_no': expected,
                'outcome': ROW_UNCHANGED,
                'error': None,
            }
            if stored == expected:
                report['unchanged'] += 1
                report['rows'].append(row)
                continue

            if dry_run:
                row['outcome'] = ROW_WOULD_UPDATE
                report['updated'] += 1
                report['rows'].append(row)
                continue

            try:
                _update_row(txn, expected, expected_memo)
                row['outcome'] = ROW_UPDATED
                report['updated'] += 1
            except DatabaseError as e:
                hint = describe_database_error(e)
                logger.error(f"Failed to renumber {txn.transaction_no} on {order.order_no}: {e} ({hint})")
                row['outcome'] = ROW_FAILED
                row['error'] = f"{e} ({hint})"
                report['failed'] += 1
            report['rows'].append(row)

    if not dry_run and report['updated']:
        logger.info(f"Renumbered {report['updated']} installments on {order.order_no}")
        create_audit_log(
            user=user,
            action='installment_resequence',
            model_name='PurchaseOrder',
            object_id=order.id,
            object_name=order.order_no,
            object_reference=order.order_no,
            changes={
                'include_drafts': include_drafts,
                'rows': [
                    {'transaction_id': r['transaction_id'], 'from': r['stored_no'], 'to': r['expected_no']}
                    for r in report['rows'] if r['outcome'] == ROW_UPDATED
                ],
            },
        )
    return report


def resequence_orders_with_duplicates(dry_run=False, include_drafts=False, user=None):
    """Run ``resequence_installments`` for every order that has duplicate numbers"""
    order_ids = sorted({group['parent_order_id'] for group in find_duplicate_installments()})
    reports = []
    for order in PurchaseOrder.objects.filter(id__in=order_ids).order_by('id'):
        reports.append(resequence_installments(order, dry_run=dry_run, include_drafts=include_drafts, user=user))
    return reports


def find_over_allocated_orders():
    """Open orders whose installments add up to more than the order total"""
    allocated = Coalesce(
        Sum(
            'child_transactions__total_amount',
            filter=Q(
                child_transactions__transaction_type='purchase',
                child_transactions__status__in=ALLOCATED_STATUSES,
            ),
        ),
        Value(Decimal('0.00')),
        output_field=DecimalField(max_digits=14, decimal_places=2),
    )
    return list(
        PurchaseOrder.objects.exclude(status='cancelled')
        .annotate(allocated_total=allocated)
        .filter(allocated_total__gt=F('total_amount'))
        .values('id', 'order_no', 'total_amount', 'allocated_total')
        .order_by('id')
    )
