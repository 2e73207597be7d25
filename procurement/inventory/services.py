"""
Inventory movement services.

Stock is the sum of inbound minus outbound movements. ``Product.current_stock``
caches that sum and is updated alongside every movement written here.
At most one movement may exist per (transaction, product); movements
without a transaction are manual adjustments and are not subject to that
rule.
"""
from decimal import Decimal
import logging

from django.db import transaction as db_transaction
from django.db.models import Count, F, Q, Sum, Min
from django.utils import timezone

from procurement.catalog.models import Product
from procurement.core.utils import create_audit_log
from .models import InventoryMovement

logger = logging.getLogger(__name__)

STOCK_TOLERANCE = Decimal('0.01')


class DuplicateMovementError(Exception):
    """A movement for this transaction and product already exists"""

    def __init__(self, transaction_id, product_id, existing_id=None):
        self.transaction_id = transaction_id
        self.product_id = product_id
        self.existing_id = existing_id
        super().__init__(
            f"Inventory movement already recorded for transaction {transaction_id} and product {product_id}"
        )


def _apply_stock_delta(product_id, delta):
    Product.objects.filter(pk=product_id).update(
        current_stock=F('current_stock') + delta,
        updated_at=timezone.now()
    )


def record_movement(product, movement_type, quantity, transaction=None, unit_price=0, note=None, user=None, request=None):
    """
    Write one inventory movement and adjust the product's cached stock.

    Raises DuplicateMovementError when ``transaction`` already has a movement
    for ``product``, ValueError for invalid type or quantity.
    """
    if movement_type not in ('in', 'out'):
        raise ValueError(f"Invalid movement type: {movement_type}")
    quantity = Decimal(str(quantity))
    if quantity <= 0:
        raise ValueError("Quantity must be greater than zero")

    product_id = product.pk if isinstance(product, Product) else product

    with db_transaction.atomic():
        if transaction is not None:
            # Serialize writers for the same product so the existence check holds
            Product.objects.select_for_update().filter(pk=product_id).first()
            existing = InventoryMovement.objects.filter(
                transaction=transaction,
                product_id=product_id
            ).order_by('created_at', 'id').first()
            if existing:
                raise DuplicateMovementError(transaction.pk, product_id, existing.pk)

        movement = InventoryMovement.objects.create(
            transaction=transaction,
            product_id=product_id,
            movement_type=movement_type,
            quantity=quantity,
            unit_price=Decimal(str(unit_price or 0)),
            note=note,
            created_by=user if user is not None and user.is_authenticated else None,
        )
        _apply_stock_delta(product_id, movement.signed_quantity)

    logger.info(f"Recorded {movement_type} movement {movement.id}: product {product_id} x {quantity}")
    create_audit_log(
        request=request,
        user=user,
        action='movement_create',
        model_name='InventoryMovement',
        object_id=movement.id,
        object_reference=transaction.transaction_no if transaction is not None else None,
        changes={
            'product_id': product_id,
            'movement_type': movement_type,
            'quantity': str(quantity),
        }
    )
    return movement


def delete_movement(movement, user=None, request=None):
    """Remove a movement and take its quantity back out of cached stock"""
    with db_transaction.atomic():
        _apply_stock_delta(movement.product_id, -movement.signed_quantity)
        movement_id = movement.id
        changes = {
            'product_id': movement.product_id,
            'movement_type': movement.movement_type,
            'quantity': str(movement.quantity),
            'transaction_id': movement.transaction_id,
        }
        movement.delete()
    create_audit_log(
        request=request,
        user=user,
        action='delete',
        model_name='InventoryMovement',
        object_id=movement_id,
        changes=changes,
    )


def reverse_movements(transaction, user=None):
    """Delete every movement booked for ``transaction``, restoring stock"""
    count = 0
    for movement in InventoryMovement.objects.filter(transaction=transaction):
        delete_movement(movement, user=user)
        count += 1
    return count


def calculate_stock(product):
    """Stock derived from movements: sum of inbound minus outbound"""
    product_id = product.pk if isinstance(product, Product) else product
    totals = InventoryMovement.objects.filter(product_id=product_id).aggregate(
        total_in=Sum('quantity', filter=Q(movement_type='in')),
        total_out=Sum('quantity', filter=Q(movement_type='out')),
    )
    return (totals['total_in'] or Decimal('0')) - (totals['total_out'] or Decimal('0'))


def find_stock_mismatches(products=None):
    """Products whose cached stock differs from the movement total"""
    products = products if products is not None else Product.objects.all().order_by('id')
    mismatches = []
    for product in products:
        calculated = calculate_stock(product)
        if abs(product.current_stock - calculated) > STOCK_TOLERANCE:
            mismatches.append({
                'product_id': product.id,
                'product_code': product.product_code,
                'product_name': product.name,
                'stored_stock': product.current_stock,
                'calculated_stock': calculated,
                'difference': product.current_stock - calculated,
            })
    return mismatches


def sync_product_stock(products=None, dry_run=False):
    """
    Rewrite ``current_stock`` from movements. Returns the list of changed
    products as (product, old, new) tuples.
    """
    products = products if products is not None else Product.objects.all().order_by('id')
    changed = []
    for product in products:
        calculated = calculate_stock(product)
        if product.current_stock == calculated:
            continue
        changed.append((product, product.current_stock, calculated))
        if not dry_run:
            Product.objects.filter(pk=product.pk).update(current_stock=calculated, updated_at=timezone.now())
            create_audit_log(
                action='stock_recalculate',
                model_name='Product',
                object_id=product.id,
                object_name=product.name,
                object_reference=product.product_code,
                changes={'old_stock': str(product.current_stock), 'new_stock': str(calculated)},
            )
    return changed


def _movement_scope(movement_type=None, since=None, until=None):
    queryset = InventoryMovement.objects.filter(transaction__isnull=False)
    if movement_type:
        queryset = queryset.filter(movement_type=movement_type)
    if since is not None:
        queryset = queryset.filter(created_at__gte=since)
    if until is not None:
        queryset = queryset.filter(created_at__lt=until)
    return queryset


def find_duplicate_movements(movement_type=None, since=None, until=None):
    """
    Groups of movements sharing (transaction, product), earliest first.

    Returns a list of dicts with transaction_id, product_id and the ordered
    movement rows.
    """
    scope = _movement_scope(movement_type, since, until)
    groups = scope.values('transaction_id', 'product_id').annotate(
        count=Count('id'),
        first_created=Min('created_at'),
    ).filter(count__gt=1).order_by('first_created')

    result = []
    for group in groups:
        movements = list(
            scope.filter(
                transaction_id=group['transaction_id'],
                product_id=group['product_id']
            ).order_by('created_at', 'id')
        )
        result.append({
            'transaction_id': group['transaction_id'],
            'product_id': group['product_id'],
            'count': group['count'],
            'movements': movements,
        })
    return result


def cleanup_duplicate_movements(movement_type='in', since=None, until=None, dry_run=False, user=None):
    """
    Keep the earliest movement of every duplicate group and delete the rest.

    Cached stock is not touched here; run ``sync_product_stock`` afterwards.
    A failing group is logged and reported, the remaining groups still run.
    """
    report = {
        'groups': [],
        'deleted_count': 0,
        'failed_groups': 0,
        'affected_product_ids': set(),
        'dry_run': dry_run,
    }

    for group in find_duplicate_movements(movement_type=movement_type, since=since, until=until):
        keep, extra = group['movements'][0], group['movements'][1:]
        entry = {
            'transaction_id': group['transaction_id'],
            'product_id': group['product_id'],
            'kept_id': keep.id,
            'deleted_ids': [m.id for m in extra],
            'error': None,
        }
        if not dry_run:
            try:
                with db_transaction.atomic():
                    InventoryMovement.objects.filter(id__in=entry['deleted_ids']).delete()
            except Exception as e:
                logger.error(
                    f"Failed to remove duplicate movements {entry['deleted_ids']} "
                    f"for transaction {group['transaction_id']} product {group['product_id']}: {e}"
                )
                entry['error'] = str(e)
                report['failed_groups'] += 1
                report['groups'].append(entry)
                continue
            create_audit_log(
                user=user,
                action='movement_cleanup',
                model_name='InventoryMovement',
                object_id=keep.id,
                changes={
                    'transaction_id': group['transaction_id'],
                    'product_id': group['product_id'],
                    'deleted_ids': entry['deleted_ids'],
                },
            )
        report['deleted_count'] += len(entry['deleted_ids'])
        report['affected_product_ids'].add(group['product_id'])
        report['groups'].append(entry)

    if report['groups']:
        logger.info(
            f"Duplicate movement cleanup: {len(report['groups'])} groups, "
            f"{report['deleted_count']} rows {'would be ' if dry_run else ''}removed"
        )
    return report
