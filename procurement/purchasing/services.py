"""
Installment services for purchase orders.

An installment is a ``purchase`` transaction whose ``parent_order`` points
at a purchase order. Numbers are assigned while holding a row lock on the
parent order, so concurrent requests for the same order are serialized and
every order sees installment numbers 1..N in creation order.
"""
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
import logging
import time
import uuid

from django.conf import settings
from django.db import transaction as db_transaction
from django.db import IntegrityError, OperationalError, InterfaceError, DatabaseError
from django.db.models import Max, Sum
from django.utils import timezone

from procurement.catalog.models import Product
from procurement.core.errors import describe_database_error, is_retryable_database_error
from procurement.core.utils import create_audit_log
from procurement.inventory.services import record_movement, DuplicateMovementError, reverse_movements
from .models import PurchaseOrder, Transaction, TransactionItem

logger = logging.getLogger(__name__)

ERROR_CODES = (
    'ORDER_NOT_FOUND',
    'INVALID_AMOUNT',
    'AMOUNT_EXCEEDED',
    'TRANSACTION_NOT_FOUND',
    'ALREADY_CONFIRMED',
    'CANNOT_DELETE_CONFIRMED',
    'VALIDATION_FAILED',
    'NETWORK_ERROR',
    'UNKNOWN_ERROR',
)

USER_FIXABLE_CODES = {'INVALID_AMOUNT', 'AMOUNT_EXCEEDED'}
RETRYABLE_CODES = {'NETWORK_ERROR', 'UNKNOWN_ERROR'}

# Statuses whose amounts count against the order total
ALLOCATED_STATUSES = ('draft', 'confirmed', 'completed')

MAX_MEMO_LENGTH = 500

SUMMARY_NOT_STARTED = 'not_started'
SUMMARY_IN_PROGRESS = 'in_progress'
SUMMARY_COMPLETED = 'completed'
SUMMARY_OVER_ALLOCATED = 'over_allocated'

DELIVERY_IN_PROGRESS = 'in_progress'
DELIVERY_AMOUNT_COMPLETE = 'amount_complete'
DELIVERY_FULLY_DELIVERED = 'fully_delivered'


class InstallmentError(Exception):
    """Domain error raised by installment operations"""

    def __init__(self, code, message, details=None):
        super().__init__(message)
        self.code = code if code in ERROR_CODES else 'UNKNOWN_ERROR'
        self.message = message
        self.details = details or {}

    @property
    def is_user_fixable(self):
        return self.code in USER_FIXABLE_CODES

    @property
    def is_retryable(self):
        return self.code in RETRYABLE_CODES

    def to_dict(self):
        return {'error': self.message, 'code': self.code, 'details': self.details}

    def __repr__(self):
        return f"InstallmentError({self.code!r}, {self.message!r})"


def get_config(name):
    """Installment settings with built-in defaults"""
    defaults = {
        'INSTALLMENT_MIN_AMOUNT': Decimal('1'),
        'INSTALLMENT_MAX_COUNT': 50,
        'INSTALLMENT_DEFAULT_DUE_DAYS': 30,
        'INSTALLMENT_MAX_RETRIES': 3,
        'INSTALLMENT_RETRY_DELAY_SECONDS': 1.0,
        'INSTALLMENT_MEMO_TEMPLATE': '第{number}回',
    }
    return getattr(settings, name, defaults[name])


def default_memo(number):
    return get_config('INSTALLMENT_MEMO_TEMPLATE').format(number=number)


def default_due_date(from_date=None):
    from_date = from_date or timezone.localdate()
    return from_date + timedelta(days=get_config('INSTALLMENT_DEFAULT_DUE_DAYS'))


def to_decimal(value, field='amount'):
    """Parse user input into a Decimal, raising INVALID_AMOUNT on garbage"""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, TypeError, ValueError):
        raise InstallmentError('INVALID_AMOUNT', f'{field} must be a number', {'value': str(value)})


def map_database_error(exc):
    """Translate a database exception into an InstallmentError"""
    hint = describe_database_error(exc)
    if isinstance(exc, IntegrityError):
        return InstallmentError('VALIDATION_FAILED', hint, {'database_error': str(exc)})
    if isinstance(exc, (OperationalError, InterfaceError)) or is_retryable_database_error(exc):
        return InstallmentError('NETWORK_ERROR', hint, {'database_error': str(exc)})
    return InstallmentError('UNKNOWN_ERROR', hint, {'database_error': str(exc)})


def generate_order_no(order_date=None):
    """PO + YYMMDD + 3-digit daily sequence, e.g. PO250917020"""
    order_date = order_date or timezone.localdate()
    prefix = f"PO{order_date:%y%m%d}"
    last = PurchaseOrder.objects.filter(
        order_no__startswith=prefix
    ).order_by('-order_no').values_list('order_no', flat=True).first()
    sequence = 1
    if last:
        try:
            sequence = int(last[len(prefix):]) + 1
        except ValueError:
            sequence = PurchaseOrder.objects.filter(order_no__startswith=prefix).count() + 1
    order_no = f"{prefix}{sequence:03d}"
    while PurchaseOrder.objects.filter(order_no=order_no).exists():
        sequence += 1
        order_no = f"{prefix}{sequence:03d}"
    return order_no


def generate_transaction_no(transaction_date=None):
    """Unique slip number independent of the installment number"""
    transaction_date = transaction_date or timezone.localdate()
    transaction_no = f"PT-{transaction_date:%Y%m%d}-{str(uuid.uuid4())[:8].upper()}"
    while Transaction.objects.filter(transaction_no=transaction_no).exists():
        transaction_no = f"PT-{transaction_date:%Y%m%d}-{str(uuid.uuid4())[:8].upper()}"
    return transaction_no


def calculate_remaining_amount(order_total, allocated_total):
    """Remaining amount, never negative"""
    remaining = Decimal(order_total or 0) - Decimal(allocated_total or 0)
    return max(Decimal('0'), remaining)


def calculate_completion_rate(order_total, allocated_total):
    """Allocated share of the order total in percent, one decimal"""
    total = Decimal(order_total or 0)
    if total <= 0:
        return 0.0
    rate = (Decimal(allocated_total or 0) / total * 100).quantize(Decimal('0.1'), rounding=ROUND_HALF_UP)
    return float(rate)


def can_add_installment(order_total, allocated_total, installment_count):
    remaining = calculate_remaining_amount(order_total, allocated_total)
    return (
        remaining >= Decimal(str(get_config('INSTALLMENT_MIN_AMOUNT')))
        and installment_count < get_config('INSTALLMENT_MAX_COUNT')
    )


def with_retry(operation, max_retries=None):
    """
    Run ``operation`` and retry on retryable installment errors.

    Waits ``RETRY_DELAY * attempt`` seconds between attempts. Non-retryable
    errors are raised immediately; the last error is raised when attempts
    run out.
    """
    if max_retries is None:
        max_retries = get_config('INSTALLMENT_MAX_RETRIES')
    delay = get_config('INSTALLMENT_RETRY_DELAY_SECONDS')

    last_error = None
    for attempt in range(1, max_retries + 1):
        try:
            return operation()
        except InstallmentError as e:
            if not e.is_retryable:
                raise
            last_error = e
        except DatabaseError as e:
            last_error = map_database_error(e)
            if not last_error.is_retryable:
                raise last_error from e

        logger.warning(f"Installment operation failed (attempt {attempt}/{max_retries}): {last_error.code} {last_error.message}")
        if attempt < max_retries:
            time.sleep(delay * attempt)

    raise last_error or InstallmentError('UNKNOWN_ERROR', 'Retry attempts exhausted')


def _lock_order(order_id):
    try:
        return PurchaseOrder.objects.select_for_update().get(pk=order_id)
    except PurchaseOrder.DoesNotExist:
        raise InstallmentError('ORDER_NOT_FOUND', 'Purchase order not found', {'order_id': order_id})


def _allocated_total(order, exclude_id=None):
    queryset = order.installments().filter(status__in=ALLOCATED_STATUSES)
    if exclude_id is not None:
        queryset = queryset.exclude(pk=exclude_id)
    return queryset.aggregate(total=Sum('total_amount'))['total'] or Decimal('0.00')


def _validate_amount(amount):
    amount = to_decimal(amount)
    if amount <= 0:
        raise InstallmentError('INVALID_AMOUNT', 'Installment amount must be greater than zero', {'amount': str(amount)})
    min_amount = Decimal(str(get_config('INSTALLMENT_MIN_AMOUNT')))
    if amount < min_amount:
        raise InstallmentError('INVALID_AMOUNT', f'Installment amount must be at least {min_amount}', {'amount': str(amount)})
    return amount.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def _check_allocation(order, amount, exclude_id=None):
    allocated = _allocated_total(order, exclude_id=exclude_id)
    if allocated + amount > order.total_amount:
        raise InstallmentError(
            'AMOUNT_EXCEEDED',
            'Installment total would exceed the order amount',
            {
                'order_total': str(order.total_amount),
                'allocated_total': str(allocated),
                'remaining_amount': str(calculate_remaining_amount(order.total_amount, allocated)),
                'requested_amount': str(amount),
            }
        )
    return allocated


def _build_items(amount, items):
    """
    Normalise ``items`` ({product_id: quantity} or a list of dicts) into rows.

    Unit price is the installment amount spread evenly over the delivered
    quantity, rounded to whole currency units.
    """
    if not items:
        return []
    if isinstance(items, dict):
        items = [{'product': product_id, 'quantity': quantity} for product_id, quantity in items.items()]

    rows = []
    for item in items:
        product = item.get('product') or item.get('product_id')
        if not isinstance(product, Product):
            try:
                product = Product.objects.get(pk=product)
            except (Product.DoesNotExist, ValueError, TypeError):
                raise InstallmentError('VALIDATION_FAILED', f'Product {product} not found', {'product': str(product)})
        quantity = to_decimal(item.get('quantity', 0), field='quantity')
        if quantity <= 0:
            continue
        rows.append({'product': product, 'quantity': quantity, 'unit_price': item.get('unit_price')})

    total_quantity = sum((row['quantity'] for row in rows), Decimal('0'))
    derived_price = Decimal('0')
    if total_quantity > 0:
        derived_price = (amount / total_quantity).quantize(Decimal('1'), rounding=ROUND_HALF_UP)
    for row in rows:
        if row['unit_price'] in (None, ''):
            row['unit_price'] = derived_price
        else:
            row['unit_price'] = to_decimal(row['unit_price'], field='unit_price')
        row['total_amount'] = (row['unit_price'] * row['quantity']).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
    return rows


def _reprice_items(installment, amount):
    """Spread a corrected installment amount over its items again"""
    items = list(installment.items.all())
    total_quantity = sum((item.quantity for item in items), Decimal('0'))
    if total_quantity <= 0:
        return
    unit_price = (amount / total_quantity).quantize(Decimal('1'), rounding=ROUND_HALF_UP)
    for item in items:
        item.unit_price = unit_price
        item.total_amount = (unit_price * item.quantity).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
        item.save(update_fields=['unit_price', 'total_amount'])


def _receive_items(installment, user=None):
    """Book inbound stock for every item of a confirmed installment"""
    created = []
    for item in installment.items.select_related('product'):
        try:
            movement = record_movement(
                product=item.product,
                movement_type='in',
                quantity=item.quantity,
                transaction=installment,
                unit_price=item.unit_price,
                note=f"Installment receipt - {installment.memo or default_memo(installment.installment_no)}",
                user=user,
            )
            created.append(movement)
        except DuplicateMovementError:
            logger.info(f"Stock already received for {installment.transaction_no} / product {item.product_id}")
    return created


def refresh_order_status(order):
    """Derive order status from confirmed installment amounts"""
    if order.status == 'cancelled':
        return order.status
    confirmed = order.get_allocated_amount(statuses=('confirmed', 'completed'))
    if order.total_amount > 0 and confirmed >= order.total_amount:
        new_status = 'completed'
    elif confirmed > 0:
        new_status = 'partial'
    else:
        new_status = 'pending'
    if new_status != order.status:
        order.status = new_status
        order.save(update_fields=['status', 'updated_at'])
    return new_status


def create_installment(order, amount, status='draft', due_date=None, memo=None, items=None, user=None, request=None):
    """
    Record a new installment against ``order``.

    ``order`` may be a PurchaseOrder or its primary key. Returns the created
    Transaction. Raises InstallmentError on validation failures.
    """
    order_id = order.pk if isinstance(order, PurchaseOrder) else order
    if not order_id:
        raise InstallmentError('ORDER_NOT_FOUND', 'Purchase order is required')

    amount = _validate_amount(amount)
    if status not in ('draft', 'confirmed'):
        raise InstallmentError('VALIDATION_FAILED', 'Invalid installment status', {'status': status})
    if memo and len(memo) > MAX_MEMO_LENGTH:
        raise InstallmentError('VALIDATION_FAILED', f'Memo must be {MAX_MEMO_LENGTH} characters or fewer')

    try:
        with db_transaction.atomic():
            order = _lock_order(order_id)
            if order.status == 'cancelled':
                raise InstallmentError('VALIDATION_FAILED', 'Cannot add installments to a cancelled order', {'order_no': order.order_no})

            installments = order.installments()
            installment_count = installments.count()
            if installment_count >= get_config('INSTALLMENT_MAX_COUNT'):
                raise InstallmentError(
                    'VALIDATION_FAILED',
                    f"An order can have at most {get_config('INSTALLMENT_MAX_COUNT')} installments",
                    {'installment_count': installment_count}
                )

            allocated = _check_allocation(order, amount)
            next_no = (installments.aggregate(last=Max('installment_no'))['last'] or 0) + 1

            today = timezone.localdate()
            installment = Transaction.objects.create(
                transaction_no=generate_transaction_no(today),
                transaction_type='purchase',
                partner=order.partner,
                parent_order=order,
                installment_no=next_no,
                delivery_sequence=next_no,
                transaction_date=today,
                due_date=due_date or default_due_date(today),
                status=status,
                total_amount=amount,
                memo=memo or default_memo(next_no),
                created_by=user,
            )

            for row in _build_items(amount, items):
                TransactionItem.objects.create(transaction=installment, **row)

            if status == 'confirmed':
                _receive_items(installment, user=user)
            refresh_order_status(order)
    except DatabaseError as e:
        logger.error(f"Database error creating installment for order {order_id}: {e}")
        raise map_database_error(e) from e

    logger.info(f"Installment #{installment.installment_no} ({installment.transaction_no}) created for {order.order_no}: {amount}")
    create_audit_log(
        request=request,
        user=user,
        action='installment_create',
        model_name='Transaction',
        object_id=installment.id,
        object_name=installment.memo,
        object_reference=order.order_no,
        changes={
            'installment_no': installment.installment_no,
            'amount': str(amount),
            'status': status,
            'allocated_before': str(allocated),
        }
    )
    return installment


def _get_installment(transaction_or_id, lock=False):
    if isinstance(transaction_or_id, Transaction):
        transaction_or_id = transaction_or_id.pk
    queryset = Transaction.objects.select_related('parent_order')
    if lock:
        queryset = queryset.select_for_update()
    try:
        return queryset.get(pk=transaction_or_id, transaction_type='purchase')
    except Transaction.DoesNotExist:
        raise InstallmentError('TRANSACTION_NOT_FOUND', 'Installment not found', {'transaction_id': transaction_or_id})


def confirm_installment(transaction, confirm_amount=None, user=None, request=None):
    """
    Move a draft installment to confirmed, optionally changing its amount.
    Returns a dict describing the change.
    """
    try:
        with db_transaction.atomic():
            installment = _get_installment(transaction)
            order = _lock_order(installment.parent_order_id) if installment.parent_order_id else None
            installment = _get_installment(installment, lock=True)

            if installment.status != 'draft':
                raise InstallmentError(
                    'ALREADY_CONFIRMED',
                    f'Installment is already {installment.status}',
                    {'status': installment.status}
                )

            previous_amount = installment.total_amount
            new_amount = previous_amount
            if confirm_amount not in (None, ''):
                new_amount = _validate_amount(confirm_amount)
                if order is not None:
                    _check_allocation(order, new_amount, exclude_id=installment.pk)

            installment.status = 'confirmed'
            installment.total_amount = new_amount
            installment.save(update_fields=['status', 'total_amount', 'updated_at'])
            if new_amount != previous_amount:
                _reprice_items(installment, new_amount)

            _receive_items(installment, user=user)
            if order is not None:
                refresh_order_status(order)
    except DatabaseError as e:
        logger.error(f"Database error confirming installment {transaction}: {e}")
        raise map_database_error(e) from e

    result = {
        'transaction_id': installment.id,
        'old_status': 'draft',
        'new_status': 'confirmed',
        'previous_amount': previous_amount,
        'confirmed_amount': new_amount,
        'amount_changed': new_amount != previous_amount,
        'order_no': order.order_no if order else None,
    }
    logger.info(f"Installment {installment.transaction_no} confirmed ({new_amount})")
    create_audit_log(
        request=request,
        user=user,
        action='installment_confirm',
        model_name='Transaction',
        object_id=installment.id,
        object_name=installment.memo,
        object_reference=result['order_no'],
        changes={
            'previous_amount': str(previous_amount),
            'confirmed_amount': str(new_amount),
        }
    )
    return result


def delete_installment(transaction, force=False, user=None, request=None):
    """
    Delete an installment. Drafts may always be deleted; confirmed ones only
    with ``force``, which also reverses the stock they booked.
    """
    try:
        with db_transaction.atomic():
            installment = _get_installment(transaction)
            order = _lock_order(installment.parent_order_id) if installment.parent_order_id else None

            if installment.status in ('confirmed', 'completed') and not force:
                raise InstallmentError(
                    'CANNOT_DELETE_CONFIRMED',
                    'Confirmed installments can only be deleted with force',
                    {'status': installment.status}
                )

            result = {
                'deleted_transaction_id': installment.id,
                'deleted_amount': installment.total_amount,
                'installment_no': installment.installment_no,
                'order_no': order.order_no if order else None,
                'deleted_status': installment.status,
                'force_delete_used': bool(force),
            }
            reversed_count = reverse_movements(installment, user=user)
            installment.delete()
            if order is not None:
                refresh_order_status(order)
    except DatabaseError as e:
        logger.error(f"Database error deleting installment {transaction}: {e}")
        raise map_database_error(e) from e

    result['reversed_movements'] = reversed_count
    logger.info(f"Installment #{result['installment_no']} of {result['order_no']} deleted (force={force})")
    create_audit_log(
        request=request,
        user=user,
        action='installment_delete',
        model_name='Transaction',
        object_id=result['deleted_transaction_id'],
        object_reference=result['order_no'],
        changes={
            'installment_no': result['installment_no'],
            'amount': str(result['deleted_amount']),
            'status': result['deleted_status'],
            'force': bool(force),
        }
    )
    return result


def check_numbering(numbers):
    """True when ``numbers`` is exactly 1..N without gaps or repeats"""
    return sorted(numbers) == list(range(1, len(numbers) + 1))


def get_order_installment_summary(order):
    """Totals, progress label and installment list for one order"""
    if not isinstance(order, PurchaseOrder):
        try:
            order = PurchaseOrder.objects.select_related('partner').get(pk=order)
        except PurchaseOrder.DoesNotExist:
            raise InstallmentError('ORDER_NOT_FOUND', 'Purchase order not found', {'order_id': order})

    installments = list(
        order.installments().filter(status__in=ALLOCATED_STATUSES).order_by('installment_no', 'created_at', 'id')
    )
    order_total = order.total_amount
    allocated_total = sum((t.total_amount for t in installments), Decimal('0.00'))
    installment_count = len(installments)

    if allocated_total > order_total:
        status_label = SUMMARY_OVER_ALLOCATED
    elif allocated_total == 0:
        status_label = SUMMARY_NOT_STARTED
    elif allocated_total == order_total:
        status_label = SUMMARY_COMPLETED
    else:
        status_label = SUMMARY_IN_PROGRESS

    numbers = [t.installment_no for t in installments if t.installment_no is not None]
    numbering_ok = len(numbers) == installment_count and check_numbering(numbers)
    integrity_ok = numbering_ok and allocated_total <= order_total

    return {
        'order_id': order.id,
        'order_no': order.order_no,
        'partner_name': order.partner.name if order.partner_id else None,
        'order_total': order_total,
        'allocated_total': allocated_total,
        'remaining_amount': calculate_remaining_amount(order_total, allocated_total),
        'installment_count': installment_count,
        'completion_rate': calculate_completion_rate(order_total, allocated_total),
        'status': status_label,
        'installments': [
            {
                'id': t.id,
                'installment_no': t.installment_no,
                'amount': t.total_amount,
                'status': t.status,
                'transaction_no': t.transaction_no,
                'due_date': t.due_date,
                'memo': t.memo,
                'created_at': t.created_at,
            }
            for t in installments
        ],
        'summary_info': {
            'generated_at': timezone.now(),
            'next_installment_no': (max(numbers) if numbers else 0) + 1,
            'can_add_installment': can_add_installment(order_total, allocated_total, installment_count),
            'integrity_status': 'OK' if integrity_ok else 'ERROR',
        },
    }


def calculate_delivery_status(order):
    """
    Delivery progress of an order.

    ``amount_complete`` means confirmed plus draft amounts cover the order
    total; ``fully_delivered`` additionally requires every ordered product
    to have been delivered in full by confirmed installments.
    """
    installments = order.installments()
    confirmed_amount = installments.filter(
        status__in=('confirmed', 'completed')
    ).aggregate(total=Sum('total_amount'))['total'] or Decimal('0.00')
    draft_amount = installments.filter(
        status='draft'
    ).aggregate(total=Sum('total_amount'))['total'] or Decimal('0.00')

    remaining_amount = order.total_amount - confirmed_amount - draft_amount
    completion_percentage = 0
    if order.total_amount > 0:
        completion_percentage = int((confirmed_amount / order.total_amount * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))

    is_amount_complete = remaining_amount == 0 and confirmed_amount > 0

    delivered = {}
    for row in TransactionItem.objects.filter(
        transaction__in=installments.filter(status__in=('confirmed', 'completed'))
    ).values('product_id').annotate(total=Sum('quantity')):
        delivered[row['product_id']] = row['total'] or Decimal('0')

    items = []
    for item in order.items.select_related('product'):
        delivered_qty = delivered.get(item.product_id, Decimal('0'))
        items.append({
            'product_id': item.product_id,
            'product_name': item.product.name,
            'ordered_quantity': item.quantity,
            'delivered_quantity': delivered_qty,
            'remaining_quantity': max(Decimal('0'), item.quantity - delivered_qty),
        })

    all_items_delivered = bool(items) and all(i['remaining_quantity'] == 0 for i in items)

    if not is_amount_complete:
        status = DELIVERY_IN_PROGRESS
    elif all_items_delivered:
        status = DELIVERY_FULLY_DELIVERED
    else:
        status = DELIVERY_AMOUNT_COMPLETE

    return {
        'order_id': order.id,
        'order_no': order.order_no,
        'status': status,
        'is_amount_complete': is_amount_complete,
        'is_all_items_delivered': is_amount_complete and all_items_delivered,
        'confirmed_amount': confirmed_amount,
        'draft_amount': draft_amount,
        'remaining_amount': remaining_amount,
        'completion_percentage': completion_percentage,
        'items': items,
    }
