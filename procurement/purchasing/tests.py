"""
Test suite for the Purchasing module
Tests: installment creation/confirmation/deletion rules, summaries, delivery
status, renumbering repairs, management commands and API endpoints
"""
from datetime import timedelta
from decimal import Decimal
from io import StringIO

from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import IntegrityError, OperationalError, ProgrammingError
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework import status

from procurement.core.models import AuditLog
from procurement.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from procurement.catalog.models import Product
from procurement.inventory.models import InventoryMovement
from procurement.purchasing.models import PurchaseOrder, Transaction
from procurement.purchasing.repair import (
    resequence_installments, resequence_orders_with_duplicates, find_duplicate_installments,
    find_misnumbered_orders, find_over_allocated_orders,
    ROW_UNCHANGED, ROW_UPDATED, ROW_WOULD_UPDATE,
)
from procurement.purchasing.services import (
    InstallmentError, create_installment, confirm_installment, delete_installment,
    get_order_installment_summary, calculate_delivery_status, calculate_remaining_amount,
    calculate_completion_rate, can_add_installment, check_numbering, with_retry,
    map_database_error, generate_order_no, generate_transaction_no, refresh_order_status,
)


def days_ago(days, hours=0):
    return timezone.now() - timedelta(days=days, hours=hours)


class InstallmentCalculationTests(TestCase):
    """Test pure calculation helpers"""

    def test_remaining_amount_never_negative(self):
        self.assertEqual(calculate_remaining_amount(Decimal('1000'), Decimal('400')), Decimal('600'))
        self.assertEqual(calculate_remaining_amount(Decimal('1000'), Decimal('1500')), Decimal('0'))

    def test_completion_rate_rounded_to_one_decimal(self):
        self.assertEqual(calculate_completion_rate(Decimal('3000'), Decimal('1000')), 33.3)
        self.assertEqual(calculate_completion_rate(Decimal('3000'), Decimal('2000')), 66.7)
        self.assertEqual(calculate_completion_rate(Decimal('0'), Decimal('100')), 0.0)

    def test_can_add_installment(self):
        self.assertTrue(can_add_installment(Decimal('1000'), Decimal('500'), 1))
        self.assertFalse(can_add_installment(Decimal('1000'), Decimal('1000'), 1))
        self.assertFalse(can_add_installment(Decimal('1000'), Decimal('0'), 50))

    def test_check_numbering(self):
        self.assertTrue(check_numbering([]))
        self.assertTrue(check_numbering([2, 1, 3]))
        self.assertFalse(check_numbering([1, 1, 2]))
        self.assertFalse(check_numbering([1, 3]))

    def test_generate_order_no_uses_daily_sequence(self):
        order_date = timezone.localdate()
        prefix = f"PO{order_date:%y%m%d}"
        self.assertEqual(generate_order_no(order_date), f"{prefix}001")
        TestDataFactory.create_purchase_order(order_no=f"{prefix}001")
        TestDataFactory.create_purchase_order(order_no=f"{prefix}002")
        self.assertEqual(generate_order_no(order_date), f"{prefix}003")

    def test_generate_transaction_no_format(self):
        transaction_no = generate_transaction_no(timezone.localdate())
        self.assertTrue(transaction_no.startswith(f"PT-{timezone.localdate():%Y%m%d}-"))
        self.assertNotEqual(transaction_no, generate_transaction_no(timezone.localdate()))


class InstallmentErrorTests(TestCase):
    """Test error classification and database error mapping"""

    def test_user_fixable_and_retryable(self):
        self.assertTrue(InstallmentError('AMOUNT_EXCEEDED', 'x').is_user_fixable)
        self.assertTrue(InstallmentError('INVALID_AMOUNT', 'x').is_user_fixable)
        self.assertFalse(InstallmentError('NETWORK_ERROR', 'x').is_user_fixable)
        self.assertTrue(InstallmentError('NETWORK_ERROR', 'x').is_retryable)
        self.assertTrue(InstallmentError('UNKNOWN_ERROR', 'x').is_retryable)
        self.assertFalse(InstallmentError('VALIDATION_FAILED', 'x').is_retryable)

    def test_unknown_code_becomes_unknown_error(self):
        self.assertEqual(InstallmentError('SOMETHING_ELSE', 'x').code, 'UNKNOWN_ERROR')

    def test_map_database_error(self):
        self.assertEqual(map_database_error(IntegrityError('duplicate key')).code, 'VALIDATION_FAILED')
        self.assertEqual(map_database_error(OperationalError('connection refused')).code, 'NETWORK_ERROR')
        self.assertEqual(map_database_error(ProgrammingError('syntax error')).code, 'UNKNOWN_ERROR')


@override_settings(INSTALLMENT_RETRY_DELAY_SECONDS=0)
class WithRetryTests(TestCase):
    """Test the retry wrapper"""

    def test_retries_retryable_errors_until_success(self):
        calls = []

        def operation():
            calls.append(1)
            if len(calls) < 3:
                raise InstallmentError('NETWORK_ERROR', 'timeout')
            return 'ok'

        self.assertEqual(with_retry(operation, max_retries=3), 'ok')
        self.assertEqual(len(calls), 3)

    def test_non_retryable_error_raised_immediately(self):
        calls = []

        def operation():
            calls.append(1)
            raise InstallmentError('AMOUNT_EXCEEDED', 'too much')

        with self.assertRaises(InstallmentError) as ctx:
            with_retry(operation, max_retries=3)
        self.assertEqual(ctx.exception.code, 'AMOUNT_EXCEEDED')
        self.assertEqual(len(calls), 1)

    def test_database_errors_are_mapped_and_retried(self):
        calls = []

        def operation():
            calls.append(1)
            raise OperationalError('server closed the connection')

        with self.assertRaises(InstallmentError) as ctx:
            with_retry(operation, max_retries=2)
        self.assertEqual(ctx.exception.code, 'NETWORK_ERROR')
        self.assertEqual(len(calls), 2)


class CreateInstallmentTests(TestCase):
    """Test installment creation rules"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.order = TestDataFactory.create_purchase_order(total_amount=Decimal('10000.00'))

    def test_numbers_assigned_sequentially(self):
        first = create_installment(self.order, Decimal('3000'), user=self.user)
        second = create_installment(self.order, Decimal('2000'), user=self.user)
        self.assertEqual(first.installment_no, 1)
        self.assertEqual(second.installment_no, 2)
        self.assertEqual(second.delivery_sequence, 2)
        self.assertEqual(first.memo, '第1回')
        self.assertEqual(second.memo, '第2回')
        self.assertEqual(first.status, 'draft')
        self.assertEqual(first.transaction_type, 'purchase')
        self.assertEqual(first.partner, self.order.partner)
        self.assertTrue(first.transaction_no.startswith('PT-'))
        self.assertNotEqual(first.transaction_no, second.transaction_no)

    def test_default_due_date_is_thirty_days_out(self):
        installment = create_installment(self.order, Decimal('1000'))
        self.assertEqual(installment.due_date, timezone.localdate() + timedelta(days=30))

    def test_next_number_follows_highest_existing(self):
        TestDataFactory.create_installment(self.order, amount=Decimal('1000'), installment_no=3)
        installment = create_installment(self.order, Decimal('1000'))
        self.assertEqual(installment.installment_no, 4)

    def test_custom_memo_and_due_date_kept(self):
        due = timezone.localdate() + timedelta(days=7)
        installment = create_installment(self.order, Decimal('1000'), memo='Early batch', due_date=due)
        self.assertEqual(installment.memo, 'Early batch')
        self.assertEqual(installment.due_date, due)

    def test_amount_exceeding_order_total_rejected(self):
        create_installment(self.order, Decimal('8000'))
        with self.assertRaises(InstallmentError) as ctx:
            create_installment(self.order, Decimal('2500'))
        self.assertEqual(ctx.exception.code, 'AMOUNT_EXCEEDED')
        self.assertTrue(ctx.exception.is_user_fixable)
        self.assertEqual(ctx.exception.details['remaining_amount'], '2000.00')
        self.assertEqual(self.order.installments().count(), 1)

    def test_exact_remaining_amount_allowed(self):
        create_installment(self.order, Decimal('8000'))
        installment = create_installment(self.order, Decimal('2000'))
        self.assertEqual(installment.installment_no, 2)

    def test_zero_and_negative_amount_rejected(self):
        for amount in (Decimal('0'), Decimal('-5'), 'abc'):
            with self.assertRaises(InstallmentError) as ctx:
                create_installment(self.order, amount)
            self.assertEqual(ctx.exception.code, 'INVALID_AMOUNT')

    def test_amount_below_minimum_rejected(self):
        with self.assertRaises(InstallmentError) as ctx:
            create_installment(self.order, Decimal('0.50'))
        self.assertEqual(ctx.exception.code, 'INVALID_AMOUNT')

    def test_missing_order_rejected(self):
        with self.assertRaises(InstallmentError) as ctx:
            create_installment(999999, Decimal('100'))
        self.assertEqual(ctx.exception.code, 'ORDER_NOT_FOUND')

    def test_cancelled_order_rejected(self):
        self.order.status = 'cancelled'
        self.order.save()
        with self.assertRaises(InstallmentError) as ctx:
            create_installment(self.order, Decimal('100'))
        self.assertEqual(ctx.exception.code, 'VALIDATION_FAILED')

    def test_long_memo_rejected(self):
        with self.assertRaises(InstallmentError) as ctx:
            create_installment(self.order, Decimal('100'), memo='x' * 501)
        self.assertEqual(ctx.exception.code, 'VALIDATION_FAILED')

    def test_invalid_status_rejected(self):
        with self.assertRaises(InstallmentError) as ctx:
            create_installment(self.order, Decimal('100'), status='completed')
        self.assertEqual(ctx.exception.code, 'VALIDATION_FAILED')

    @override_settings(INSTALLMENT_MAX_COUNT=2)
    def test_installment_count_limit(self):
        create_installment(self.order, Decimal('100'))
        create_installment(self.order, Decimal('100'))
        with self.assertRaises(InstallmentError) as ctx:
            create_installment(self.order, Decimal('100'))
        self.assertEqual(ctx.exception.code, 'VALIDATION_FAILED')

    def test_items_get_derived_unit_price(self):
        product_a = TestDataFactory.create_product()
        product_b = TestDataFactory.create_product()
        installment = create_installment(
            self.order, Decimal('1000'),
            items={product_a.id: Decimal('3'), product_b.id: Decimal('1')}
        )
        items = {item.product_id: item for item in installment.items.all()}
        self.assertEqual(len(items), 2)
        self.assertEqual(items[product_a.id].unit_price, Decimal('250'))
        self.assertEqual(items[product_a.id].total_amount, Decimal('750.00'))
        self.assertEqual(items[product_b.id].total_amount, Decimal('250.00'))

    def test_unknown_product_in_items_rejected(self):
        with self.assertRaises(InstallmentError) as ctx:
            create_installment(self.order, Decimal('1000'), items=[{'product': 999999, 'quantity': 1}])
        self.assertEqual(ctx.exception.code, 'VALIDATION_FAILED')
        self.assertEqual(self.order.installments().count(), 0)

    def test_draft_does_not_touch_stock(self):
        product = TestDataFactory.create_product()
        create_installment(self.order, Decimal('1000'), items={product.id: Decimal('5')})
        product.refresh_from_db()
        self.assertEqual(product.current_stock, Decimal('0'))
        self.assertFalse(InventoryMovement.objects.filter(product=product).exists())

    def test_confirmed_installment_receives_stock_and_updates_order(self):
        product = TestDataFactory.create_product()
        installment = create_installment(
            self.order, Decimal('4000'), status='confirmed', items={product.id: Decimal('5')}, user=self.user
        )
        product.refresh_from_db()
        self.assertEqual(product.current_stock, Decimal('5'))
        movement = InventoryMovement.objects.get(transaction=installment, product=product)
        self.assertEqual(movement.movement_type, 'in')
        self.assertIn('第1回', movement.note)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, 'partial')

    def test_audit_log_written(self):
        installment = create_installment(self.order, Decimal('1000'), user=self.user)
        log = AuditLog.objects.get(action='installment_create', object_id=str(installment.id))
        self.assertEqual(log.object_reference, self.order.order_no)
        self.assertEqual(log.user, self.user)


class ConfirmInstallmentTests(TestCase):
    """Test draft confirmation"""

    def setUp(self):
        self.order = TestDataFactory.create_purchase_order(total_amount=Decimal('10000.00'))
        self.product = TestDataFactory.create_product()

    def test_confirm_draft(self):
        draft = create_installment(self.order, Decimal('3000'), items={self.product.id: Decimal('2')})
        result = confirm_installment(draft)
        self.assertEqual(result['old_status'], 'draft')
        self.assertEqual(result['new_status'], 'confirmed')
        self.assertFalse(result['amount_changed'])
        draft.refresh_from_db()
        self.assertEqual(draft.status, 'confirmed')
        self.product.refresh_from_db()
        self.assertEqual(self.product.current_stock, Decimal('2'))
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, 'partial')

    def test_confirm_with_new_amount(self):
        draft = create_installment(self.order, Decimal('3000'))
        result = confirm_installment(draft.id, confirm_amount=Decimal('3500'))
        self.assertTrue(result['amount_changed'])
        self.assertEqual(result['previous_amount'], Decimal('3000.00'))
        self.assertEqual(result['confirmed_amount'], Decimal('3500.00'))
        draft.refresh_from_db()
        self.assertEqual(draft.total_amount, Decimal('3500.00'))

    def test_new_amount_reprices_items_and_movements(self):
        draft = create_installment(self.order, Decimal('3000'), items={self.product.id: Decimal('2')})
        self.assertEqual(draft.items.get().unit_price, Decimal('1500.00'))
        confirm_installment(draft, confirm_amount=Decimal('3500'))
        item = draft.items.get()
        self.assertEqual(item.unit_price, Decimal('1750.00'))
        self.assertEqual(item.total_amount, Decimal('3500.00'))
        movement = InventoryMovement.objects.get(transaction=draft)
        self.assertEqual(movement.unit_price, Decimal('1750.00'))

    def test_confirm_amount_checked_against_other_installments(self):
        create_installment(self.order, Decimal('5000'))
        draft = create_installment(self.order, Decimal('3000'))
        with self.assertRaises(InstallmentError) as ctx:
            confirm_installment(draft, confirm_amount=Decimal('6000'))
        self.assertEqual(ctx.exception.code, 'AMOUNT_EXCEEDED')
        draft.refresh_from_db()
        self.assertEqual(draft.status, 'draft')

    def test_confirm_twice_rejected(self):
        draft = create_installment(self.order, Decimal('3000'))
        confirm_installment(draft)
        with self.assertRaises(InstallmentError) as ctx:
            confirm_installment(draft)
        self.assertEqual(ctx.exception.code, 'ALREADY_CONFIRMED')

    def test_confirm_missing_installment(self):
        with self.assertRaises(InstallmentError) as ctx:
            confirm_installment(999999)
        self.assertEqual(ctx.exception.code, 'TRANSACTION_NOT_FOUND')

    def test_full_confirmation_completes_order(self):
        draft = create_installment(self.order, Decimal('10000'))
        confirm_installment(draft)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, 'completed')


class DeleteInstallmentTests(TestCase):
    """Test installment deletion rules"""

    def setUp(self):
        self.order = TestDataFactory.create_purchase_order(total_amount=Decimal('10000.00'))
        self.product = TestDataFactory.create_product()

    def test_delete_draft(self):
        draft = create_installment(self.order, Decimal('1000'))
        result = delete_installment(draft)
        self.assertEqual(result['deleted_status'], 'draft')
        self.assertFalse(result['force_delete_used'])
        self.assertFalse(Transaction.objects.filter(pk=draft.pk).exists())

    def test_delete_confirmed_requires_force(self):
        confirmed = create_installment(self.order, Decimal('1000'), status='confirmed')
        with self.assertRaises(InstallmentError) as ctx:
            delete_installment(confirmed)
        self.assertEqual(ctx.exception.code, 'CANNOT_DELETE_CONFIRMED')
        self.assertTrue(Transaction.objects.filter(pk=confirmed.pk).exists())

    def test_force_delete_reverses_stock(self):
        confirmed = create_installment(
            self.order, Decimal('1000'), status='confirmed', items={self.product.id: Decimal('4')}
        )
        self.product.refresh_from_db()
        self.assertEqual(self.product.current_stock, Decimal('4'))

        result = delete_installment(confirmed, force=True)
        self.assertTrue(result['force_delete_used'])
        self.assertEqual(result['reversed_movements'], 1)
        self.assertEqual(result['installment_no'], 1)
        self.product.refresh_from_db()
        self.assertEqual(self.product.current_stock, Decimal('0'))
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, 'pending')

    def test_delete_missing_installment(self):
        with self.assertRaises(InstallmentError) as ctx:
            delete_installment(999999)
        self.assertEqual(ctx.exception.code, 'TRANSACTION_NOT_FOUND')


class InstallmentSummaryTests(TestCase):
    """Test order summary and delivery status"""

    def setUp(self):
        self.order = TestDataFactory.create_purchase_order(total_amount=Decimal('3000.00'))

    def test_summary_without_installments(self):
        summary = get_order_installment_summary(self.order)
        self.assertEqual(summary['status'], 'not_started')
        self.assertEqual(summary['installment_count'], 0)
        self.assertEqual(summary['remaining_amount'], Decimal('3000.00'))
        self.assertEqual(summary['summary_info']['next_installment_no'], 1)
        self.assertTrue(summary['summary_info']['can_add_installment'])
        self.assertEqual(summary['summary_info']['integrity_status'], 'OK')

    def test_summary_in_progress(self):
        create_installment(self.order, Decimal('1000'))
        summary = get_order_installment_summary(self.order.id)
        self.assertEqual(summary['status'], 'in_progress')
        self.assertEqual(summary['allocated_total'], Decimal('1000.00'))
        self.assertEqual(summary['completion_rate'], 33.3)
        self.assertEqual(summary['summary_info']['next_installment_no'], 2)
        self.assertEqual(len(summary['installments']), 1)

    def test_summary_completed(self):
        create_installment(self.order, Decimal('3000'))
        summary = get_order_installment_summary(self.order)
        self.assertEqual(summary['status'], 'completed')
        self.assertFalse(summary['summary_info']['can_add_installment'])

    def test_summary_flags_duplicate_numbers_and_over_allocation(self):
        TestDataFactory.create_installment(self.order, amount=Decimal('2000'), installment_no=1)
        TestDataFactory.create_installment(self.order, amount=Decimal('2000'), installment_no=1)
        summary = get_order_installment_summary(self.order)
        self.assertEqual(summary['status'], 'over_allocated')
        self.assertEqual(summary['summary_info']['integrity_status'], 'ERROR')

    def test_cancelled_installments_excluded(self):
        TestDataFactory.create_installment(self.order, amount=Decimal('500'), installment_no=1, status='cancelled')
        summary = get_order_installment_summary(self.order)
        self.assertEqual(summary['installment_count'], 0)

    def test_summary_missing_order(self):
        with self.assertRaises(InstallmentError) as ctx:
            get_order_installment_summary(999999)
        self.assertEqual(ctx.exception.code, 'ORDER_NOT_FOUND')

    def test_delivery_status_progression(self):
        product = TestDataFactory.create_product()
        TestDataFactory.create_order_item(self.order, product=product, quantity=Decimal('10'), unit_price=Decimal('300'))

        self.assertEqual(calculate_delivery_status(self.order)['status'], 'in_progress')

        first = create_installment(self.order, Decimal('1500'), status='confirmed', items={product.id: Decimal('5')})
        draft = create_installment(self.order, Decimal('1500'), items={product.id: Decimal('5')})
        delivery = calculate_delivery_status(self.order)
        # Drafts count toward the amount, only confirmed items count as delivered
        self.assertEqual(delivery['status'], 'amount_complete')
        self.assertFalse(delivery['is_all_items_delivered'])
        self.assertEqual(delivery['confirmed_amount'], Decimal('1500.00'))
        self.assertEqual(delivery['draft_amount'], Decimal('1500.00'))
        self.assertEqual(delivery['completion_percentage'], 50)
        self.assertEqual(delivery['items'][0]['delivered_quantity'], Decimal('5'))

        confirm_installment(draft)
        delivery = calculate_delivery_status(self.order)
        self.assertEqual(delivery['status'], 'fully_delivered')
        self.assertTrue(delivery['is_all_items_delivered'])
        self.assertEqual(delivery['items'][0]['remaining_quantity'], Decimal('0'))
        self.assertIsNotNone(first)

    def test_delivery_amount_complete_without_items(self):
        product = TestDataFactory.create_product()
        TestDataFactory.create_order_item(self.order, product=product, quantity=Decimal('10'), unit_price=Decimal('300'))
        create_installment(self.order, Decimal('3000'), status='confirmed')
        delivery = calculate_delivery_status(self.order)
        self.assertEqual(delivery['status'], 'amount_complete')
        self.assertTrue(delivery['is_amount_complete'])
        self.assertFalse(delivery['is_all_items_delivered'])

    def test_refresh_order_status_ignores_cancelled(self):
        self.order.status = 'cancelled'
        self.order.save()
        TestDataFactory.create_installment(self.order, amount=Decimal('3000'), installment_no=1)
        self.assertEqual(refresh_order_status(self.order), 'cancelled')


class ResequenceTests(TestCase):
    """Test renumbering installments by creation time"""

    def setUp(self):
        self.user = TestDataFactory.create_user(is_staff=True)
        self.order = TestDataFactory.create_purchase_order(total_amount=Decimal('10000.00'))
        # Stored numbers disagree with creation order and #2 is used twice
        self.first = TestDataFactory.create_installment(
            self.order, amount=Decimal('1000'), installment_no=2, created_at=days_ago(3))
        self.second = TestDataFactory.create_installment(
            self.order, amount=Decimal('1000'), installment_no=2, created_at=days_ago(2))
        self.third = TestDataFactory.create_installment(
            self.order, amount=Decimal('1000'), installment_no=1, created_at=days_ago(1))

    def numbers(self):
        return [
            Transaction.objects.get(pk=txn.pk).installment_no
            for txn in (self.first, self.second, self.third)
        ]

    def test_find_duplicates(self):
        groups = find_duplicate_installments()
        self.assertEqual(len(groups), 1)
        self.assertEqual(groups[0]['parent_order_id'], self.order.id)
        self.assertEqual(groups[0]['installment_no'], 2)
        self.assertEqual(groups[0]['count'], 2)
        self.assertEqual(find_duplicate_installments(TestDataFactory.create_purchase_order()), [])

    def test_find_misnumbered_orders(self):
        misnumbered = find_misnumbered_orders()
        self.assertEqual(len(misnumbered), 1)
        self.assertEqual(misnumbered[0]['order_no'], self.order.order_no)
        self.assertEqual(len(misnumbered[0]['mismatches']), 2)

    def test_resequence_by_creation_time(self):
        report = resequence_installments(self.order, user=self.user)
        self.assertEqual(self.numbers(), [1, 2, 3])
        self.assertEqual(report['updated'], 2)
        self.assertEqual(report['unchanged'], 1)
        self.assertEqual(report['failed'], 0)
        outcomes = [row['outcome'] for row in report['rows']]
        self.assertEqual(outcomes, [ROW_UPDATED, ROW_UNCHANGED, ROW_UPDATED])
        self.third.refresh_from_db()
        self.assertEqual(self.third.memo, '第3回')
        self.assertEqual(self.third.delivery_sequence, 3)
        self.assertEqual(find_duplicate_installments(), [])
        self.assertTrue(AuditLog.objects.filter(action='installment_resequence', object_id=str(self.order.id)).exists())

    def test_resequence_is_idempotent(self):
        resequence_installments(self.order)
        report = resequence_installments(self.order)
        self.assertEqual(report['updated'], 0)
        self.assertEqual(report['unchanged'], 3)

    def test_dry_run_changes_nothing(self):
        report = resequence_installments(self.order, dry_run=True)
        self.assertEqual(self.numbers(), [2, 2, 1])
        self.assertEqual(report['updated'], 2)
        self.assertIn(ROW_WOULD_UPDATE, [row['outcome'] for row in report['rows']])
        self.assertFalse(AuditLog.objects.filter(action='installment_resequence').exists())

    def test_drafts_and_zero_amounts_skipped_by_default(self):
        zero = TestDataFactory.create_installment(
            self.order, amount=Decimal('0'), installment_no=9, created_at=days_ago(5))
        draft = TestDataFactory.create_installment(
            self.order, amount=Decimal('500'), installment_no=7, status='draft', created_at=days_ago(4))
        resequence_installments(self.order)
        self.assertEqual(self.numbers(), [1, 2, 3])
        zero.refresh_from_db()
        draft.refresh_from_db()
        self.assertEqual(zero.installment_no, 9)
        self.assertEqual(draft.installment_no, 7)

    def test_include_drafts(self):
        draft = TestDataFactory.create_installment(
            self.order, amount=Decimal('500'), installment_no=7, status='draft', created_at=days_ago(4))
        resequence_installments(self.order, include_drafts=True)
        draft.refresh_from_db()
        self.assertEqual(draft.installment_no, 1)
        self.assertEqual(self.numbers(), [2, 3, 4])

    def test_colliding_draft_moved_past_range(self):
        draft = TestDataFactory.create_installment(
            self.order, amount=Decimal('500'), installment_no=3, status='draft', created_at=days_ago(4))
        report = resequence_installments(self.order)
        draft.refresh_from_db()
        self.assertEqual(self.numbers(), [1, 2, 3])
        self.assertEqual(draft.installment_no, 4)
        self.assertEqual(report['rows'][-1]['transaction_id'], draft.id)

    def test_moved_draft_skips_numbers_held_by_later_drafts(self):
        order = TestDataFactory.create_purchase_order(total_amount=Decimal('10000.00'))
        first = TestDataFactory.create_installment(
            order, amount=Decimal('1000'), installment_no=1, created_at=days_ago(10))
        early_draft = TestDataFactory.create_installment(
            order, amount=Decimal('1000'), installment_no=2, status='draft', created_at=days_ago(9))
        late_draft = TestDataFactory.create_installment(
            order, amount=Decimal('1000'), installment_no=3, status='draft', created_at=days_ago(8))
        last = TestDataFactory.create_installment(
            order, amount=Decimal('1000'), installment_no=4, created_at=days_ago(7))

        report = resequence_installments(order)

        numbers = {
            txn.pk: Transaction.objects.get(pk=txn.pk).installment_no
            for txn in (first, early_draft, late_draft, last)
        }
        self.assertEqual(report['failed'], 0)
        self.assertEqual(len(set(numbers.values())), 4)
        self.assertEqual(numbers[first.pk], 1)
        self.assertEqual(numbers[last.pk], 2)
        self.assertEqual(numbers[late_draft.pk], 3)
        self.assertEqual(numbers[early_draft.pk], 4)
        self.assertEqual(find_duplicate_installments(order), [])

    def test_resequence_orders_with_duplicates(self):
        clean_order = TestDataFactory.create_purchase_order()
        TestDataFactory.create_installment(clean_order, amount=Decimal('100'), installment_no=1)
        reports = resequence_orders_with_duplicates()
        self.assertEqual([r['order_id'] for r in reports], [self.order.id])
        self.assertEqual(self.numbers(), [1, 2, 3])

    def test_find_over_allocated_orders(self):
        self.assertEqual(find_over_allocated_orders(), [])
        TestDataFactory.create_installment(self.order, amount=Decimal('8000'), installment_no=4)
        rows = find_over_allocated_orders()
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]['order_no'], self.order.order_no)
        self.assertEqual(rows[0]['allocated_total'], Decimal('11000.00'))


class PurchasingCommandTests(TestCase):
    """Test purchasing management commands"""

    def setUp(self):
        self.order = TestDataFactory.create_purchase_order(total_amount=Decimal('5000.00'))
        self.first = TestDataFactory.create_installment(
            self.order, amount=Decimal('1000'), installment_no=1, created_at=days_ago(2))
        self.second = TestDataFactory.create_installment(
            self.order, amount=Decimal('1000'), installment_no=1, created_at=days_ago(1))

    def test_resequence_single_order(self):
        out = StringIO()
        call_command('resequence_installments', '--order-no', self.order.order_no, stdout=out)
        self.second.refresh_from_db()
        self.assertEqual(self.second.installment_no, 2)
        self.assertIn(self.order.order_no, out.getvalue())
        self.assertIn('1 installments renumbered', out.getvalue())

    def test_resequence_all_duplicates_dry_run(self):
        out = StringIO()
        call_command('resequence_installments', '--all-duplicates', '--dry-run', stdout=out)
        self.second.refresh_from_db()
        self.assertEqual(self.second.installment_no, 1)
        self.assertIn('DRY RUN', out.getvalue())
        self.assertIn('would be renumbered', out.getvalue())

    def test_resequence_unknown_order(self):
        with self.assertRaises(CommandError):
            call_command('resequence_installments', '--order-no', 'PO000000999', stdout=StringIO())

    def test_inspect_order(self):
        out = StringIO()
        call_command('inspect_order', '--order-no', self.order.order_no, stdout=out)
        output = out.getvalue()
        self.assertIn(f'PURCHASE ORDER {self.order.order_no}', output)
        self.assertIn('MISMATCH', output)
        self.assertIn('is used 2 times', output)
        self.assertIn('Remaining: 3000.00', output)

    def test_recompute_order_balances(self):
        out = StringIO()
        call_command('recompute_order_balances', '--dry-run', stdout=out)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, 'pending')
        self.assertIn('pending -> partial', out.getvalue())

        call_command('recompute_order_balances', stdout=StringIO())
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, 'partial')

    def test_recompute_reports_over_allocation(self):
        TestDataFactory.create_installment(self.order, amount=Decimal('4000'), installment_no=3)
        out = StringIO()
        call_command('recompute_order_balances', stdout=out)
        self.assertIn('above the order total', out.getvalue())
        self.assertIn(self.order.order_no, out.getvalue())


class PurchaseOrderAPITests(TestCase):
    """Test purchase order API endpoints"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.supplier = TestDataFactory.create_partner()
        self.product = TestDataFactory.create_product()

    def test_requires_authentication(self):
        self.client.logout()
        response = self.client.get('/api/v1/purchase-orders/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_create_order_with_items(self):
        data = {
            'partner': self.supplier.id,
            'order_date': timezone.localdate().isoformat(),
            'items': [
                {'product': self.product.id, 'quantity': '10', 'unit_price': '250.00'},
            ]
        }
        response = self.client.post('/api/v1/purchase-orders/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(response.data['order_no'].startswith('PO'))
        self.assertEqual(Decimal(response.data['total_amount']), Decimal('2500.00'))
        self.assertEqual(len(response.data['items']), 1)
        self.assertEqual(response.data['created_by'], self.user.id)

    def test_create_order_for_customer_rejected(self):
        customer = TestDataFactory.create_partner(partner_type='customer')
        data = {'partner': customer.id, 'order_date': timezone.localdate().isoformat(), 'total_amount': '100'}
        response = self.client.post('/api/v1/purchase-orders/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('partner', response.data)

    def test_list_orders_paginated_and_filtered(self):
        TestDataFactory.create_purchase_order(partner=self.supplier, status='pending')
        TestDataFactory.create_purchase_order(partner=self.supplier, status='completed')
        response = self.client.get('/api/v1/purchase-orders/', {'limit': 1})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 2)
        self.assertEqual(len(response.data['results']), 1)
        self.assertEqual(response.data['total_pages'], 2)

        response = self.client.get('/api/v1/purchase-orders/', {'status': 'completed'})
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['status'], 'completed')

    def test_lower_total_than_allocated_rejected(self):
        order = TestDataFactory.create_purchase_order(partner=self.supplier, total_amount=Decimal('5000'))
        create_installment(order, Decimal('3000'))
        response = self.client.patch(f'/api/v1/purchase-orders/{order.id}/', {'total_amount': '2000'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('total_amount', response.data)

    def test_delete_order_with_confirmed_installments_rejected(self):
        order = TestDataFactory.create_purchase_order(partner=self.supplier)
        create_installment(order, Decimal('1000'), status='confirmed')
        response = self.client.delete(f'/api/v1/purchase-orders/{order.id}/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertTrue(PurchaseOrder.objects.filter(pk=order.pk).exists())

    def test_delete_order(self):
        order = TestDataFactory.create_purchase_order(partner=self.supplier)
        create_installment(order, Decimal('1000'))
        response = self.client.delete(f'/api/v1/purchase-orders/{order.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(PurchaseOrder.objects.filter(pk=order.pk).exists())


class InstallmentAPITests(TestCase):
    """Test installment API endpoints"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.order = TestDataFactory.create_purchase_order(total_amount=Decimal('10000.00'))
        self.product = TestDataFactory.create_product()
        self.url = f'/api/v1/purchase-orders/{self.order.id}/installments/'

    def test_create_and_list_installments(self):
        response = self.client.post(self.url, {'amount': '4000'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['installment_no'], 1)
        self.assertEqual(response.data['memo'], '第1回')
        self.assertEqual(response.data['status'], 'draft')

        response = self.client.post(self.url, {
            'amount': '2000',
            'status': 'confirmed',
            'items': [{'product': self.product.id, 'quantity': '4'}],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['installment_no'], 2)
        self.assertEqual(Decimal(response.data['items'][0]['unit_price']), Decimal('500'))

        response = self.client.get(self.url)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([row['installment_no'] for row in response.data], [1, 2])

    def test_amount_exceeded_returns_conflict(self):
        response = self.client.post(self.url, {'amount': '12000'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'AMOUNT_EXCEEDED')

    def test_invalid_amount_returns_bad_request(self):
        response = self.client.post(self.url, {'amount': '0'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'INVALID_AMOUNT')

    def test_missing_order_returns_not_found(self):
        response = self.client.post('/api/v1/purchase-orders/999999/installments/', {'amount': '10'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_summary_and_delivery_status(self):
        create_installment(self.order, Decimal('2500'))
        response = self.client.get(f'/api/v1/purchase-orders/{self.order.id}/summary/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['installment_count'], 1)
        self.assertEqual(response.data['completion_rate'], 25.0)
        self.assertEqual(response.data['summary_info']['integrity_status'], 'OK')

        response = self.client.get(f'/api/v1/purchase-orders/{self.order.id}/delivery-status/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'in_progress')

    def test_confirm_endpoint(self):
        draft = create_installment(self.order, Decimal('3000'))
        response = self.client.post(f'/api/v1/transactions/{draft.id}/confirm/', {'confirm_amount': '3200'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['new_status'], 'confirmed')
        self.assertTrue(response.data['amount_changed'])
        self.assertEqual(response.data['installment']['status'], 'confirmed')

        response = self.client.post(f'/api/v1/transactions/{draft.id}/confirm/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'ALREADY_CONFIRMED')

    def test_confirm_missing_installment(self):
        response = self.client.post('/api/v1/transactions/999999/confirm/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['code'], 'TRANSACTION_NOT_FOUND')

    def test_delete_confirmed_needs_force(self):
        confirmed = create_installment(self.order, Decimal('1000'), status='confirmed')
        response = self.client.delete(f'/api/v1/transactions/{confirmed.id}/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'CANNOT_DELETE_CONFIRMED')

        response = self.client.delete(f'/api/v1/transactions/{confirmed.id}/?force=true')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['force_delete_used'])
        self.assertFalse(Transaction.objects.filter(pk=confirmed.pk).exists())

    def test_patch_installment_amount_rejected(self):
        draft = create_installment(self.order, Decimal('1000'))
        response = self.client.patch(f'/api/v1/transactions/{draft.id}/', {'total_amount': '5000'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        response = self.client.patch(f'/api/v1/transactions/{draft.id}/', {'memo': 'Updated'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['memo'], 'Updated')

    def test_patch_installment_type_rejected(self):
        confirmed = create_installment(self.order, Decimal('1000'), status='confirmed')
        response = self.client.patch(
            f'/api/v1/transactions/{confirmed.id}/', {'transaction_type': 'sale'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('transaction_type', response.data)
        confirmed.refresh_from_db()
        self.assertEqual(confirmed.transaction_type, 'purchase')

        # Still protected by the installment delete rules
        response = self.client.delete(f'/api/v1/transactions/{confirmed.id}/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'CANNOT_DELETE_CONFIRMED')
        self.assertTrue(Transaction.objects.filter(pk=confirmed.pk).exists())

    def test_resequence_endpoint_admin_only(self):
        TestDataFactory.create_installment(self.order, amount=Decimal('100'), installment_no=1, created_at=days_ago(2))
        later = TestDataFactory.create_installment(
            self.order, amount=Decimal('100'), installment_no=1, created_at=days_ago(1))
        url = f'/api/v1/purchase-orders/{self.order.id}/resequence/'

        response = self.client.post(url, {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        admin = TestDataFactory.create_user(is_staff=True)
        self.client.authenticate_user(admin)
        response = self.client.post(url, {'dry_run': True}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['dry_run'])
        later.refresh_from_db()
        self.assertEqual(later.installment_no, 1)

        response = self.client.post(url, {}, format='json')
        self.assertEqual(response.data['updated'], 1)
        later.refresh_from_db()
        self.assertEqual(later.installment_no, 2)


class TransactionAPITests(TestCase):
    """Test plain transaction endpoints"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.partner = TestDataFactory.create_partner(partner_type='both')

    def test_create_sale(self):
        data = {
            'transaction_type': 'sale',
            'partner': self.partner.id,
            'transaction_date': timezone.localdate().isoformat(),
            'status': 'confirmed',
            'total_amount': '1200.00',
        }
        response = self.client.post('/api/v1/transactions/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertTrue(response.data['transaction_no'].startswith('PT-'))

    def test_create_purchase_directly_rejected(self):
        data = {
            'transaction_type': 'purchase',
            'partner': self.partner.id,
            'transaction_date': timezone.localdate().isoformat(),
            'total_amount': '1200.00',
        }
        response = self.client.post('/api/v1/transactions/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('transaction_type', response.data)

    def test_list_filtered_by_type(self):
        TestDataFactory.create_transaction(transaction_type='sale', partner=self.partner)
        TestDataFactory.create_transaction(transaction_type='adjustment', partner=self.partner)
        response = self.client.get('/api/v1/transactions/', {'transaction_type': 'sale'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)

    def test_delete_plain_transaction(self):
        txn = TestDataFactory.create_transaction(partner=self.partner)
        response = self.client.delete(f'/api/v1/transactions/{txn.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Transaction.objects.filter(pk=txn.pk).exists())
