"""
Test suite for the Inventory module
Tests: movement recording, stock recomputation, duplicate movement cleanup,
management commands and API endpoints
"""
from datetime import timedelta
from decimal import Decimal
from io import StringIO

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase
from django.utils import timezone
from rest_framework import status

from procurement.core.models import AuditLog
from procurement.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from procurement.inventory.models import InventoryMovement
from procurement.inventory.services import (
    DuplicateMovementError, record_movement, delete_movement, reverse_movements,
    calculate_stock, find_stock_mismatches, sync_product_stock,
    find_duplicate_movements, cleanup_duplicate_movements,
)


def days_ago(days):
    return timezone.now() - timedelta(days=days)


class RecordMovementTests(TestCase):
    """Test recording movements and cached stock"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.product = TestDataFactory.create_product()
        self.order = TestDataFactory.create_purchase_order()
        self.txn = TestDataFactory.create_installment(self.order, installment_no=1)

    def test_inbound_and_outbound_update_stock(self):
        record_movement(self.product, 'in', Decimal('10'), user=self.user)
        record_movement(self.product, 'out', Decimal('3'))
        self.product.refresh_from_db()
        self.assertEqual(self.product.current_stock, Decimal('7'))
        self.assertEqual(calculate_stock(self.product), Decimal('7'))

    def test_second_movement_for_same_transaction_and_product_rejected(self):
        first = record_movement(self.product, 'in', Decimal('5'), transaction=self.txn)
        with self.assertRaises(DuplicateMovementError) as ctx:
            record_movement(self.product, 'in', Decimal('5'), transaction=self.txn)
        self.assertEqual(ctx.exception.existing_id, first.id)
        self.assertEqual(InventoryMovement.objects.filter(transaction=self.txn).count(), 1)
        self.product.refresh_from_db()
        self.assertEqual(self.product.current_stock, Decimal('5'))

    def test_same_transaction_different_products_allowed(self):
        other = TestDataFactory.create_product()
        record_movement(self.product, 'in', Decimal('1'), transaction=self.txn)
        record_movement(other, 'in', Decimal('1'), transaction=self.txn)
        self.assertEqual(InventoryMovement.objects.filter(transaction=self.txn).count(), 2)

    def test_manual_adjustments_not_deduplicated(self):
        record_movement(self.product, 'in', Decimal('2'))
        record_movement(self.product, 'in', Decimal('2'))
        self.assertEqual(InventoryMovement.objects.filter(product=self.product).count(), 2)

    def test_invalid_input_rejected(self):
        with self.assertRaises(ValueError):
            record_movement(self.product, 'sideways', Decimal('1'))
        with self.assertRaises(ValueError):
            record_movement(self.product, 'in', Decimal('0'))

    def test_movement_audit_logged(self):
        movement = record_movement(self.product, 'in', Decimal('1'), transaction=self.txn, user=self.user)
        log = AuditLog.objects.get(action='movement_create', object_id=str(movement.id))
        self.assertEqual(log.object_reference, self.txn.transaction_no)

    def test_delete_movement_restores_stock(self):
        movement = record_movement(self.product, 'in', Decimal('4'))
        delete_movement(movement)
        self.product.refresh_from_db()
        self.assertEqual(self.product.current_stock, Decimal('0'))
        self.assertFalse(InventoryMovement.objects.filter(pk=movement.pk).exists())

    def test_reverse_movements(self):
        other = TestDataFactory.create_product()
        record_movement(self.product, 'in', Decimal('3'), transaction=self.txn)
        record_movement(other, 'in', Decimal('2'), transaction=self.txn)
        self.assertEqual(reverse_movements(self.txn), 2)
        other.refresh_from_db()
        self.assertEqual(other.current_stock, Decimal('0'))


class StockSyncTests(TestCase):
    """Test stock recomputation from movements"""

    def setUp(self):
        self.product = TestDataFactory.create_product(current_stock=Decimal('20'))
        TestDataFactory.create_movement(self.product, quantity=Decimal('8'))
        TestDataFactory.create_movement(self.product, quantity=Decimal('3'), movement_type='out')

    def test_find_stock_mismatches(self):
        in_sync = TestDataFactory.create_product()
        mismatches = find_stock_mismatches()
        self.assertEqual([m['product_id'] for m in mismatches], [self.product.id])
        self.assertEqual(mismatches[0]['calculated_stock'], Decimal('5'))
        self.assertEqual(mismatches[0]['difference'], Decimal('15'))
        self.assertNotIn(in_sync.id, [m['product_id'] for m in mismatches])

    def test_sync_dry_run(self):
        changed = sync_product_stock(dry_run=True)
        self.assertEqual(len(changed), 1)
        self.product.refresh_from_db()
        self.assertEqual(self.product.current_stock, Decimal('20'))

    def test_sync_rewrites_stock(self):
        changed = sync_product_stock()
        product, old, new = changed[0]
        self.assertEqual(product.id, self.product.id)
        self.assertEqual(new, Decimal('5'))
        self.product.refresh_from_db()
        self.assertEqual(self.product.current_stock, Decimal('5'))
        self.assertTrue(AuditLog.objects.filter(action='stock_recalculate', object_id=str(self.product.id)).exists())
        self.assertEqual(sync_product_stock(), [])


class DuplicateMovementTests(TestCase):
    """Test detection and cleanup of duplicated movements"""

    def setUp(self):
        self.product = TestDataFactory.create_product()
        self.order = TestDataFactory.create_purchase_order()
        self.txn = TestDataFactory.create_installment(self.order, installment_no=1)
        self.first = TestDataFactory.create_movement(
            self.product, quantity=Decimal('5'), txn=self.txn, created_at=days_ago(1))
        self.copy_a = TestDataFactory.create_movement(self.product, quantity=Decimal('5'), txn=self.txn)
        self.copy_b = TestDataFactory.create_movement(self.product, quantity=Decimal('5'), txn=self.txn)

    def test_find_duplicates_earliest_first(self):
        groups = find_duplicate_movements()
        self.assertEqual(len(groups), 1)
        self.assertEqual(groups[0]['count'], 3)
        self.assertEqual(groups[0]['movements'][0].id, self.first.id)

    def test_find_duplicates_by_type_and_time(self):
        self.assertEqual(find_duplicate_movements(movement_type='out'), [])
        # Only the two copies fall inside the window
        groups = find_duplicate_movements(since=timezone.now() - timedelta(hours=1))
        self.assertEqual(groups[0]['count'], 2)
        self.assertEqual(find_duplicate_movements(until=timezone.now() - timedelta(hours=1)), [])

    def test_cleanup_keeps_earliest(self):
        report = cleanup_duplicate_movements()
        self.assertEqual(report['deleted_count'], 2)
        self.assertEqual(report['affected_product_ids'], {self.product.id})
        self.assertEqual(report['groups'][0]['kept_id'], self.first.id)
        remaining = list(InventoryMovement.objects.filter(transaction=self.txn).values_list('id', flat=True))
        self.assertEqual(remaining, [self.first.id])
        self.assertTrue(AuditLog.objects.filter(action='movement_cleanup').exists())

    def test_cleanup_dry_run(self):
        report = cleanup_duplicate_movements(dry_run=True)
        self.assertTrue(report['dry_run'])
        self.assertEqual(report['deleted_count'], 2)
        self.assertEqual(InventoryMovement.objects.filter(transaction=self.txn).count(), 3)

    def test_cleanup_ignores_other_movement_type(self):
        report = cleanup_duplicate_movements(movement_type='out')
        self.assertEqual(report['groups'], [])
        self.assertEqual(InventoryMovement.objects.filter(transaction=self.txn).count(), 3)


class InventoryCommandTests(TestCase):
    """Test inventory management commands"""

    def setUp(self):
        self.product = TestDataFactory.create_product()
        self.order = TestDataFactory.create_purchase_order()
        self.today_txn = TestDataFactory.create_installment(self.order, installment_no=1)
        self.old_txn = TestDataFactory.create_installment(self.order, installment_no=2)
        for _ in range(2):
            TestDataFactory.create_movement(self.product, quantity=Decimal('4'), txn=self.today_txn)
            TestDataFactory.create_movement(self.product, quantity=Decimal('6'), txn=self.old_txn, created_at=days_ago(3))
        self.old_day = timezone.localtime(days_ago(3)).date()

    def test_default_scope_is_today(self):
        out = StringIO()
        call_command('cleanup_duplicate_movements', stdout=out)
        self.assertEqual(InventoryMovement.objects.filter(transaction=self.today_txn).count(), 1)
        self.assertEqual(InventoryMovement.objects.filter(transaction=self.old_txn).count(), 2)
        self.assertIn('1 movements removed', out.getvalue())

    def test_specific_date(self):
        call_command('cleanup_duplicate_movements', '--date', self.old_day.isoformat(), stdout=StringIO())
        self.assertEqual(InventoryMovement.objects.filter(transaction=self.old_txn).count(), 1)
        self.assertEqual(InventoryMovement.objects.filter(transaction=self.today_txn).count(), 2)

    def test_all_dates_dry_run(self):
        out = StringIO()
        call_command('cleanup_duplicate_movements', '--all-dates', '--dry-run', stdout=out)
        self.assertEqual(InventoryMovement.objects.count(), 4)
        self.assertIn('2 movements would be removed', out.getvalue())

    def test_recalculate_stock(self):
        out = StringIO()
        call_command('cleanup_duplicate_movements', '--all-dates', '--recalculate-stock', stdout=out)
        self.product.refresh_from_db()
        self.assertEqual(self.product.current_stock, Decimal('10'))
        self.assertIn('Stock recalculated for 1 products', out.getvalue())

    def test_outbound_only_finds_nothing(self):
        out = StringIO()
        call_command('cleanup_duplicate_movements', '--all-dates', '--movement-type', 'out', stdout=out)
        self.assertIn('No duplicate movements found', out.getvalue())
        self.assertEqual(InventoryMovement.objects.count(), 4)

    def test_invalid_date(self):
        with self.assertRaises(CommandError):
            call_command('cleanup_duplicate_movements', '--date', '2024-13-45', stdout=StringIO())

    def test_sync_product_stock_command(self):
        out = StringIO()
        call_command('sync_product_stock', '--dry-run', stdout=out)
        self.product.refresh_from_db()
        self.assertEqual(self.product.current_stock, Decimal('0'))
        self.assertIn('1 products would be updated', out.getvalue())

        call_command('sync_product_stock', stdout=StringIO())
        self.product.refresh_from_db()
        self.assertEqual(self.product.current_stock, Decimal('20'))


class InventoryMovementAPITests(TestCase):
    """Test inventory movement API endpoints"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.product = TestDataFactory.create_product()
        self.order = TestDataFactory.create_purchase_order()
        self.txn = TestDataFactory.create_installment(self.order, installment_no=1)

    def test_create_movement(self):
        data = {'product': self.product.id, 'movement_type': 'in', 'quantity': '3', 'transaction': self.txn.id}
        response = self.client.post('/api/v1/inventory-movements/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['order_no'], self.order.order_no)
        self.assertEqual(response.data['created_by'], self.user.id)
        self.product.refresh_from_db()
        self.assertEqual(self.product.current_stock, Decimal('3'))

    def test_duplicate_movement_conflict(self):
        data = {'product': self.product.id, 'movement_type': 'in', 'quantity': '3', 'transaction': self.txn.id}
        self.client.post('/api/v1/inventory-movements/', data, format='json')
        response = self.client.post('/api/v1/inventory-movements/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'DUPLICATE_MOVEMENT')

    def test_zero_quantity_rejected(self):
        data = {'product': self.product.id, 'movement_type': 'in', 'quantity': '0'}
        response = self.client.post('/api/v1/inventory-movements/', data, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('quantity', response.data)

    def test_list_filtered_by_product(self):
        other = TestDataFactory.create_product()
        TestDataFactory.create_movement(self.product)
        TestDataFactory.create_movement(other)
        response = self.client.get('/api/v1/inventory-movements/', {'product': self.product.id})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]['product'], self.product.id)

    def test_delete_movement(self):
        movement = record_movement(self.product, 'in', Decimal('2'))
        response = self.client.delete(f'/api/v1/inventory-movements/{movement.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.product.refresh_from_db()
        self.assertEqual(self.product.current_stock, Decimal('0'))
