"""
Test suite for the Reports module
Tests: system health, dashboard statistics, recent updates, the integrity
checker, the check_integrity command and the report endpoints
"""
import json
from datetime import timedelta
from decimal import Decimal
from io import StringIO
from unittest import mock

from django.core.cache import cache
from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone
from rest_framework import status

from procurement.catalog.models import Product
from procurement.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from procurement.purchasing.models import PurchaseOrder
from procurement.reports.services import (
    IntegrityChecker, get_system_health, get_dashboard_stats, get_recent_updates,
)


def days_ago(days):
    return timezone.now() - timedelta(days=days)


def result_for(results, check_id):
    """Pick the result whose id was built from ``check_id``"""
    matches = [r for r in results if r['id'].rsplit('_', 1)[0] == check_id]
    if len(matches) != 1:
        raise AssertionError(f'Expected one result for {check_id}, got {len(matches)}')
    return matches[0]


class SystemHealthTests(TestCase):
    """Test the system health counters"""

    def setUp(self):
        cache.clear()
        partner = TestDataFactory.create_partner()
        self.pending = TestDataFactory.create_purchase_order(partner=partner, status='pending')
        TestDataFactory.create_purchase_order(partner=partner, status='partial')
        TestDataFactory.create_purchase_order(partner=partner, status='completed')
        TestDataFactory.create_purchase_order(partner=partner, status='cancelled')
        TestDataFactory.create_installment(self.pending, installment_no=1, status='confirmed')
        TestDataFactory.create_installment(self.pending, installment_no=2, status='draft')
        TestDataFactory.create_transaction(transaction_type='sale', partner=partner)
        TestDataFactory.create_order_manager()
        TestDataFactory.create_order_manager(is_active=False)

    def test_counters(self):
        health = get_system_health(refresh=True)
        self.assertEqual(health['total_orders'], 4)
        self.assertEqual(health['completed_orders'], 1)
        self.assertEqual(health['active_orders'], 2)
        self.assertEqual(health['total_installments'], 2)
        self.assertEqual(health['confirmed_installments'], 1)
        self.assertEqual(health['draft_installments'], 1)
        self.assertEqual(health['active_staff'], 1)
        self.assertEqual(health['anomaly_count'], 0)
        self.assertIn('last_updated', health)

    def test_anomalies_counted(self):
        TestDataFactory.create_installment(self.pending, installment_no=1, status='confirmed')
        product = TestDataFactory.create_product()
        txn = TestDataFactory.create_installment(self.pending, installment_no=3, status='draft')
        TestDataFactory.create_movement(product, txn=txn)
        TestDataFactory.create_movement(product, txn=txn)
        over = TestDataFactory.create_purchase_order(total_amount=Decimal('100.00'))
        TestDataFactory.create_installment(over, amount=Decimal('150.00'), installment_no=1)

        health = get_system_health(refresh=True)
        self.assertEqual(health['anomaly_count'], 3)

    def test_result_cached_until_refresh(self):
        first = get_system_health()
        PurchaseOrder.objects.filter(pk=self.pending.pk).update(status='completed')
        self.assertEqual(get_system_health()['completed_orders'], first['completed_orders'])
        self.assertEqual(get_system_health(refresh=True)['completed_orders'], 2)


class DashboardStatsTests(TestCase):
    """Test dashboard statistics and recent updates"""

    def setUp(self):
        cache.clear()

    def test_empty_catalog(self):
        stats = get_dashboard_stats(refresh=True)
        self.assertEqual(stats['total_products'], 0)
        self.assertEqual(stats['low_stock_count'], 0)
        self.assertEqual(stats['total_stock_value'], Decimal('0.00'))

    def test_stock_valuation(self):
        TestDataFactory.create_product(current_stock=Decimal('10'), purchase_price=Decimal('100.00'),
                                       selling_price=Decimal('150.00'))
        TestDataFactory.create_product(current_stock=Decimal('0'), min_stock_level=Decimal('5'))
        stats = get_dashboard_stats(refresh=True)
        self.assertEqual(stats['total_products'], 2)
        self.assertEqual(stats['low_stock_count'], 1)
        self.assertEqual(stats['total_stock_value'], Decimal('1000.00'))
        self.assertEqual(stats['total_potential_revenue'], Decimal('1500.00'))

    def test_product_save_invalidates_cache_on_commit(self):
        self.assertEqual(get_dashboard_stats()['total_products'], 0)
        with self.captureOnCommitCallbacks(execute=True):
            TestDataFactory.create_product()
            # Still inside the transaction: cached numbers are kept
            self.assertEqual(get_dashboard_stats()['total_products'], 0)
        self.assertEqual(get_dashboard_stats()['total_products'], 1)

    def test_recent_updates_newest_first(self):
        older = TestDataFactory.create_product(name='Older')
        newer = TestDataFactory.create_product(name='Newer')
        Product.objects.filter(pk=older.pk).update(updated_at=days_ago(2))
        updates = get_recent_updates(limit=10, refresh=True)
        self.assertEqual([u['id'] for u in updates], [newer.id, older.id])
        self.assertEqual(len(get_recent_updates(limit=1, refresh=True)), 1)


class IntegrityCheckerTests(TestCase):
    """Test individual integrity checks and the summary"""

    def run_checks(self, *categories, **kwargs):
        return IntegrityChecker(categories=categories or None, **kwargs).run()

    def test_clean_database_is_healthy(self):
        summary, results = self.run_checks()
        self.assertEqual(summary['overall_status'], 'healthy')
        self.assertEqual(summary['total_checks'], 14)
        self.assertEqual(summary['success_checks'], 14)
        self.assertTrue(all(r['sample_data'] is None for r in results))

    def test_unknown_category_rejected(self):
        with self.assertRaises(ValueError):
            IntegrityChecker(categories=['financial', 'astrology'])

    def test_order_total_mismatch(self):
        order = TestDataFactory.create_purchase_order(total_amount=Decimal('500.00'))
        TestDataFactory.create_order_item(order, quantity=Decimal('2'), unit_price=Decimal('100.00'))
        summary, results = self.run_checks('financial')
        result = result_for(results, 'financial_order_totals')
        self.assertEqual(result['severity'], 'warning')
        self.assertEqual(result['sample_data'][0]['difference'], Decimal('-300.00'))
        self.assertEqual(summary['overall_status'], 'needs_attention')

    def test_over_allocation_is_critical(self):
        order = TestDataFactory.create_purchase_order(total_amount=Decimal('1000.00'))
        TestDataFactory.create_installment(order, amount=Decimal('800.00'), installment_no=1)
        TestDataFactory.create_installment(order, amount=Decimal('300.00'), installment_no=2, status='draft')
        TestDataFactory.create_installment(order, amount=Decimal('900.00'), installment_no=3, status='cancelled')
        summary, results = self.run_checks('financial')
        result = result_for(results, 'financial_over_allocation')
        self.assertEqual(result['severity'], 'critical')
        self.assertEqual(result['sample_data'][0]['excess'], Decimal('100.00'))
        self.assertEqual(summary['overall_status'], 'critical')

    def test_stock_mismatch(self):
        product = TestDataFactory.create_product(current_stock=Decimal('7'))
        TestDataFactory.create_movement(product, quantity=Decimal('5'))
        _, results = self.run_checks('inventory')
        result = result_for(results, 'inventory_stock_mismatch')
        self.assertEqual(result['severity'], 'warning')
        self.assertEqual(result['sample_data'][0]['calculated_stock'], Decimal('5'))

    def test_duplicate_and_misordered_installments(self):
        order = TestDataFactory.create_purchase_order()
        TestDataFactory.create_installment(order, installment_no=1, created_at=days_ago(3))
        TestDataFactory.create_installment(order, installment_no=1, created_at=days_ago(2))
        _, results = self.run_checks('delivery')
        duplicates = result_for(results, 'delivery_duplicate_installments')
        self.assertEqual(duplicates['severity'], 'critical')
        self.assertEqual(duplicates['affected_records'], 2)
        ordering = result_for(results, 'delivery_installment_order')
        self.assertEqual(ordering['severity'], 'warning')
        self.assertEqual(ordering['sample_data'][0]['order_id'], order.id)

    def test_references_clean(self):
        order = TestDataFactory.create_purchase_order()
        TestDataFactory.create_order_item(order)
        _, results = self.run_checks('reference')
        self.assertEqual(result_for(results, 'reference_orphans')['severity'], 'success')

    def test_business_rules(self):
        TestDataFactory.create_product(current_stock=Decimal('-2'))
        TestDataFactory.create_transaction(transaction_date=timezone.localdate() + timedelta(days=5))
        TestDataFactory.create_purchase_order(total_amount=Decimal('0'))
        TestDataFactory.create_purchase_order(delivery_deadline=timezone.localdate() - timedelta(days=1))
        TestDataFactory.create_purchase_order(delivery_deadline=timezone.localdate() - timedelta(days=1),
                                              status='completed')
        _, results = self.run_checks('business_rule')
        for check_id in ('business_rule_negative_stock', 'business_rule_future_transactions',
                         'business_rule_zero_amount_orders', 'business_rule_overdue_orders'):
            result = result_for(results, check_id)
            self.assertEqual(result['severity'], 'warning', check_id)
            self.assertEqual(result['affected_records'], 1, check_id)

    def test_data_quality(self):
        product = TestDataFactory.create_product(product_code='ABC-1')
        TestDataFactory.create_product(product_code='abc-1', purchase_price=Decimal('-1.00'))
        order = TestDataFactory.create_purchase_order(partner=TestDataFactory.create_partner(is_active=False))
        txn = TestDataFactory.create_installment(order, installment_no=1)
        TestDataFactory.create_movement(product, txn=txn)
        TestDataFactory.create_movement(product, txn=txn)

        _, results = self.run_checks('data_quality')
        movements = result_for(results, 'data_quality_duplicate_movements')
        self.assertEqual(movements['severity'], 'warning')
        self.assertEqual(movements['affected_records'], 1)
        self.assertEqual(len(movements['sample_data'][0]['movement_ids']), 2)
        for check_id in ('data_quality_inactive_partners', 'data_quality_duplicate_codes',
                         'data_quality_negative_prices'):
            self.assertEqual(result_for(results, check_id)['severity'], 'info', check_id)

    def test_samples_limited_or_omitted(self):
        for _ in range(4):
            TestDataFactory.create_product(current_stock=Decimal('-1'))
        _, results = self.run_checks('business_rule', max_sample_records=2)
        result = result_for(results, 'business_rule_negative_stock')
        self.assertEqual(result['affected_records'], 4)
        self.assertEqual(len(result['sample_data']), 2)

        _, results = self.run_checks('business_rule', include_sample_data=False)
        self.assertIsNone(result_for(results, 'business_rule_negative_stock')['sample_data'])

    def test_failing_check_reported_and_others_continue(self):
        with mock.patch.object(IntegrityChecker, 'check_order_totals', side_effect=RuntimeError('boom')):
            summary, results = self.run_checks('financial')
        error = result_for(results, 'check_order_totals_error')
        self.assertEqual(error['severity'], 'critical')
        self.assertIn('boom', error['description'])
        self.assertEqual(result_for(results, 'financial_over_allocation')['severity'], 'success')
        self.assertEqual(summary['overall_status'], 'critical')

    def test_summarize_counts(self):
        results = [{'severity': s} for s in ('critical', 'warning', 'warning', 'info', 'success')]
        summary = IntegrityChecker.summarize(results, execution_time_ms=12)
        self.assertEqual(summary['total_checks'], 5)
        self.assertEqual(summary['critical_issues'], 1)
        self.assertEqual(summary['warning_issues'], 2)
        self.assertEqual(summary['info_issues'], 1)
        self.assertEqual(summary['success_checks'], 1)
        self.assertEqual(summary['execution_time_ms'], 12)
        summary = IntegrityChecker.summarize([{'severity': 'info'}])
        self.assertEqual(summary['overall_status'], 'healthy')


class CheckIntegrityCommandTests(TestCase):

    def test_text_output(self):
        TestDataFactory.create_product(current_stock=Decimal('-1'))
        out = StringIO()
        call_command('check_integrity', '--category', 'business_rule', stdout=out)
        output = out.getvalue()
        self.assertIn('DATA INTEGRITY CHECK', output)
        self.assertIn('[WARNING] business_rule: Negative stock', output)
        self.assertIn('Overall status: needs_attention', output)

    def test_json_output(self):
        out = StringIO()
        call_command('check_integrity', '--json', '--category', 'delivery', '--category', 'reference', stdout=out)
        data = json.loads(out.getvalue())
        self.assertEqual(data['summary']['total_checks'], 3)
        self.assertEqual({r['category'] for r in data['results']}, {'delivery', 'reference'})


class ReportAPITests(TestCase):
    """Test report endpoints"""

    def setUp(self):
        cache.clear()
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def test_requires_authentication(self):
        self.client.logout()
        response = self.client.get('/api/v1/system/health/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_system_health(self):
        TestDataFactory.create_purchase_order()
        response = self.client.get('/api/v1/system/health/', {'refresh': 'true'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['total_orders'], 1)

    def test_dashboard(self):
        TestDataFactory.create_product()
        response = self.client.get('/api/v1/reports/dashboard/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['total_products'], 1)

    def test_recent_updates_limit(self):
        for _ in range(3):
            TestDataFactory.create_product()
        response = self.client.get('/api/v1/reports/recent-updates/', {'limit': 2})
        self.assertEqual(len(response.data), 2)
        response = self.client.get('/api/v1/reports/recent-updates/', {'limit': 'many'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_integrity_check(self):
        response = self.client.get('/api/v1/reports/integrity/', {'category': 'financial,delivery'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['summary']['total_checks'], 4)
        self.assertEqual(response.data['summary']['overall_status'], 'healthy')

    def test_integrity_check_unknown_category(self):
        response = self.client.get('/api/v1/reports/integrity/', {'category': 'financial,astrology'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'VALIDATION_FAILED')
