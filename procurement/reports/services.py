"""
Report queries: system health, dashboard statistics, recent product updates
and the data integrity checker.
"""
import logging
import time
from decimal import Decimal

from django.db.models import Count, DecimalField, ExpressionWrapper, F, Q, Sum
from django.db.models.functions import Lower
from django.utils import timezone

from procurement.catalog.models import Product
from procurement.core.cache_utils import (
    cached_query, SYSTEM_HEALTH_CACHE_TTL, DASHBOARD_STATS_CACHE_TTL, REPORTS_CACHE_TTL
)
from procurement.core.models import OrderManager
from procurement.inventory.models import InventoryMovement
from procurement.inventory.services import find_stock_mismatches, find_duplicate_movements
from procurement.purchasing.models import PurchaseOrder, PurchaseOrderItem, Transaction
from procurement.purchasing.repair import (
    find_duplicate_installments, find_misnumbered_orders, find_over_allocated_orders
)

logger = logging.getLogger(__name__)

AMOUNT_TOLERANCE = Decimal('0.01')


@cached_query(cache_ttl=SYSTEM_HEALTH_CACHE_TTL, key_prefix='system_health')
def get_system_health():
    """Order and installment counters plus the number of known anomalies"""
    orders = PurchaseOrder.objects.aggregate(
        total=Count('id'),
        completed=Count('id', filter=Q(status='completed')),
        active=Count('id', filter=Q(status__in=['pending', 'partial'])),
    )
    installments = Transaction.objects.filter(
        transaction_type='purchase', parent_order__isnull=False
    ).aggregate(
        total=Count('id'),
        confirmed=Count('id', filter=Q(status='confirmed')),
        draft=Count('id', filter=Q(status='draft')),
    )
    anomaly_count = (
        len(find_duplicate_installments())
        + len(find_duplicate_movements())
        + len(find_over_allocated_orders())
    )
    return {
        'total_orders': orders['total'],
        'completed_orders': orders['completed'],
        'active_orders': orders['active'],
        'total_installments': installments['total'],
        'confirmed_installments': installments['confirmed'],
        'draft_installments': installments['draft'],
        'active_staff': OrderManager.objects.filter(is_active=True).count(),
        'anomaly_count': anomaly_count,
        'last_updated': timezone.now().isoformat(),
    }


@cached_query(cache_ttl=DASHBOARD_STATS_CACHE_TTL, key_prefix='dashboard_stats')
def get_dashboard_stats():
    """Product count, low stock count and stock valuation"""
    value_field = DecimalField(max_digits=20, decimal_places=5)
    totals = Product.objects.aggregate(
        total_products=Count('id'),
        low_stock_count=Count('id', filter=Q(current_stock__lte=F('min_stock_level'))),
        total_stock_value=Sum(
            ExpressionWrapper(F('current_stock') * F('purchase_price'), output_field=value_field)
        ),
        total_potential_revenue=Sum(
            ExpressionWrapper(F('current_stock') * F('selling_price'), output_field=value_field)
        ),
    )
    return {
        'total_products': totals['total_products'],
        'low_stock_count': totals['low_stock_count'],
        'total_stock_value': (totals['total_stock_value'] or Decimal('0')).quantize(Decimal('0.01')),
        'total_potential_revenue': (totals['total_potential_revenue'] or Decimal('0')).quantize(Decimal('0.01')),
    }


@cached_query(cache_ttl=REPORTS_CACHE_TTL, key_prefix='recent_updates')
def get_recent_updates(limit=10):
    """Most recently changed products"""
    products = Product.objects.order_by('-updated_at', '-id')[:limit]
    return [
        {
            'id': product.id,
            'name': product.name,
            'product_code': product.product_code,
            'current_stock': product.current_stock,
            'min_stock_level': product.min_stock_level,
            'is_low_stock': product.is_low_stock,
            'updated_at': product.updated_at.isoformat(),
        }
        for product in products
    ]


SEVERITY_CRITICAL = 'critical'
SEVERITY_WARNING = 'warning'
SEVERITY_INFO = 'info'
SEVERITY_SUCCESS = 'success'

STATUS_HEALTHY = 'healthy'
STATUS_NEEDS_ATTENTION = 'needs_attention'
STATUS_CRITICAL = 'critical'


class IntegrityChecker:
    """
    Runs consistency checks over orders, installments, stock and references.

    Each check produces one result. A check that finds nothing reports
    ``success``; a check that raises reports a ``critical`` error result and
    the remaining checks still run.

    Usage:
        summary, results = IntegrityChecker(categories=['delivery']).run()
    """

    CATEGORIES = ('financial', 'inventory', 'delivery', 'reference', 'business_rule', 'data_quality')

    CHECKS = {
        'financial': ('check_order_totals', 'check_over_allocation'),
        'inventory': ('check_stock_levels',),
        'delivery': ('check_duplicate_installments', 'check_installment_order'),
        'reference': ('check_orphaned_references',),
        'business_rule': (
            'check_negative_stock', 'check_future_transactions',
            'check_zero_amount_orders', 'check_overdue_orders',
        ),
        'data_quality': (
            'check_duplicate_movements', 'check_inactive_partners',
            'check_duplicate_product_codes', 'check_negative_prices',
        ),
    }

    def __init__(self, categories=None, include_sample_data=True, max_sample_records=5):
        categories = list(categories) if categories else list(self.CATEGORIES)
        unknown = [c for c in categories if c not in self.CATEGORIES]
        if unknown:
            raise ValueError(f"Unknown integrity category: {', '.join(unknown)}")
        self.categories = categories
        self.include_sample_data = include_sample_data
        self.max_sample_records = max_sample_records

    def run(self):
        """Run every enabled category and return (summary, results)"""
        started = time.monotonic()
        results = []
        for category in self.categories:
            results.extend(self.run_category(category))
        execution_time_ms = int((time.monotonic() - started) * 1000)
        summary = self.summarize(results, execution_time_ms)
        logger.info(
            f"Integrity check finished: {summary['overall_status']} "
            f"({summary['critical_issues']} critical, {summary['warning_issues']} warning) "
            f"in {execution_time_ms}ms"
        )
        return summary, results

    def run_category(self, category):
        if category not in self.CATEGORIES:
            raise ValueError(f"Unknown integrity category: {category}")
        results = []
        for check_name in self.CHECKS[category]:
            check = getattr(self, check_name)
            try:
                results.append(check())
            except Exception as e:
                logger.exception(f"Integrity check {check_name} failed")
                results.append(self._result(
                    f'{check_name}_error', category, SEVERITY_CRITICAL,
                    f'Check failed: {check_name}',
                    f'The check could not be completed: {e}',
                    suggested_actions=['Check the database connection', 'Review the server log for details'],
                ))
        return results

    @staticmethod
    def summarize(results, execution_time_ms=0):
        counts = {severity: 0 for severity in (SEVERITY_CRITICAL, SEVERITY_WARNING, SEVERITY_INFO, SEVERITY_SUCCESS)}
        for result in results:
            counts[result['severity']] += 1

        if counts[SEVERITY_CRITICAL]:
            overall_status = STATUS_CRITICAL
        elif counts[SEVERITY_WARNING]:
            overall_status = STATUS_NEEDS_ATTENTION
        else:
            overall_status = STATUS_HEALTHY

        return {
            'total_checks': len(results),
            'critical_issues': counts[SEVERITY_CRITICAL],
            'warning_issues': counts[SEVERITY_WARNING],
            'info_issues': counts[SEVERITY_INFO],
            'success_checks': counts[SEVERITY_SUCCESS],
            'overall_status': overall_status,
            'last_check_at': timezone.now().isoformat(),
            'execution_time_ms': execution_time_ms,
        }

    def _result(self, check_id, category, severity, title, description,
                affected_records=0, sample_data=None, suggested_actions=None):
        return {
            'id': f'{check_id}_{int(time.time() * 1000)}',
            'category': category,
            'severity': severity,
            'title': title,
            'description': description,
            'affected_records': affected_records,
            'sample_data': self._sample(sample_data) if sample_data else None,
            'suggested_actions': suggested_actions or [],
            'checked_at': timezone.now().isoformat(),
        }

    def _sample(self, rows):
        if not self.include_sample_data:
            return None
        return list(rows)[:self.max_sample_records]

    def _outcome(self, check_id, category, rows, severity, title, description, suggested_actions,
                 ok_title, ok_description, affected_records=None):
        """Issue result when ``rows`` is non-empty, success result otherwise"""
        if rows:
            return self._result(
                check_id, category, severity, title, description,
                affected_records=len(rows) if affected_records is None else affected_records,
                sample_data=rows,
                suggested_actions=suggested_actions,
            )
        return self._result(check_id, category, SEVERITY_SUCCESS, ok_title, ok_description)

    # Financial

    def check_order_totals(self):
        orders = (
            PurchaseOrder.objects.exclude(status='cancelled')
            .annotate(items_total=Sum('items__total_amount'), item_count=Count('items'))
            .filter(item_count__gt=0)
            .order_by('id')
        )
        rows = []
        for order in orders:
            difference = order.items_total - order.total_amount
            if abs(difference) > AMOUNT_TOLERANCE:
                rows.append({
                    'purchase_order_id': order.id,
                    'order_no': order.order_no,
                    'calculated_total': order.items_total,
                    'stored_total': order.total_amount,
                    'difference': difference,
                    'item_count': order.item_count,
                })
        return self._outcome(
            'financial_order_totals', 'financial', rows, SEVERITY_WARNING,
            'Order totals differ from their items',
            f'{len(rows)} purchase orders have a total that does not match the sum of their items',
            ['Recalculate the order items', 'Correct the order total'],
            'Order totals match their items', 'Every order total matches the sum of its items',
        )

    def check_over_allocation(self):
        rows = [
            dict(row, excess=row['allocated_total'] - row['total_amount'])
            for row in find_over_allocated_orders()
        ]
        return self._outcome(
            'financial_over_allocation', 'financial', rows, SEVERITY_CRITICAL,
            'Installments exceed the order total',
            f'{len(rows)} purchase orders have installments adding up to more than the order amount',
            ['Review the installments of the listed orders', 'Delete or reduce the excess installments'],
            'Installment allocation', 'No order is allocated beyond its total',
        )

    # Inventory

    def check_stock_levels(self):
        rows = find_stock_mismatches()
        rows.sort(key=lambda row: abs(row['difference']), reverse=True)
        return self._outcome(
            'inventory_stock_mismatch', 'inventory', rows, SEVERITY_WARNING,
            'Stock levels differ from movements',
            f'{len(rows)} products have a stored stock that does not match their movement history',
            ['Run sync_product_stock', 'Review recent inventory movements'],
            'Stock levels', 'Stored stock matches movement totals for every product',
        )

    # Delivery

    def check_duplicate_installments(self):
        rows = find_duplicate_installments()
        return self._outcome(
            'delivery_duplicate_installments', 'delivery', rows, SEVERITY_CRITICAL,
            'Duplicate installment numbers',
            f'{len(rows)} installment numbers are used more than once within an order',
            ['Run resequence_installments --all-duplicates --dry-run', 'Apply the resequence after review'],
            'Installment numbers', 'Installment numbers are unique within every order',
            affected_records=sum(row['count'] for row in rows),
        )

    def check_installment_order(self):
        rows = [
            {'order_id': row['order_id'], 'order_no': row['order_no'], 'mismatches': len(row['mismatches'])}
            for row in find_misnumbered_orders()
        ]
        return self._outcome(
            'delivery_installment_order', 'delivery', rows, SEVERITY_WARNING,
            'Installments out of creation order',
            f'{len(rows)} orders have confirmed installments not numbered 1..N by creation time',
            ['Inspect the order with inspect_order', 'Run resequence_installments for the order'],
            'Installment order', 'Confirmed installments follow creation order',
        )

    # Reference

    def check_orphaned_references(self):
        references = [
            ('purchase_order_items', 'purchase_order_id', PurchaseOrderItem.objects.exclude(
                purchase_order_id__in=PurchaseOrder.objects.values('id'))),
            ('purchase_order_items', 'product_id', PurchaseOrderItem.objects.exclude(
                product_id__in=Product.objects.values('id'))),
            ('transactions', 'parent_order_id', Transaction.objects.filter(parent_order_id__isnull=False).exclude(
                parent_order_id__in=PurchaseOrder.objects.values('id'))),
            ('inventory_movements', 'product_id', InventoryMovement.objects.exclude(
                product_id__in=Product.objects.values('id'))),
            ('inventory_movements', 'transaction_id', InventoryMovement.objects.filter(transaction_id__isnull=False).exclude(
                transaction_id__in=Transaction.objects.values('id'))),
        ]
        rows = []
        for table, column, queryset in references:
            ids = list(queryset.values_list('id', flat=True)[:self.max_sample_records])
            if ids:
                rows.append({
                    'table_name': table,
                    'foreign_key_column': column,
                    'orphaned_records': queryset.count(),
                    'sample_orphaned_ids': ids,
                })
        return self._outcome(
            'reference_orphans', 'reference', rows, SEVERITY_CRITICAL,
            'Rows pointing at missing records',
            f'{len(rows)} foreign key columns reference rows that no longer exist',
            ['Restore the missing parent rows', 'Delete the orphaned rows after review'],
            'Foreign key references', 'Every reference points at an existing row',
            affected_records=sum(row['orphaned_records'] for row in rows),
        )

    # Business rules

    def _count_rule(self, check_id, queryset, title, description, suggested_actions, ok_description):
        count = queryset.count()
        sample = list(queryset.values(*self._rule_fields(queryset))[:self.max_sample_records]) if count else []
        return self._outcome(
            check_id, 'business_rule', sample, SEVERITY_WARNING,
            title, description.format(count=count), suggested_actions,
            title, ok_description, affected_records=count,
        )

    @staticmethod
    def _rule_fields(queryset):
        if queryset.model is Product:
            return ('id', 'product_code', 'name', 'current_stock')
        if queryset.model is Transaction:
            return ('id', 'transaction_no', 'transaction_date', 'status')
        return ('id', 'order_no', 'order_date', 'total_amount', 'status')

    def check_negative_stock(self):
        return self._count_rule(
            'business_rule_negative_stock', Product.objects.filter(current_stock__lt=0),
            'Negative stock', '{count} products have a stock level below zero',
            ['Review outbound movements of the listed products', 'Record a stock adjustment'],
            'No product has negative stock',
        )

    def check_future_transactions(self):
        return self._count_rule(
            'business_rule_future_transactions',
            Transaction.objects.filter(transaction_date__gt=timezone.localdate()),
            'Future-dated transactions', '{count} transactions are dated in the future',
            ['Correct the transaction dates'],
            'No transaction is dated in the future',
        )

    def check_zero_amount_orders(self):
        return self._count_rule(
            'business_rule_zero_amount_orders',
            PurchaseOrder.objects.filter(total_amount__lte=0).exclude(status='cancelled'),
            'Orders without an amount', '{count} purchase orders have a zero or negative total',
            ['Enter the order amount', 'Cancel the order if it is not needed'],
            'Every open order has an amount',
        )

    def check_overdue_orders(self):
        return self._count_rule(
            'business_rule_overdue_orders',
            PurchaseOrder.objects.filter(
                delivery_deadline__lt=timezone.localdate(),
                status__in=['pending', 'partial'],
            ),
            'Overdue orders', '{count} purchase orders are past their delivery deadline and not completed',
            ['Contact the supplier', 'Update the delivery deadline'],
            'No open order is past its deadline',
        )

    # Data quality

    def check_duplicate_movements(self):
        groups = find_duplicate_movements()
        rows = [
            {
                'transaction_id': group['transaction_id'],
                'product_id': group['product_id'],
                'count': group['count'],
                'movement_ids': [movement.id for movement in group['movements']],
            }
            for group in groups
        ]
        return self._outcome(
            'data_quality_duplicate_movements', 'data_quality', rows, SEVERITY_WARNING,
            'Duplicate inventory movements',
            f'{len(rows)} transaction and product pairs have more than one movement',
            ['Run cleanup_duplicate_movements --all-dates --dry-run', 'Apply the cleanup with --recalculate-stock'],
            'Inventory movements', 'No transaction and product pair is recorded twice',
            affected_records=sum(row['count'] - 1 for row in rows),
        )

    def check_inactive_partners(self):
        rows = list(
            PurchaseOrder.objects.filter(status__in=['pending', 'partial'], partner__is_active=False)
            .values('id', 'order_no', 'partner_id', 'partner__name')
            .order_by('id')
        )
        return self._outcome(
            'data_quality_inactive_partners', 'data_quality', rows, SEVERITY_INFO,
            'Open orders with inactive suppliers',
            f'{len(rows)} open purchase orders belong to an inactive supplier',
            ['Reactivate the supplier', 'Cancel or reassign the orders'],
            'Supplier status', 'Every open order belongs to an active supplier',
        )

    def check_duplicate_product_codes(self):
        rows = list(
            Product.objects.annotate(code=Lower('product_code'))
            .values('code')
            .annotate(duplicate_count=Count('id'))
            .filter(duplicate_count__gt=1)
            .order_by('code')
        )
        return self._outcome(
            'data_quality_duplicate_codes', 'data_quality', rows, SEVERITY_INFO,
            'Product codes differing only by case',
            f'{len(rows)} product codes are used by more than one product',
            ['Rename one of the products', 'Merge the duplicated products'],
            'Product codes', 'Product codes are unique regardless of case',
        )

    def check_negative_prices(self):
        rows = list(
            Product.objects.filter(Q(purchase_price__lt=0) | Q(selling_price__lt=0))
            .values('id', 'product_code', 'purchase_price', 'selling_price')
            .order_by('id')
        )
        return self._outcome(
            'data_quality_negative_prices', 'data_quality', rows, SEVERITY_INFO,
            'Negative prices',
            f'{len(rows)} products have a negative purchase or selling price',
            ['Correct the product prices'],
            'Product prices', 'No product has a negative price',
        )
