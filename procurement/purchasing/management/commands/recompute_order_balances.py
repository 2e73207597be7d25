"""
Django management command to recompute purchase order status from installment
totals and report orders whose installments exceed the order amount
"""
from django.core.management.base import BaseCommand
from django.db import transaction

from procurement.core.cache_signals import suspend_cache_signals
from procurement.purchasing.models import PurchaseOrder
from procurement.purchasing.repair import find_over_allocated_orders
from procurement.purchasing.services import refresh_order_status, calculate_remaining_amount


class Command(BaseCommand):
    help = 'Recompute order status and remaining balance from installments'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Perform a dry run without saving changes',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        if dry_run:
            self.stdout.write(self.style.WARNING("DRY RUN MODE: No changes will be saved."))

        orders = PurchaseOrder.objects.exclude(status='cancelled').order_by('id')
        self.stdout.write(f"Recomputing balances for {orders.count()} orders...")

        changed = 0
        with suspend_cache_signals(), transaction.atomic():
            for order in orders:
                old_status = order.status
                new_status = refresh_order_status(order)
                allocated = order.get_allocated_amount()
                remaining = calculate_remaining_amount(order.total_amount, allocated)
                if new_status != old_status:
                    changed += 1
                    self.stdout.write(self.style.SUCCESS(
                        f"  {order.order_no}: {old_status} -> {new_status} "
                        f"(allocated {allocated}, remaining {remaining})"
                    ))
                elif options['verbosity'] > 1:
                    self.stdout.write(f"  {order.order_no}: {new_status} (remaining {remaining})")

            if dry_run:
                transaction.set_rollback(True)

        over_allocated = find_over_allocated_orders()
        if over_allocated:
            self.stdout.write("")
            self.stdout.write(self.style.ERROR(f"{len(over_allocated)} orders have installments above the order total:"))
            for row in over_allocated:
                self.stdout.write(
                    f"  - {row['order_no']}: total {row['total_amount']}, "
                    f"allocated {row['allocated_total']}, excess {row['allocated_total'] - row['total_amount']}"
                )

        self.stdout.write("")
        if dry_run:
            self.stdout.write(self.style.WARNING(f"Dry run complete. {changed} orders would change status."))
        else:
            self.stdout.write(self.style.SUCCESS(f"Balance recompute complete. {changed} orders updated."))
