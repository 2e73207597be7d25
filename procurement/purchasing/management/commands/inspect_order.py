"""
Django management command to print everything known about one purchase order:
items, installments in creation order, numbering, balances and stock movements
"""
from django.core.management.base import BaseCommand, CommandError

from procurement.inventory.models import InventoryMovement
from procurement.purchasing.models import PurchaseOrder
from procurement.purchasing.repair import expected_numbering, find_duplicate_installments
from procurement.purchasing.services import get_order_installment_summary, calculate_delivery_status


class Command(BaseCommand):
    help = 'Show items, installments, numbering and balances of a purchase order'

    def add_arguments(self, parser):
        parser.add_argument(
            '--order-no',
            required=True,
            help='Order number to inspect',
        )

    def handle(self, *args, **options):
        try:
            order = PurchaseOrder.objects.select_related('partner', 'assigned_manager').get(
                order_no=options['order_no']
            )
        except PurchaseOrder.DoesNotExist:
            raise CommandError(f"Purchase order {options['order_no']} not found")

        self.stdout.write("=" * 80)
        self.stdout.write(self.style.SUCCESS(f"PURCHASE ORDER {order.order_no}"))
        self.stdout.write("=" * 80)
        self.stdout.write(f"ID: {order.id}")
        self.stdout.write(f"Supplier: {order.partner.name}")
        self.stdout.write(f"Order date: {order.order_date}")
        self.stdout.write(f"Delivery deadline: {order.delivery_deadline or '-'}")
        self.stdout.write(f"Status: {order.status}")
        self.stdout.write(f"Total amount: {order.total_amount}")
        if order.assigned_manager:
            self.stdout.write(f"Manager: {order.assigned_manager.name}")
        self.stdout.write("")

        self.stdout.write(self.style.SUCCESS("ITEMS"))
        items = order.items.select_related('product').order_by('id')
        if not items:
            self.stdout.write("  No items.")
        for item in items:
            self.stdout.write(
                f"  {item.product.product_code:<15} {item.product.name:<30} "
                f"qty {item.quantity} x {item.unit_price} = {item.total_amount}"
            )
        self.stdout.write(f"  Items total: {order.get_items_total()}")
        self.stdout.write("")

        self.stdout.write(self.style.SUCCESS("INSTALLMENTS (creation order)"))
        installments = order.installments().prefetch_related('items').order_by('created_at', 'id')
        if not installments:
            self.stdout.write("  No installments.")
        for txn in installments:
            self.stdout.write(
                f"  #{txn.installment_no or '-':<4} {txn.transaction_no:<30} {txn.status:<10} "
                f"{txn.total_amount:>14}  {txn.created_at:%Y-%m-%d %H:%M:%S}  {txn.memo or ''}"
            )
        self.stdout.write("")

        self.stdout.write(self.style.SUCCESS("NUMBERING (confirmed and draft, amount > 0)"))
        numbering = expected_numbering(order, include_drafts=True)
        for txn, stored, expected in numbering:
            line = f"  {txn.transaction_no:<30} stored #{stored}  expected #{expected}"
            if stored == expected:
                self.stdout.write(line)
            else:
                self.stdout.write(self.style.WARNING(f"{line}  MISMATCH"))
        duplicates = find_duplicate_installments(order)
        for group in duplicates:
            self.stdout.write(self.style.ERROR(
                f"  Installment #{group['installment_no']} is used {group['count']} times"
            ))
        if not duplicates and all(stored == expected for _, stored, expected in numbering):
            self.stdout.write(self.style.SUCCESS("  Numbering is consistent."))
        self.stdout.write("")

        summary = get_order_installment_summary(order)
        delivery = calculate_delivery_status(order)
        self.stdout.write(self.style.SUCCESS("BALANCES"))
        self.stdout.write(f"  Allocated: {summary['allocated_total']}")
        self.stdout.write(f"  Remaining: {summary['remaining_amount']}")
        self.stdout.write(f"  Completion: {summary['completion_rate']}%")
        self.stdout.write(f"  Progress: {summary['status']}")
        self.stdout.write(f"  Delivery: {delivery['status']}")
        self.stdout.write(f"  Integrity: {summary['summary_info']['integrity_status']}")
        if summary['allocated_total'] > order.total_amount:
            self.stdout.write(self.style.ERROR("  Installments exceed the order total."))
        self.stdout.write("")

        self.stdout.write(self.style.SUCCESS("INVENTORY MOVEMENTS"))
        movements = InventoryMovement.objects.filter(
            transaction__parent_order=order
        ).select_related('product', 'transaction').order_by('created_at', 'id')
        if not movements:
            self.stdout.write("  No movements.")
        for movement in movements:
            self.stdout.write(
                f"  [{movement.created_at:%Y-%m-%d %H:%M:%S}] {movement.movement_type.upper():<3} "
                f"{movement.product.product_code:<15} qty {movement.quantity}  "
                f"{movement.transaction.transaction_no}"
            )
