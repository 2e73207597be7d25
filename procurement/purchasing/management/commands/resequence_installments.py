"""
Django management command to renumber installments by creation time
"""
from django.core.management.base import BaseCommand, CommandError

from procurement.purchasing.models import PurchaseOrder
from procurement.purchasing.repair import (
    resequence_installments, resequence_orders_with_duplicates, find_duplicate_installments,
    ROW_UPDATED, ROW_WOULD_UPDATE, ROW_FAILED,
)


class Command(BaseCommand):
    help = 'Renumber installments of a purchase order 1..N in creation order'

    def add_arguments(self, parser):
        target = parser.add_mutually_exclusive_group(required=True)
        target.add_argument(
            '--order-no',
            help='Order number to resequence (e.g. PO250301001)',
        )
        target.add_argument(
            '--all-duplicates',
            action='store_true',
            help='Resequence every order that has duplicate installment numbers',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show the new numbering without saving changes',
        )
        parser.add_argument(
            '--include-drafts',
            action='store_true',
            help='Number draft installments together with confirmed ones',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        include_drafts = options['include_drafts']
        if dry_run:
            self.stdout.write(self.style.WARNING("DRY RUN MODE: No changes will be saved."))

        if options.get('order_no'):
            try:
                order = PurchaseOrder.objects.get(order_no=options['order_no'])
            except PurchaseOrder.DoesNotExist:
                raise CommandError(f"Purchase order {options['order_no']} not found")
            reports = [resequence_installments(order, dry_run=dry_run, include_drafts=include_drafts)]
        else:
            groups = find_duplicate_installments()
            if not groups:
                self.stdout.write(self.style.SUCCESS("No duplicate installment numbers found."))
                return
            self.stdout.write(f"Found {len(groups)} duplicate installment numbers:")
            for group in groups:
                self.stdout.write(
                    f"  - {group['parent_order__order_no']}: installment #{group['installment_no']} x{group['count']}"
                )
            reports = resequence_orders_with_duplicates(dry_run=dry_run, include_drafts=include_drafts)

        total_updated = 0
        total_failed = 0
        for report in reports:
            self.print_report(report)
            total_updated += report['updated']
            total_failed += report['failed']

        self.stdout.write("")
        verb = 'would be renumbered' if dry_run else 'renumbered'
        self.stdout.write(self.style.SUCCESS(f"{total_updated} installments {verb} across {len(reports)} orders."))
        if total_failed:
            self.stdout.write(self.style.ERROR(f"{total_failed} installments could not be updated."))

    def print_report(self, report):
        self.stdout.write("")
        self.stdout.write("=" * 80)
        self.stdout.write(self.style.SUCCESS(f"ORDER {report['order_no']} (ID: {report['order_id']})"))
        self.stdout.write("=" * 80)
        if not report['rows']:
            self.stdout.write("  No installments to renumber.")
            return

        for row in report['rows']:
            line = (
                f"  {row['transaction_no']:<30} {row['status']:<10} {row['amount']:>14} "
                f"{row['created_at']:%Y-%m-%d %H:%M:%S}  #{row['stored_no']} -> #{row['expected_no']}"
            )
            if row['outcome'] == ROW_UPDATED:
                self.stdout.write(self.style.SUCCESS(f"{line}  updated"))
            elif row['outcome'] == ROW_WOULD_UPDATE:
                self.stdout.write(self.style.WARNING(f"{line}  would update"))
            elif row['outcome'] == ROW_FAILED:
                self.stdout.write(self.style.ERROR(f"{line}  failed: {row['error']}"))
            else:
                self.stdout.write(f"{line}  ok")
