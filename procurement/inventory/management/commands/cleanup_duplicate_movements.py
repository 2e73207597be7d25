"""
Django management command to remove inventory movements recorded twice for
the same transaction and product
"""
from datetime import datetime, time, timedelta

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from procurement.catalog.models import Product
from procurement.core.cache_signals import suspend_cache_signals
from procurement.inventory.services import cleanup_duplicate_movements, sync_product_stock


class Command(BaseCommand):
    help = 'Remove duplicate inventory movements, keeping the earliest of each group'

    def add_arguments(self, parser):
        scope = parser.add_mutually_exclusive_group()
        scope.add_argument(
            '--date',
            help='Only movements created on this date, YYYY-MM-DD (default: today)',
        )
        scope.add_argument(
            '--all-dates',
            action='store_true',
            help='Check movements of every date',
        )
        parser.add_argument(
            '--movement-type',
            choices=['in', 'out', 'any'],
            default='in',
            help='Movement type to check (default: in)',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='List duplicates without deleting them',
        )
        parser.add_argument(
            '--recalculate-stock',
            action='store_true',
            help='Recompute current stock of affected products afterwards',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        movement_type = None if options['movement_type'] == 'any' else options['movement_type']

        since = until = None
        if not options['all_dates']:
            if options.get('date'):
                try:
                    day = datetime.strptime(options['date'], '%Y-%m-%d').date()
                except ValueError:
                    raise CommandError(f"Invalid date '{options['date']}', expected YYYY-MM-DD")
            else:
                day = timezone.localdate()
            since = timezone.make_aware(datetime.combine(day, time.min))
            until = since + timedelta(days=1)

        if dry_run:
            self.stdout.write(self.style.WARNING("DRY RUN MODE: No changes will be saved."))
        scope_label = 'all dates' if since is None else since.date().isoformat()
        self.stdout.write(f"Checking {options['movement_type']} movements for {scope_label}...")

        with suspend_cache_signals():
            report = cleanup_duplicate_movements(
                movement_type=movement_type, since=since, until=until, dry_run=dry_run
            )

        if not report['groups']:
            self.stdout.write(self.style.SUCCESS("No duplicate movements found."))
            return

        for group in report['groups']:
            line = (
                f"  transaction {group['transaction_id']} / product {group['product_id']}: "
                f"keep {group['kept_id']}, remove {group['deleted_ids']}"
            )
            if group['error']:
                self.stdout.write(self.style.ERROR(f"{line}  failed: {group['error']}"))
            else:
                self.stdout.write(line)

        self.stdout.write("")
        verb = 'would be removed' if dry_run else 'removed'
        self.stdout.write(self.style.SUCCESS(
            f"{report['deleted_count']} movements {verb} from {len(report['groups'])} groups."
        ))
        if report['failed_groups']:
            self.stdout.write(self.style.ERROR(f"{report['failed_groups']} groups could not be cleaned."))

        if options['recalculate_stock'] and report['affected_product_ids']:
            products = Product.objects.filter(id__in=report['affected_product_ids']).order_by('id')
            with suspend_cache_signals():
                changed = sync_product_stock(products, dry_run=dry_run)
            for product, old, new in changed:
                self.stdout.write(f"  {product.product_code}: stock {old} -> {new}")
            self.stdout.write(self.style.SUCCESS(f"Stock recalculated for {len(changed)} products."))
