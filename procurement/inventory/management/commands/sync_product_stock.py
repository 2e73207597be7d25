"""
Django management command to rewrite product stock from inventory movements
"""
from django.core.management.base import BaseCommand

from procurement.core.cache_signals import suspend_cache_signals
from procurement.inventory.services import sync_product_stock


class Command(BaseCommand):
    help = 'Recompute current stock of every product from its inventory movements'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show differences without saving changes',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        if dry_run:
            self.stdout.write(self.style.WARNING("DRY RUN MODE: No changes will be saved."))

        with suspend_cache_signals():
            changed = sync_product_stock(dry_run=dry_run)

        if not changed:
            self.stdout.write(self.style.SUCCESS("Stock is in sync for every product."))
            return

        for product, old, new in changed:
            self.stdout.write(f"  {product.name} ({product.product_code}): {old} -> {new} ({new - old:+})")

        self.stdout.write("")
        if dry_run:
            self.stdout.write(self.style.WARNING(f"Dry run complete. {len(changed)} products would be updated."))
        else:
            self.stdout.write(self.style.SUCCESS(f"Stock updated for {len(changed)} products."))
