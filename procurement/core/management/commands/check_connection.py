"""
Django management command to verify database and cache connectivity.

Usage:
    python manage.py check_connection
"""
from django.core.management.base import BaseCommand, CommandError
from django.core.cache import cache
from django.conf import settings
from django.db import connection, DatabaseError

from procurement.core.errors import describe_database_error
from procurement.catalog.models import Product
from procurement.inventory.models import InventoryMovement
from procurement.parties.models import Partner
from procurement.purchasing.models import PurchaseOrder, Transaction

CHECKED_MODELS = (Partner, Product, PurchaseOrder, Transaction, InventoryMovement)


class Command(BaseCommand):
    help = 'Check that the database and cache are reachable and the tables exist'

    def handle(self, *args, **options):
        self.stdout.write("=" * 60)
        self.stdout.write(self.style.SUCCESS("Connection Check"))
        self.stdout.write("=" * 60)

        db = settings.DATABASES['default']
        self.stdout.write(f"\n1. Database: {db['ENGINE']} / {db.get('NAME')}")
        try:
            with connection.cursor() as cursor:
                cursor.execute('SELECT 1')
                cursor.fetchone()
            self.stdout.write(self.style.SUCCESS("   Connection: OK"))
        except DatabaseError as e:
            self.stdout.write(self.style.ERROR(f"   Connection failed: {e}"))
            self.stdout.write(self.style.ERROR(f"   Hint: {describe_database_error(e)}"))
            raise CommandError('Database is not reachable')

        self.stdout.write("\n2. Tables:")
        failures = 0
        for model in CHECKED_MODELS:
            table = model._meta.db_table
            try:
                count = model.objects.count()
                self.stdout.write(self.style.SUCCESS(f"   {table}: {count} rows"))
            except DatabaseError as e:
                failures += 1
                self.stdout.write(self.style.ERROR(f"   {table}: {e}"))
                self.stdout.write(self.style.ERROR(f"   Hint: {describe_database_error(e)}"))

        self.stdout.write(f"\n3. Cache: {settings.CACHES['default']['BACKEND']}")
        cache.set('connection_check', 'ok', 10)
        if cache.get('connection_check') == 'ok':
            self.stdout.write(self.style.SUCCESS("   Cache SET/GET: OK"))
        else:
            self.stdout.write(self.style.WARNING("   Cache SET/GET: value not returned"))
        cache.delete('connection_check')

        self.stdout.write("")
        if failures:
            raise CommandError(f'{failures} tables could not be read')
        self.stdout.write(self.style.SUCCESS("All checks passed."))
