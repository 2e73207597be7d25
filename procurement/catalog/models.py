from django.db import models
from decimal import Decimal
from procurement.parties.models import Partner


class Product(models.Model):
    """Products that can be ordered and stocked"""
    product_code = models.CharField(max_length=50, unique=True)
    name = models.CharField(max_length=200)
    category = models.CharField(max_length=100, blank=True)
    purchase_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    selling_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    # Cached stock level, derived from inventory movements
    current_stock = models.DecimalField(max_digits=12, decimal_places=3, default=Decimal('0.000'))
    min_stock_level = models.DecimalField(max_digits=12, decimal_places=3, default=Decimal('0.000'))
    main_supplier = models.ForeignKey(Partner, on_delete=models.SET_NULL, null=True, blank=True, related_name='supplied_products')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.name} ({self.product_code})"

    @property
    def is_low_stock(self):
        return self.current_stock <= self.min_stock_level

    class Meta:
        db_table = 'products'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['category'], name='idx_product_category'),
            models.Index(fields=['-updated_at'], name='idx_product_updated'),
        ]
