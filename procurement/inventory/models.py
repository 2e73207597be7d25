from django.db import models
from decimal import Decimal
from procurement.catalog.models import Product
from procurement.core.models import User


class InventoryMovement(models.Model):
    """Stock in/out record; at most one per (transaction, product)"""
    MOVEMENT_TYPE_CHOICES = [
        ('in', 'Stock In'),
        ('out', 'Stock Out'),
    ]

    transaction = models.ForeignKey('purchasing.Transaction', on_delete=models.SET_NULL, null=True, blank=True, related_name='inventory_movements')
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name='inventory_movements')
    movement_type = models.CharField(max_length=10, choices=MOVEMENT_TYPE_CHOICES)
    quantity = models.DecimalField(max_digits=12, decimal_places=3)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    note = models.TextField(blank=True, null=True)
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='inventory_movements')
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.movement_type} {self.quantity} x {self.product_id}"

    @property
    def signed_quantity(self):
        return self.quantity if self.movement_type == 'in' else -self.quantity

    class Meta:
        db_table = 'inventory_movements'
        ordering = ['-created_at']
        # Uniqueness per (transaction, product) is enforced in services.record_movement;
        # legacy duplicates are removed by the cleanup_duplicate_movements command
        indexes = [
            models.Index(fields=['transaction', 'product'], name='idx_move_txn_product'),
            models.Index(fields=['product', 'movement_type'], name='idx_move_product_type'),
            models.Index(fields=['-created_at'], name='idx_move_created'),
        ]
