from django.db import models
from django.db.models import Sum
from decimal import Decimal
from procurement.catalog.models import Product
from procurement.parties.models import Partner
from procurement.core.models import User, OrderManager


class PurchaseOrder(models.Model):
    """Purchase order placed with a supplier"""
    STATUS_CHOICES = [
        ('pending', 'Not Delivered'),
        ('partial', 'Partially Delivered'),
        ('completed', 'Delivered'),
        ('cancelled', 'Cancelled'),
    ]

    order_no = models.CharField(max_length=50, unique=True)
    partner = models.ForeignKey(Partner, on_delete=models.PROTECT, related_name='purchase_orders')
    order_date = models.DateField()
    delivery_deadline = models.DateField(null=True, blank=True)
    total_amount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0.00'))
    shipping_cost = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')
    memo = models.TextField(blank=True, null=True)
    assigned_manager = models.ForeignKey(OrderManager, on_delete=models.SET_NULL, null=True, blank=True, related_name='purchase_orders')
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='purchase_orders')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.order_no

    def get_items_total(self):
        """Sum of line totals"""
        return self.items.aggregate(total=Sum('total_amount'))['total'] or Decimal('0.00')

    def installments(self):
        """Purchase transactions recorded against this order"""
        return self.child_transactions.filter(transaction_type='purchase')

    def get_allocated_amount(self, statuses=('draft', 'confirmed', 'completed')):
        """Amount already recorded as installments"""
        return self.installments().filter(
            status__in=statuses
        ).aggregate(total=Sum('total_amount'))['total'] or Decimal('0.00')

    class Meta:
        db_table = 'purchase_orders'
        ordering = ['-order_date', '-created_at']
        indexes = [
            models.Index(fields=['status'], name='idx_po_status'),
            models.Index(fields=['partner', 'status'], name='idx_po_partner_status'),
            models.Index(fields=['-order_date', '-created_at'], name='idx_po_date_created'),
        ]


class PurchaseOrderItem(models.Model):
    """Purchase order line items"""
    purchase_order = models.ForeignKey(PurchaseOrder, on_delete=models.CASCADE, related_name='items')
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name='purchase_order_items')
    quantity = models.DecimalField(max_digits=12, decimal_places=3)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    total_amount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0.00'))
    created_at = models.DateTimeField(auto_now_add=True)

    def get_line_total(self):
        """Calculate line total"""
        return self.quantity * self.unit_price

    def save(self, *args, **kwargs):
        if not self.total_amount:
            self.total_amount = self.get_line_total().quantize(Decimal('0.01'))
        super().save(*args, **kwargs)

    class Meta:
        db_table = 'purchase_order_items'
        ordering = ['id']
        indexes = [
            models.Index(fields=['purchase_order', 'product'], name='idx_poitem_order_product'),
        ]


class Transaction(models.Model):
    """Purchase, sale or adjustment slip; installments point at a parent order"""
    TRANSACTION_TYPE_CHOICES = [
        ('purchase', 'Purchase'),
        ('sale', 'Sale'),
        ('adjustment', 'Adjustment'),
    ]

    STATUS_CHOICES = [
        ('draft', 'Draft'),
        ('confirmed', 'Confirmed'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
    ]

    transaction_no = models.CharField(max_length=50, unique=True)
    transaction_type = models.CharField(max_length=20, choices=TRANSACTION_TYPE_CHOICES, default='purchase')
    partner = models.ForeignKey(Partner, on_delete=models.SET_NULL, null=True, blank=True, related_name='transactions')
    parent_order = models.ForeignKey(PurchaseOrder, on_delete=models.CASCADE, null=True, blank=True, related_name='child_transactions')
    installment_no = models.PositiveIntegerField(null=True, blank=True)
    delivery_sequence = models.PositiveIntegerField(null=True, blank=True)
    transaction_date = models.DateField()
    due_date = models.DateField(null=True, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='draft')
    total_amount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0.00'))
    memo = models.TextField(blank=True, null=True)
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='transactions')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        if self.installment_no:
            return f"{self.transaction_no} (#{self.installment_no})"
        return self.transaction_no

    class Meta:
        db_table = 'transactions'
        ordering = ['-created_at']
        constraints = [
            # Checked at commit so renumbering inside one transaction can swap numbers.
            # Backends without deferrable constraints skip it; assignment is serialized by row lock.
            models.UniqueConstraint(
                fields=['parent_order', 'installment_no'],
                name='uniq_installment_no_per_order',
                deferrable=models.Deferrable.DEFERRED,
            ),
        ]
        indexes = [
            models.Index(fields=['parent_order', 'created_at'], name='idx_txn_parent_created'),
            models.Index(fields=['transaction_type', 'status'], name='idx_txn_type_status'),
        ]


class TransactionItem(models.Model):
    """Products delivered with a transaction"""
    transaction = models.ForeignKey(Transaction, on_delete=models.CASCADE, related_name='items')
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name='transaction_items')
    quantity = models.DecimalField(max_digits=12, decimal_places=3)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    total_amount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0.00'))

    def get_line_total(self):
        return self.quantity * self.unit_price

    class Meta:
        db_table = 'transaction_items'
        ordering = ['id']
