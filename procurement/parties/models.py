from django.db import models


class Partner(models.Model):
    """Business partners: suppliers, customers, or both"""
    PARTNER_TYPE_CHOICES = [
        ('supplier', 'Supplier'),
        ('customer', 'Customer'),
        ('both', 'Supplier and Customer'),
    ]

    partner_code = models.CharField(max_length=50, unique=True)
    name = models.CharField(max_length=200)
    partner_type = models.CharField(max_length=20, choices=PARTNER_TYPE_CHOICES, default='supplier')
    contact_person = models.CharField(max_length=200, blank=True)
    phone = models.CharField(max_length=20, blank=True)
    email = models.EmailField(blank=True)
    postal_code = models.CharField(max_length=10, blank=True)
    address = models.TextField(blank=True)
    payment_terms = models.PositiveIntegerField(default=30, help_text='Payment terms in days')
    notes = models.TextField(blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name

    @property
    def is_supplier(self):
        return self.partner_type in ('supplier', 'both')

    class Meta:
        db_table = 'partners'
        ordering = ['name']
        indexes = [
            models.Index(fields=['partner_type', 'is_active'], name='idx_partner_type_active'),
        ]
