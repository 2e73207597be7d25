from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    """Extended user model with additional fields"""
    phone = models.CharField(max_length=20, blank=True, null=True)
    department = models.CharField(max_length=100, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'users'


class AuditLog(models.Model):
    """Audit log for critical operations"""
    ACTION_CHOICES = [
        ('create', 'Create'),
        ('update', 'Update'),
        ('delete', 'Delete'),
        ('installment_create', 'Installment Created'),
        ('installment_confirm', 'Installment Confirmed'),
        ('installment_delete', 'Installment Deleted'),
        ('installment_resequence', 'Installment Renumbered'),
        ('movement_create', 'Inventory Movement Recorded'),
        ('movement_cleanup', 'Duplicate Movement Removed'),
        ('stock_recalculate', 'Stock Recalculated'),
        ('application_review', 'User Application Reviewed'),
    ]

    user = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, related_name='audit_logs')
    action = models.CharField(max_length=50, choices=ACTION_CHOICES)
    model_name = models.CharField(max_length=100)
    object_id = models.CharField(max_length=100)
    object_name = models.CharField(max_length=255, blank=True, null=True, help_text="Human-readable name of the object (e.g., product name, order number)")
    object_reference = models.CharField(max_length=255, blank=True, null=True, help_text="Reference identifier (e.g., order number, transaction number)")
    changes = models.JSONField(default=dict, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'audit_logs'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['-created_at'], name='idx_audit_created'),
            models.Index(fields=['action'], name='idx_audit_action'),
            models.Index(fields=['model_name'], name='idx_audit_model'),
            models.Index(fields=['object_reference'], name='idx_audit_reference'),
        ]


class OrderManager(models.Model):
    """Staff member responsible for purchase orders"""
    name = models.CharField(max_length=100)
    department = models.CharField(max_length=100, blank=True, default='')
    email = models.EmailField(blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        if self.department:
            return f"{self.name} ({self.department})"
        return self.name

    def identity_key(self):
        """Case-insensitive name/department key used for duplicate checks"""
        return f"{(self.name or '').strip().lower()}|{(self.department or '').strip().lower()}"

    class Meta:
        db_table = 'order_managers'
        ordering = ['name']


class UserApplication(models.Model):
    """Account application submitted before a user exists"""
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('approved', 'Approved'),
        ('rejected', 'Rejected'),
    ]

    email = models.EmailField()
    full_name = models.CharField(max_length=200)
    company_name = models.CharField(max_length=200, blank=True)
    department = models.CharField(max_length=100, blank=True)
    phone = models.CharField(max_length=20, blank=True)
    reason = models.TextField(blank=True)
    application_status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')
    reviewed_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name='reviewed_applications')
    reviewed_at = models.DateTimeField(null=True, blank=True)
    review_notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.full_name} <{self.email}> ({self.application_status})"

    class Meta:
        db_table = 'user_applications'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['email'], name='idx_userapp_email'),
            models.Index(fields=['application_status'], name='idx_userapp_status'),
        ]
