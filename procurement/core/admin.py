from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from .models import User, AuditLog, OrderManager, UserApplication


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ['username', 'email', 'department', 'is_active', 'is_staff', 'date_joined']
    list_filter = ['is_active', 'is_staff', 'is_superuser', 'department']
    search_fields = ['username', 'email', 'first_name', 'last_name']
    ordering = ['username']
    fieldsets = BaseUserAdmin.fieldsets + (
        ('Additional Info', {'fields': ('phone', 'department')}),
    )
    add_fieldsets = BaseUserAdmin.add_fieldsets + (
        ('Additional Info', {'fields': ('phone', 'department')}),
    )


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ['user', 'action', 'model_name', 'object_reference', 'ip_address', 'created_at']
    list_filter = ['action', 'model_name', 'created_at']
    search_fields = ['user__username', 'model_name', 'object_id', 'object_reference']
    ordering = ['-created_at']
    readonly_fields = ['user', 'action', 'model_name', 'object_id', 'object_name', 'object_reference', 'changes', 'ip_address', 'created_at']


@admin.register(OrderManager)
class OrderManagerAdmin(admin.ModelAdmin):
    list_display = ['name', 'department', 'email', 'is_active', 'created_at']
    list_filter = ['is_active', 'department']
    search_fields = ['name', 'department', 'email']


@admin.register(UserApplication)
class UserApplicationAdmin(admin.ModelAdmin):
    list_display = ['full_name', 'email', 'company_name', 'application_status', 'reviewed_by', 'created_at']
    list_filter = ['application_status']
    search_fields = ['full_name', 'email', 'company_name']
    readonly_fields = ['reviewed_by', 'reviewed_at', 'created_at']
