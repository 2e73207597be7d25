from django.contrib import admin
from .models import Partner


@admin.register(Partner)
class PartnerAdmin(admin.ModelAdmin):
    list_display = ['partner_code', 'name', 'partner_type', 'contact_person', 'phone', 'is_active']
    list_filter = ['partner_type', 'is_active']
    search_fields = ['partner_code', 'name', 'contact_person', 'phone', 'email']
    ordering = ['name']
