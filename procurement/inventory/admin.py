from django.contrib import admin
from .models import InventoryMovement


@admin.register(InventoryMovement)
class InventoryMovementAdmin(admin.ModelAdmin):
    list_display = ['id', 'product', 'movement_type', 'quantity', 'unit_price', 'transaction', 'created_by', 'created_at']
    list_filter = ['movement_type', 'created_at']
    search_fields = ['product__name', 'product__product_code', 'transaction__transaction_no', 'note']
    raw_id_fields = ['product', 'transaction', 'created_by']
    readonly_fields = ['created_at']
