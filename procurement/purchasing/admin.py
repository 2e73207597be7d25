from django.contrib import admin
from .models import PurchaseOrder, PurchaseOrderItem, Transaction, TransactionItem


class PurchaseOrderItemInline(admin.TabularInline):
    model = PurchaseOrderItem
    extra = 0
    raw_id_fields = ['product']
    readonly_fields = ['total_amount']


@admin.register(PurchaseOrder)
class PurchaseOrderAdmin(admin.ModelAdmin):
    list_display = ['order_no', 'partner', 'order_date', 'total_amount', 'status', 'assigned_manager', 'created_at']
    list_filter = ['status', 'order_date']
    search_fields = ['order_no', 'partner__name']
    date_hierarchy = 'order_date'
    raw_id_fields = ['partner', 'assigned_manager', 'created_by']
    inlines = [PurchaseOrderItemInline]


class TransactionItemInline(admin.TabularInline):
    model = TransactionItem
    extra = 0
    raw_id_fields = ['product']


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    list_display = ['transaction_no', 'transaction_type', 'parent_order', 'installment_no', 'status', 'total_amount', 'created_at']
    list_filter = ['transaction_type', 'status']
    search_fields = ['transaction_no', 'parent_order__order_no', 'memo']
    raw_id_fields = ['partner', 'parent_order', 'created_by']
    # Numbers are assigned by the installment service and the resequence command
    readonly_fields = ['installment_no', 'delivery_sequence', 'created_at', 'updated_at']
    inlines = [TransactionItemInline]
