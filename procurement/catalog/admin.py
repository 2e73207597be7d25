from django.contrib import admin
from .models import Product


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ['product_code', 'name', 'category', 'purchase_price', 'selling_price', 'current_stock', 'min_stock_level', 'main_supplier']
    list_filter = ['category']
    search_fields = ['product_code', 'name', 'category']
    readonly_fields = ['current_stock', 'created_at', 'updated_at']
    raw_id_fields = ['main_supplier']
