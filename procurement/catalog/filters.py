import django_filters
from django.db.models import F, Q
from .models import Product


class ProductFilter(django_filters.FilterSet):
    """Filter for Product model using django-filter"""
    search = django_filters.CharFilter(method='filter_search', label='Search')
    category = django_filters.CharFilter(field_name='category', lookup_expr='iexact')
    supplier = django_filters.NumberFilter(field_name='main_supplier_id', lookup_expr='exact')
    low_stock = django_filters.CharFilter(method='filter_low_stock', label='Low Stock')

    class Meta:
        model = Product
        fields = ['search', 'category', 'supplier', 'low_stock']

    def filter_search(self, queryset, name, value):
        """Match product name, code or category"""
        value = (value or '').strip()
        if not value:
            return queryset
        return queryset.filter(
            Q(name__icontains=value) |
            Q(product_code__icontains=value) |
            Q(category__icontains=value)
        )

    def filter_low_stock(self, queryset, name, value):
        if value and value.lower() in ('true', '1', 'yes'):
            return queryset.filter(current_stock__lte=F('min_stock_level'))
        return queryset
