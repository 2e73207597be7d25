import django_filters
from django.db.models import Q
from .models import PurchaseOrder, Transaction


class PurchaseOrderFilter(django_filters.FilterSet):
    """Filter purchase orders by partner, status, date range or number"""
    partner = django_filters.NumberFilter(field_name='partner_id')
    status = django_filters.ChoiceFilter(choices=PurchaseOrder.STATUS_CHOICES)
    date_from = django_filters.DateFilter(field_name='order_date', lookup_expr='gte')
    date_to = django_filters.DateFilter(field_name='order_date', lookup_expr='lte')
    manager = django_filters.NumberFilter(field_name='assigned_manager_id')
    search = django_filters.CharFilter(method='filter_search', label='Search')

    class Meta:
        model = PurchaseOrder
        fields = ['partner', 'status', 'date_from', 'date_to', 'manager', 'search']

    def filter_search(self, queryset, name, value):
        value = (value or '').strip()
        if not value:
            return queryset
        return queryset.filter(
            Q(order_no__icontains=value) |
            Q(partner__name__icontains=value) |
            Q(memo__icontains=value)
        )


class TransactionFilter(django_filters.FilterSet):
    transaction_type = django_filters.ChoiceFilter(choices=Transaction.TRANSACTION_TYPE_CHOICES)
    status = django_filters.ChoiceFilter(choices=Transaction.STATUS_CHOICES)
    partner = django_filters.NumberFilter(field_name='partner_id')
    parent_order = django_filters.NumberFilter(field_name='parent_order_id')
    date_from = django_filters.DateFilter(field_name='transaction_date', lookup_expr='gte')
    date_to = django_filters.DateFilter(field_name='transaction_date', lookup_expr='lte')

    class Meta:
        model = Transaction
        fields = ['transaction_type', 'status', 'partner', 'parent_order', 'date_from', 'date_to']
