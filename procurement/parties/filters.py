import django_filters
from django.db.models import Q
from .models import Partner


class PartnerFilter(django_filters.FilterSet):
    """Filter partners by free text, type and active flag"""
    search = django_filters.CharFilter(method='filter_search', label='Search')
    partner_type = django_filters.ChoiceFilter(choices=Partner.PARTNER_TYPE_CHOICES)
    active = django_filters.CharFilter(method='filter_active', label='Active')

    class Meta:
        model = Partner
        fields = ['search', 'partner_type', 'active']

    def filter_search(self, queryset, name, value):
        value = (value or '').strip()
        if not value:
            return queryset
        return queryset.filter(
            Q(name__icontains=value) |
            Q(partner_code__icontains=value) |
            Q(contact_person__icontains=value) |
            Q(phone__icontains=value)
        )

    def filter_active(self, queryset, name, value):
        if value is None or value == '':
            return queryset
        return queryset.filter(is_active=value.lower() in ('true', '1', 'yes'))
