from rest_framework import serializers
from .models import Partner


class PartnerSerializer(serializers.ModelSerializer):
    class Meta:
        model = Partner
        fields = [
            'id', 'partner_code', 'name', 'partner_type', 'contact_person', 'phone', 'email',
            'postal_code', 'address', 'payment_terms', 'notes', 'is_active', 'created_at', 'updated_at'
        ]
        read_only_fields = ['created_at', 'updated_at']


class SupplierOptionSerializer(serializers.ModelSerializer):
    """Minimal id/name pair for supplier pickers"""
    class Meta:
        model = Partner
        fields = ['id', 'partner_code', 'name']
