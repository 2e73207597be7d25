from rest_framework import serializers
from .models import InventoryMovement


class InventoryMovementSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source='product.name', read_only=True)
    product_code = serializers.CharField(source='product.product_code', read_only=True)
    transaction_no = serializers.CharField(source='transaction.transaction_no', read_only=True)
    installment_no = serializers.IntegerField(source='transaction.installment_no', read_only=True)
    order_no = serializers.CharField(source='transaction.parent_order.order_no', read_only=True)
    created_by_username = serializers.CharField(source='created_by.username', read_only=True)

    class Meta:
        model = InventoryMovement
        fields = [
            'id', 'transaction', 'transaction_no', 'installment_no', 'order_no',
            'product', 'product_name', 'product_code', 'movement_type', 'quantity',
            'unit_price', 'note', 'created_by', 'created_by_username', 'created_at'
        ]
        read_only_fields = ['created_by', 'created_at']

    def validate_quantity(self, value):
        if value <= 0:
            raise serializers.ValidationError('Quantity must be greater than zero.')
        return value
