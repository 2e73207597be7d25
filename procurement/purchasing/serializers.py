from decimal import Decimal
from django.db import transaction
from rest_framework import serializers

from procurement.core.utils import create_audit_log
from .models import PurchaseOrder, PurchaseOrderItem, Transaction, TransactionItem
from .services import generate_order_no, MAX_MEMO_LENGTH


class PurchaseOrderItemSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source='product.name', read_only=True)
    product_code = serializers.CharField(source='product.product_code', read_only=True)

    class Meta:
        model = PurchaseOrderItem
        fields = ['id', 'product', 'product_name', 'product_code', 'quantity', 'unit_price', 'total_amount', 'created_at']
        read_only_fields = ['total_amount', 'created_at']

    def validate_quantity(self, value):
        if value <= 0:
            raise serializers.ValidationError('Quantity must be greater than zero.')
        return value

    def validate_unit_price(self, value):
        if value < 0:
            raise serializers.ValidationError('Unit price must not be negative.')
        return value


class TransactionItemSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source='product.name', read_only=True)

    class Meta:
        model = TransactionItem
        fields = ['id', 'product', 'product_name', 'quantity', 'unit_price', 'total_amount']


class PurchaseOrderSerializer(serializers.ModelSerializer):
    items = PurchaseOrderItemSerializer(many=True, read_only=True)
    partner_name = serializers.CharField(source='partner.name', read_only=True)
    assigned_manager_name = serializers.CharField(source='assigned_manager.name', read_only=True)
    created_by_username = serializers.CharField(source='created_by.username', read_only=True)
    order_no = serializers.CharField(required=False, allow_blank=True)

    class Meta:
        model = PurchaseOrder
        fields = [
            'id', 'order_no', 'partner', 'partner_name', 'order_date', 'delivery_deadline',
            'total_amount', 'shipping_cost', 'status', 'memo',
            'assigned_manager', 'assigned_manager_name', 'created_by', 'created_by_username',
            'items', 'created_at', 'updated_at'
        ]
        read_only_fields = ['created_by', 'created_at', 'updated_at']

    def validate_order_no(self, value):
        value = (value or '').strip()
        if not value:
            return value
        duplicates = PurchaseOrder.objects.filter(order_no=value)
        if self.instance is not None:
            duplicates = duplicates.exclude(pk=self.instance.pk)
        if duplicates.exists():
            raise serializers.ValidationError('Order number is already in use.')
        return value

    def validate_partner(self, value):
        if not value.is_supplier:
            raise serializers.ValidationError('Partner is not a supplier.')
        return value

    def validate(self, attrs):
        items_data = self.context.get('items_data')
        if items_data:
            item_serializer = PurchaseOrderItemSerializer(data=items_data, many=True)
            item_serializer.is_valid(raise_exception=True)
            attrs['_items'] = item_serializer.validated_data
        if self.instance is not None and 'total_amount' in attrs:
            allocated = self.instance.get_allocated_amount()
            if attrs['total_amount'] < allocated:
                raise serializers.ValidationError({
                    'total_amount': f'Order total cannot be lower than the amount already allocated to installments ({allocated}).'
                })
        return attrs

    def _write_items(self, order, items):
        order.items.all().delete()
        for item in items:
            PurchaseOrderItem.objects.create(purchase_order=order, **item)

    @transaction.atomic
    def create(self, validated_data):
        items = validated_data.pop('_items', [])
        if not validated_data.get('order_no'):
            validated_data['order_no'] = generate_order_no(validated_data.get('order_date'))
        order = PurchaseOrder.objects.create(**validated_data)
        self._write_items(order, items)
        # Order total follows its lines when no explicit total is given
        if items and not validated_data.get('total_amount'):
            order.total_amount = order.get_items_total() + (order.shipping_cost or Decimal('0.00'))
            order.save(update_fields=['total_amount', 'updated_at'])

        request = self.context.get('request')
        create_audit_log(
            request=request,
            action='create',
            model_name='PurchaseOrder',
            object_id=order.id,
            object_name=order.order_no,
            object_reference=order.order_no,
            changes={'total_amount': str(order.total_amount), 'items': len(items)},
        )
        return order

    @transaction.atomic
    def update(self, instance, validated_data):
        items = validated_data.pop('_items', None)
        if not validated_data.get('order_no'):
            validated_data.pop('order_no', None)
        instance = super().update(instance, validated_data)
        if items is not None:
            self._write_items(instance, items)
        return instance


class InstallmentSerializer(serializers.ModelSerializer):
    items = TransactionItemSerializer(many=True, read_only=True)
    order_no = serializers.CharField(source='parent_order.order_no', read_only=True)
    partner_name = serializers.CharField(source='partner.name', read_only=True)
    created_by_username = serializers.CharField(source='created_by.username', read_only=True)

    class Meta:
        model = Transaction
        fields = [
            'id', 'transaction_no', 'transaction_type', 'partner', 'partner_name',
            'parent_order', 'order_no', 'installment_no', 'delivery_sequence',
            'transaction_date', 'due_date', 'status', 'total_amount', 'memo',
            'items', 'created_by', 'created_by_username', 'created_at', 'updated_at'
        ]
        read_only_fields = fields


class InstallmentItemInputSerializer(serializers.Serializer):
    product = serializers.IntegerField()
    quantity = serializers.DecimalField(max_digits=12, decimal_places=3)
    unit_price = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)


class InstallmentCreateSerializer(serializers.Serializer):
    """Input for recording an installment; business rules live in services"""
    amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    status = serializers.ChoiceField(choices=['draft', 'confirmed'], default='draft')
    due_date = serializers.DateField(required=False, allow_null=True)
    memo = serializers.CharField(required=False, allow_blank=True, allow_null=True, max_length=MAX_MEMO_LENGTH)
    items = InstallmentItemInputSerializer(many=True, required=False)


class InstallmentConfirmSerializer(serializers.Serializer):
    confirm_amount = serializers.DecimalField(max_digits=14, decimal_places=2, required=False, allow_null=True)


class TransactionSerializer(serializers.ModelSerializer):
    """Plain transactions (sales, adjustments and installments) for the transaction list"""
    items = TransactionItemSerializer(many=True, read_only=True)
    order_no = serializers.CharField(source='parent_order.order_no', read_only=True)
    partner_name = serializers.CharField(source='partner.name', read_only=True)

    class Meta:
        model = Transaction
        fields = [
            'id', 'transaction_no', 'transaction_type', 'partner', 'partner_name',
            'parent_order', 'order_no', 'installment_no', 'delivery_sequence',
            'transaction_date', 'due_date', 'status', 'total_amount', 'memo',
            'items', 'created_at', 'updated_at'
        ]
        read_only_fields = ['transaction_no', 'parent_order', 'installment_no', 'delivery_sequence', 'created_at', 'updated_at']

    def validate_transaction_type(self, value):
        # Installments go through the order installment endpoint
        if self.instance is not None and self.instance.parent_order_id and value != self.instance.transaction_type:
            raise serializers.ValidationError('The type of an order installment cannot be changed.')
        if value == 'purchase' and (self.instance is None or self.instance.transaction_type != 'purchase'):
            raise serializers.ValidationError('Create purchase installments through the purchase order.')
        return value
