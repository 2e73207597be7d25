from rest_framework import serializers
from .models import Product


class ProductSerializer(serializers.ModelSerializer):
    main_supplier_name = serializers.CharField(source='main_supplier.name', read_only=True)
    is_low_stock = serializers.BooleanField(read_only=True)

    class Meta:
        model = Product
        fields = [
            'id', 'product_code', 'name', 'category', 'purchase_price', 'selling_price',
            'current_stock', 'min_stock_level', 'is_low_stock',
            'main_supplier', 'main_supplier_name', 'created_at', 'updated_at'
        ]
        # current_stock is derived from inventory movements
        read_only_fields = ['current_stock', 'created_at', 'updated_at']
        extra_kwargs = {'product_code': {'validators': []}}

    def validate_product_code(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError('Product code is required.')
        duplicates = Product.objects.filter(product_code__iexact=value)
        if self.instance is not None:
            duplicates = duplicates.exclude(pk=self.instance.pk)
        if duplicates.exists():
            raise serializers.ValidationError('Product code is already in use. Choose a different code.')
        return value

    def validate(self, attrs):
        for field in ('purchase_price', 'selling_price', 'min_stock_level'):
            value = attrs.get(field)
            if value is not None and value < 0:
                raise serializers.ValidationError({field: 'Must not be negative.'})
        return attrs
