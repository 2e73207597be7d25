from rest_framework import serializers
from .models import User, AuditLog, OrderManager, UserApplication


class UserSerializer(serializers.ModelSerializer):
    class Meta:
        model = User
        fields = ['id', 'username', 'email', 'first_name', 'last_name', 'phone', 'department', 'is_active', 'is_staff', 'is_superuser', 'created_at', 'updated_at']
        read_only_fields = ['created_at', 'updated_at']


class AuditLogSerializer(serializers.ModelSerializer):
    user = UserSerializer(read_only=True)

    class Meta:
        model = AuditLog
        fields = ['id', 'user', 'action', 'model_name', 'object_id', 'object_name',
                  'object_reference', 'changes', 'ip_address', 'created_at']


class OrderManagerSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderManager
        fields = ['id', 'name', 'department', 'email', 'is_active', 'created_at', 'updated_at']
        read_only_fields = ['created_at', 'updated_at']

    def validate_name(self, value):
        value = (value or '').strip()
        if not value:
            raise serializers.ValidationError('Name is required.')
        return value

    def validate(self, attrs):
        name = attrs.get('name', getattr(self.instance, 'name', ''))
        department = (attrs.get('department', getattr(self.instance, 'department', '')) or '').strip()
        attrs['department'] = department

        # Case-insensitive duplicate check among active managers
        duplicates = OrderManager.objects.filter(
            name__iexact=name,
            department__iexact=department,
            is_active=True,
        )
        if self.instance is not None:
            duplicates = duplicates.exclude(pk=self.instance.pk)
        if duplicates.exists():
            label = f"{name} ({department})" if department else name
            raise serializers.ValidationError({
                'name': f'An order manager named {label} already exists.'
            })
        return attrs


class UserApplicationSerializer(serializers.ModelSerializer):
    reviewed_by_username = serializers.CharField(source='reviewed_by.username', read_only=True)

    class Meta:
        model = UserApplication
        fields = [
            'id', 'email', 'full_name', 'company_name', 'department', 'phone', 'reason',
            'application_status', 'reviewed_by', 'reviewed_by_username', 'reviewed_at',
            'review_notes', 'created_at'
        ]
        read_only_fields = ['application_status', 'reviewed_by', 'reviewed_at', 'review_notes', 'created_at']

    def validate_email(self, value):
        value = value.strip().lower()
        if UserApplication.objects.filter(
            email__iexact=value,
            application_status__in=['pending', 'approved'],
        ).exists():
            raise serializers.ValidationError('An application for this email is already pending or approved.')
        if User.objects.filter(email__iexact=value).exists():
            raise serializers.ValidationError('A user with this email already exists.')
        return value


class UserApplicationReviewSerializer(serializers.Serializer):
    decision = serializers.ChoiceField(choices=['approved', 'rejected'])
    review_notes = serializers.CharField(required=False, allow_blank=True, default='')
