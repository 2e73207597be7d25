from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated, IsAdminUser, AllowAny
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer, TokenRefreshSerializer
from rest_framework_simplejwt.exceptions import InvalidToken, TokenError, AuthenticationFailed
from django.contrib.auth import get_user_model
from django.core.exceptions import ObjectDoesNotExist
from django.db import transaction
from django.shortcuts import get_object_or_404
from django.utils import timezone
import logging

from .models import AuditLog, OrderManager, UserApplication
from .serializers import (
    UserSerializer, AuditLogSerializer, OrderManagerSerializer,
    UserApplicationSerializer, UserApplicationReviewSerializer
)
from .utils import create_audit_log

User = get_user_model()
logger = logging.getLogger(__name__)


class CustomTokenObtainPairSerializer(TokenObtainPairSerializer):
    def validate(self, attrs):
        data = super().validate(attrs)
        if not self.user.is_active:
            raise AuthenticationFailed('User account is disabled.')
        return data

    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token['username'] = user.username
        token['is_admin'] = user.is_staff or user.is_superuser
        return token


class CustomTokenObtainPairView(TokenObtainPairView):
    serializer_class = CustomTokenObtainPairSerializer


class CustomTokenRefreshSerializer(TokenRefreshSerializer):
    """Token refresh that rejects tokens of deleted users cleanly"""
    def validate(self, attrs):
        try:
            return super().validate(attrs)
        except (InvalidToken, TokenError):
            raise InvalidToken('Token is invalid or expired.')
        except (ObjectDoesNotExist, User.DoesNotExist):
            raise InvalidToken('Token is invalid. User no longer exists.')


class CustomTokenRefreshView(TokenRefreshView):
    serializer_class = CustomTokenRefreshSerializer


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def user_me(request):
    """Get current user with admin flag"""
    user = request.user
    user_data = UserSerializer(user).data
    user_data['groups'] = list(user.groups.values_list('name', flat=True))
    user_data['is_admin'] = user.is_superuser or user.is_staff
    return Response(user_data)


# AuditLog views (read-only)
@api_view(['GET'])
@permission_classes([IsAuthenticated])
def audit_log_list(request):
    """List audit logs with filtering"""
    queryset = AuditLog.objects.select_related('user')

    if not request.user.is_staff:
        queryset = queryset.filter(user=request.user)

    action_filter = request.query_params.get('action', None)
    if action_filter:
        queryset = queryset.filter(action=action_filter)

    model_filter = request.query_params.get('model', None)
    if model_filter:
        queryset = queryset.filter(model_name=model_filter)

    reference = request.query_params.get('reference', None)
    if reference:
        queryset = queryset.filter(object_reference=reference)

    date_from = request.query_params.get('date_from', None)
    date_to = request.query_params.get('date_to', None)
    if date_from:
        queryset = queryset.filter(created_at__date__gte=date_from)
    if date_to:
        queryset = queryset.filter(created_at__date__lte=date_to)

    queryset = queryset.order_by('-created_at')
    serializer = AuditLogSerializer(queryset, many=True)
    return Response(serializer.data)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def audit_log_detail(request, pk):
    """Retrieve an audit log"""
    audit_log = get_object_or_404(AuditLog, pk=pk)

    if not request.user.is_staff and audit_log.user != request.user:
        return Response({'error': 'Permission denied'}, status=status.HTTP_403_FORBIDDEN)

    serializer = AuditLogSerializer(audit_log)
    return Response(serializer.data)


def deduplicate_managers(managers):
    """Keep the first manager for every case-insensitive name/department pair"""
    seen = set()
    unique = []
    for manager in managers:
        key = manager.identity_key()
        if key in seen:
            continue
        seen.add(key)
        unique.append(manager)
    return unique


# OrderManager views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def order_manager_list_create(request):
    """List active order managers or create a new one"""
    if request.method == 'GET':
        queryset = OrderManager.objects.filter(is_active=True).order_by('name', 'created_at', 'id')
        managers = deduplicate_managers(queryset)
        serializer = OrderManagerSerializer(managers, many=True)
        return Response(serializer.data)
    else:
        serializer = OrderManagerSerializer(data=request.data)
        if serializer.is_valid():
            manager = serializer.save()
            create_audit_log(
                request=request,
                action='create',
                model_name='OrderManager',
                object_id=manager.id,
                object_name=str(manager),
            )
            return Response(serializer.data, status=status.HTTP_201_CREATED)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def order_manager_detail(request, pk):
    """Retrieve, update or deactivate an order manager"""
    manager = get_object_or_404(OrderManager, pk=pk)

    if request.method == 'GET':
        serializer = OrderManagerSerializer(manager)
        return Response(serializer.data)
    elif request.method in ('PUT', 'PATCH'):
        serializer = OrderManagerSerializer(manager, data=request.data, partial=request.method == 'PATCH')
        if serializer.is_valid():
            serializer.save()
            return Response(serializer.data)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    else:  # DELETE
        # Orders keep pointing at the manager, so deactivate instead of deleting
        manager.is_active = False
        manager.save(update_fields=['is_active', 'updated_at'])
        create_audit_log(
            request=request,
            action='delete',
            model_name='OrderManager',
            object_id=manager.id,
            object_name=str(manager),
        )
        return Response(status=status.HTTP_204_NO_CONTENT)


# UserApplication views
@api_view(['GET', 'POST'])
@permission_classes([AllowAny])
def user_application_list_create(request):
    """Anyone may apply; only admins may list applications"""
    if request.method == 'GET':
        if not (request.user.is_authenticated and request.user.is_staff):
            return Response({'error': 'Permission denied'}, status=status.HTTP_403_FORBIDDEN)
        queryset = UserApplication.objects.select_related('reviewed_by')
        status_filter = request.query_params.get('status', None)
        if status_filter:
            queryset = queryset.filter(application_status=status_filter)
        serializer = UserApplicationSerializer(queryset, many=True)
        return Response(serializer.data)
    else:
        serializer = UserApplicationSerializer(data=request.data)
        if serializer.is_valid():
            serializer.save()
            return Response(serializer.data, status=status.HTTP_201_CREATED)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


def _unique_username(email):
    base = email.split('@')[0][:140] or 'user'
    username = base
    counter = 1
    while User.objects.filter(username=username).exists():
        counter += 1
        username = f"{base}{counter}"
    return username


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsAdminUser])
def user_application_review(request, pk):
    """Approve or reject a pending application"""
    application = get_object_or_404(UserApplication, pk=pk)

    if application.application_status != 'pending':
        return Response(
            {'error': f'Application is already {application.application_status}', 'code': 'ALREADY_REVIEWED'},
            status=status.HTTP_409_CONFLICT
        )

    serializer = UserApplicationReviewSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    decision = serializer.validated_data['decision']
    created_user = None

    with transaction.atomic():
        if decision == 'approved':
            if User.objects.filter(email__iexact=application.email).exists():
                return Response(
                    {'error': 'A user with this email already exists', 'code': 'DUPLICATE_USER'},
                    status=status.HTTP_409_CONFLICT
                )
            name_parts = application.full_name.split(None, 1)
            created_user = User(
                username=_unique_username(application.email),
                email=application.email,
                first_name=name_parts[0] if name_parts else '',
                last_name=name_parts[1] if len(name_parts) > 1 else '',
                phone=application.phone or None,
                department=application.department,
                is_active=True,
            )
            # Password is set later through the invitation flow
            created_user.set_unusable_password()
            created_user.save()

        application.application_status = decision
        application.reviewed_by = request.user
        application.reviewed_at = timezone.now()
        application.review_notes = serializer.validated_data.get('review_notes', '')
        application.save()

    logger.info(f"User application {application.id} ({application.email}) {decision} by {request.user.username}")
    create_audit_log(
        request=request,
        action='application_review',
        model_name='UserApplication',
        object_id=application.id,
        object_name=application.full_name,
        object_reference=application.email,
        changes={
            'decision': decision,
            'created_user_id': created_user.id if created_user else None,
        }
    )

    data = UserApplicationSerializer(application).data
    if created_user:
        data['user'] = UserSerializer(created_user).data
    return Response(data)
