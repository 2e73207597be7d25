from django.urls import path
from .views import (
    CustomTokenObtainPairView, CustomTokenRefreshView, user_me,
    audit_log_list, audit_log_detail,
    order_manager_list_create, order_manager_detail,
    user_application_list_create, user_application_review,
)

urlpatterns = [
    # Auth endpoints
    path('auth/login/', CustomTokenObtainPairView.as_view(), name='token_obtain_pair'),
    path('auth/refresh/', CustomTokenRefreshView.as_view(), name='token_refresh'),
    path('auth/me/', user_me, name='user-me'),

    # AuditLog endpoints
    path('audit-logs/', audit_log_list, name='audit-log-list'),
    path('audit-logs/<int:pk>/', audit_log_detail, name='audit-log-detail'),

    # OrderManager endpoints
    path('order-managers/', order_manager_list_create, name='order-manager-list-create'),
    path('order-managers/<int:pk>/', order_manager_detail, name='order-manager-detail'),

    # UserApplication endpoints
    path('user-applications/', user_application_list_create, name='user-application-list-create'),
    path('user-applications/<int:pk>/review/', user_application_review, name='user-application-review'),
]
