from django.urls import path
from .views import (
    purchase_order_list_create, purchase_order_detail, purchase_order_installments,
    purchase_order_summary, purchase_order_delivery_status, purchase_order_resequence,
    transaction_list_create, transaction_detail, transaction_confirm
)

urlpatterns = [
    # Purchase order endpoints
    path('purchase-orders/', purchase_order_list_create, name='purchase-order-list-create'),
    path('purchase-orders/<int:pk>/', purchase_order_detail, name='purchase-order-detail'),
    path('purchase-orders/<int:pk>/installments/', purchase_order_installments, name='purchase-order-installments'),
    path('purchase-orders/<int:pk>/summary/', purchase_order_summary, name='purchase-order-summary'),
    path('purchase-orders/<int:pk>/delivery-status/', purchase_order_delivery_status, name='purchase-order-delivery-status'),
    path('purchase-orders/<int:pk>/resequence/', purchase_order_resequence, name='purchase-order-resequence'),

    # Transaction endpoints
    path('transactions/', transaction_list_create, name='transaction-list-create'),
    path('transactions/<int:pk>/', transaction_detail, name='transaction-detail'),
    path('transactions/<int:pk>/confirm/', transaction_confirm, name='transaction-confirm'),
]
