from django.urls import path
from .views import partner_list_create, partner_detail, supplier_list

urlpatterns = [
    path('partners/', partner_list_create, name='partner-list-create'),
    path('partners/<int:pk>/', partner_detail, name='partner-detail'),
    path('suppliers/', supplier_list, name='supplier-list'),
]
