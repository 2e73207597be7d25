from django.urls import path
from .views import movement_list_create, movement_detail

urlpatterns = [
    path('inventory-movements/', movement_list_create, name='inventory-movement-list-create'),
    path('inventory-movements/<int:pk>/', movement_detail, name='inventory-movement-detail'),
]
