"""
URL configuration for the procurement project.

Every app mounts its endpoints under /api/v1/.
"""
from django.contrib import admin
from django.urls import path, include

admin.site.site_header = "Procurement Management Admin Panel"
admin.site.site_title = "Procurement Admin Portal"
admin.site.index_title = "Purchase orders, installments and inventory"

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/v1/', include('procurement.core.urls')),
    path('api/v1/', include('procurement.parties.urls')),
    path('api/v1/', include('procurement.catalog.urls')),
    path('api/v1/', include('procurement.purchasing.urls')),
    path('api/v1/', include('procurement.inventory.urls')),
    path('api/v1/', include('procurement.reports.urls')),
]
