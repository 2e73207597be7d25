from django.urls import path
from . import views

urlpatterns = [
    path('system/health/', views.system_health, name='system-health'),
    path('reports/dashboard/', views.dashboard_stats, name='dashboard-stats'),
    path('reports/recent-updates/', views.recent_updates, name='recent-updates'),
    path('reports/integrity/', views.integrity_check, name='integrity-check'),
]
