"""
WSGI config for the procurement project.
"""
import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'procurement.config.settings')

application = get_wsgi_application()
