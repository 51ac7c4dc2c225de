"""
Celery configuration for venuecheck.

Task results land in django-celery-results' TaskResult table, which doubles
as the execution ledger that discovery source statistics are computed from.
"""

import os
from celery import Celery

# Set Django settings module before importing anything else
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('venuecheck')

# Load config from Django settings with CELERY_ prefix
app.config_from_object('django.conf:settings', namespace='CELERY')

# Auto-discover tasks in all INSTALLED_APPS
app.autodiscover_tasks()
