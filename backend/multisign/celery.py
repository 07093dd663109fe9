"""
Celery application for the multisign project.

Finalization, webhook delivery and scheduled reconciliation run here.
"""

import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'multisign.settings')

app = Celery('multisign')

# All CELERY_* settings in multisign/settings.py configure the app
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()
