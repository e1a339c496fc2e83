"""Celery application for background sweeps (offer expiry, survey reminders)."""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "ridemarket.settings.settings")

app = Celery("ridemarket")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()
