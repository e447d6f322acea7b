"""
Celery configuration for the escrow payments backend.

Celery runs everything that must not block a web request:
- Re-processing webhook events that failed or were deferred
- Periodic reconciliation of stale payments against Paystack
- Re-issuing provider transfers the gateway never recorded

Redis is both the message broker and result backend. Periodic schedules
are stored in the database by django-celery-beat (see the escrow data
migrations) so operators can adjust them from the admin.

Usage:
    from escrow.tasks import reconcile_stale_payments

    reconcile_stale_payments.delay()

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
