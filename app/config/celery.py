"""
Celery configuration for the payment engine.

Celery runs the periodic maintenance jobs of the payments app:
- purging expired webhook idempotency records
- pulling gateway status for payments stuck in PENDING/PROCESSING

Schedules are stored in the database (django-celery-beat) and created by a
data migration in the payments app.

Usage:
    # Define a task in any app's tasks.py:
    from celery import shared_task

    @shared_task
    def purge_expired_webhook_events():
        ...

    # Call the task asynchronously:
    purge_expired_webhook_events.delay()

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Celery will look for a tasks.py module in each installed app
app.autodiscover_tasks()
