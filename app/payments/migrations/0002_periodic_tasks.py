"""
Add celery-beat schedules for payment maintenance tasks.

- purge_expired_webhook_events: hourly, deletes webhook records past their
  idempotency window
- cleanup_stuck_webhooks: hourly, fails events left in PROCESSING
- sync_pending_payments: every 15 minutes, pulls gateway status for open
  payments the gateway never reported on
"""

from django.db import migrations

PERIODIC_TASKS = [
    {
        "name": "Purge Expired Webhook Events",
        "task": "payments.tasks.purge_expired_webhook_events",
        "every": 1,
        "period": "hours",
        "description": "Deletes webhook idempotency records whose window has passed.",
    },
    {
        "name": "Reset Stuck Webhook Events",
        "task": "payments.tasks.cleanup_stuck_webhooks",
        "every": 1,
        "period": "hours",
        "description": "Marks webhook events stuck in PROCESSING as failed so redelivery reprocesses them.",
    },
    {
        "name": "Sync Pending Payments",
        "task": "payments.tasks.sync_pending_payments",
        "every": 15,
        "period": "minutes",
        "description": "Pulls gateway status for stale PENDING/PROCESSING payments and reconciles it.",
    },
]


def create_periodic_tasks(apps, schema_editor):
    """Create the periodic tasks for payment maintenance."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for spec in PERIODIC_TASKS:
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=spec["every"],
            period=spec["period"],
        )
        PeriodicTask.objects.get_or_create(
            name=spec["name"],
            defaults={
                "task": spec["task"],
                "interval": schedule,
                "enabled": True,
                "description": spec["description"],
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(
        name__in=[spec["name"] for spec in PERIODIC_TASKS],
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("payments", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
