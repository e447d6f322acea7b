"""
Add celery-beat schedules for escrow maintenance.

Creates the periodic tasks that keep the escrow subsystem converging
without operator action:
- reconcile_stale_payments: verify stale payments against Paystack
- retry_failed_webhooks: reprocess FAILED and DEFERRED webhook events
- cleanup_stuck_webhooks: reset events stuck in PROCESSING
"""

from django.conf import settings
from django.db import migrations

PERIODIC_TASKS = [
    {
        "name": "Reconcile Stale Escrow Payments",
        "task": "escrow.tasks.reconcile_stale_payments",
        "every": settings.ESCROW_RECONCILIATION_INTERVAL_MINUTES,
        "description": (
            "Verifies PENDING and PROCESSING_RELEASE payments untouched for "
            "ESCROW_RECONCILIATION_STALE_MINUTES against Paystack."
        ),
    },
    {
        "name": "Retry Failed Escrow Webhooks",
        "task": "escrow.tasks.retry_failed_webhooks",
        "every": 5,
        "description": "Re-queues FAILED and DEFERRED webhook events below the retry limit.",
    },
    {
        "name": "Reset Stuck Escrow Webhooks",
        "task": "escrow.tasks.cleanup_stuck_webhooks",
        "every": 10,
        "description": "Marks webhook events stuck in PROCESSING as FAILED for retry.",
    },
]


def create_periodic_tasks(apps, schema_editor):
    """Create the escrow periodic tasks."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for task in PERIODIC_TASKS:
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=task["every"],
            period="minutes",
        )
        PeriodicTask.objects.get_or_create(
            name=task["name"],
            defaults={
                "task": task["task"],
                "interval": schedule,
                "enabled": True,
                "description": task["description"],
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(
        name__in=[task["name"] for task in PERIODIC_TASKS],
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("escrow", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
