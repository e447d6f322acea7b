import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Booking",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "title",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Short description of the booked service",
                        max_length=200,
                    ),
                ),
                (
                    "service_amount_cents",
                    models.PositiveBigIntegerField(
                        help_text="Service price in smallest currency unit (e.g., cents/kobo)",
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="ZAR",
                        help_text="ISO 4217 currency code",
                        max_length=3,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("PENDING", "Pending"),
                            ("CONFIRMED", "Confirmed"),
                            ("PENDING_EXECUTION", "Pending Execution"),
                            ("IN_PROGRESS", "In Progress"),
                            ("AWAITING_CONFIRMATION", "Awaiting Confirmation"),
                            ("PAID", "Paid"),
                            ("COMPLETED", "Completed"),
                            ("CANCELLED", "Cancelled"),
                            ("DISPUTED", "Disputed"),
                        ],
                        db_index=True,
                        default="PENDING",
                        help_text="Current booking status",
                        max_length=30,
                    ),
                ),
                (
                    "scheduled_for",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the service is scheduled to take place",
                        null=True,
                    ),
                ),
                (
                    "client",
                    models.ForeignKey(
                        help_text="User who booked and pays for the service",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="client_bookings",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "provider",
                    models.ForeignKey(
                        help_text="User who performs the service and receives the payout",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="provider_bookings",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Booking",
                "verbose_name_plural": "Bookings",
                "db_table": "bookings",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["client", "status"],
                        name="booking_client_status_idx",
                    ),
                    models.Index(
                        fields=["provider", "status"],
                        name="booking_provider_status_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        check=models.Q(service_amount_cents__gt=0),
                        name="booking_amount_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="CompletionProof",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "notes",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Provider's description of the completed work",
                    ),
                ),
                (
                    "attachment_url",
                    models.URLField(
                        blank=True,
                        default="",
                        help_text="Optional link to photos or documents",
                    ),
                ),
                (
                    "booking",
                    models.OneToOneField(
                        help_text="Booking this proof belongs to",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="completion_proof",
                        to="bookings.booking",
                    ),
                ),
                (
                    "submitted_by",
                    models.ForeignKey(
                        help_text="Provider who submitted the proof",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="completion_proofs",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Completion Proof",
                "verbose_name_plural": "Completion Proofs",
                "db_table": "completion_proofs",
                "ordering": ["-created_at"],
            },
        ),
    ]
