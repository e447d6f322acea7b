import uuid

import django.db.models.deletion
import django.utils.timezone
import django_fsm
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("bookings", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="TransferRecipient",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier for this record", primary_key=True, serialize=False)),
                ("recipient_code", models.CharField(help_text="Paystack recipient code (RCP_...)", max_length=100, unique=True)),
                ("bank_name", models.CharField(blank=True, default="", help_text="Bank display name", max_length=150)),
                ("account_name", models.CharField(blank=True, default="", help_text="Name on the bank account", max_length=150)),
                ("account_last4", models.CharField(blank=True, default="", help_text="Last four digits of the account number", max_length=4)),
                ("is_active", models.BooleanField(default=True, help_text="Whether payouts may be sent to this recipient")),
                (
                    "provider",
                    models.OneToOneField(
                        help_text="Provider this recipient pays out to",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="transfer_recipient",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Transfer Recipient",
                "verbose_name_plural": "Transfer Recipients",
                "db_table": "transfer_recipients",
            },
        ),
        migrations.CreateModel(
            name="Payment",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier for this record", primary_key=True, serialize=False)),
                ("gateway_reference", models.CharField(help_text="Paystack transaction reference (ESC_...)", max_length=100, unique=True)),
                ("gateway_transaction_id", models.CharField(blank=True, help_text="Paystack transaction id, set once the charge succeeds", max_length=64, null=True)),
                ("authorization_url", models.URLField(blank=True, default="", help_text="Hosted checkout URL returned by Paystack", max_length=500)),
                ("access_code", models.CharField(blank=True, default="", help_text="Paystack access code for inline checkout", max_length=100)),
                ("amount_cents", models.PositiveBigIntegerField(help_text="Total charged in smallest currency unit (escrow + fee)")),
                ("escrow_amount_cents", models.PositiveBigIntegerField(help_text="Amount held for the provider in smallest currency unit")),
                ("platform_fee_cents", models.PositiveBigIntegerField(help_text="Platform fee in smallest currency unit")),
                ("currency", models.CharField(default="ZAR", help_text="ISO 4217 currency code", max_length=3)),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("PENDING", "Pending"),
                            ("ESCROW", "In Escrow"),
                            ("PROCESSING_RELEASE", "Processing Release"),
                            ("RELEASED", "Released"),
                            ("REFUNDED", "Refunded"),
                            ("FAILED", "Failed"),
                        ],
                        db_index=True,
                        default="PENDING",
                        help_text="Current payment status (changed only by PaymentStateMachine)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("gateway_response", models.JSONField(blank=True, default=dict, help_text="Most recent Paystack payload for this payment")),
                ("error_message", models.TextField(blank=True, help_text="Reason the payment failed", null=True)),
                ("paid_at", models.DateTimeField(blank=True, help_text="When the charge succeeded and funds entered escrow", null=True)),
                ("released_at", models.DateTimeField(blank=True, help_text="When the provider transfer was confirmed", null=True)),
                ("refund_requested_at", models.DateTimeField(blank=True, help_text="When an administrator asked Paystack to refund the charge", null=True)),
                ("refunded_at", models.DateTimeField(blank=True, help_text="When Paystack confirmed the refund", null=True)),
                ("failed_at", models.DateTimeField(blank=True, help_text="When the payment failed", null=True)),
                (
                    "booking",
                    models.OneToOneField(
                        help_text="Booking this payment is for (unique: one payment per booking)",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payment",
                        to="bookings.booking",
                    ),
                ),
                (
                    "payer",
                    models.ForeignKey(
                        help_text="Client making the payment",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="escrow_payments",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment",
                "verbose_name_plural": "Payments",
                "db_table": "payments",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "updated_at"], name="payment_status_updated_idx"),
                    models.Index(fields=["payer", "created_at"], name="payment_payer_created_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        check=models.Q(amount_cents__gt=0),
                        name="payment_amount_positive",
                    ),
                    models.CheckConstraint(
                        check=models.Q(
                            amount_cents=models.F("escrow_amount_cents") + models.F("platform_fee_cents")
                        ),
                        name="payment_amount_split_consistent",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="ReconciliationRun",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier for this record", primary_key=True, serialize=False)),
                (
                    "status",
                    models.CharField(
                        choices=[("RUNNING", "Running"), ("COMPLETED", "Completed"), ("FAILED", "Failed")],
                        db_index=True,
                        default="RUNNING",
                        help_text="Run status",
                        max_length=20,
                    ),
                ),
                ("stale_after_minutes", models.PositiveIntegerField(help_text="Only payments untouched for longer than this were scanned")),
                ("started_at", models.DateTimeField(default=django.utils.timezone.now, help_text="When the run started")),
                ("completed_at", models.DateTimeField(blank=True, help_text="When the run finished", null=True)),
                ("payments_checked", models.PositiveIntegerField(default=0, help_text="Number of payments verified")),
                ("transitions_applied", models.PositiveIntegerField(default=0, help_text="Number of payments whose status changed")),
                ("flagged_for_review", models.PositiveIntegerField(default=0, help_text="Number of discrepancies recorded")),
                ("errors", models.PositiveIntegerField(default=0, help_text="Number of payments that could not be verified")),
                ("error_message", models.TextField(blank=True, help_text="Why the run failed, if it did", null=True)),
            ],
            options={
                "verbose_name": "Reconciliation Run",
                "verbose_name_plural": "Reconciliation Runs",
                "db_table": "reconciliation_runs",
                "ordering": ["-started_at"],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier for this record", primary_key=True, serialize=False)),
                ("event_type", models.CharField(db_index=True, help_text="Paystack event type (e.g., 'charge.success')", max_length=100)),
                (
                    "gateway_reference",
                    models.CharField(
                        db_index=True,
                        help_text="Transaction (ESC_...) or transfer (PAYOUT_...) reference from data.reference",
                        max_length=255,
                    ),
                ),
                ("payload", models.JSONField(help_text="Full notification body as received (JSON)")),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("PENDING", "Pending"),
                            ("PROCESSING", "Processing"),
                            ("PROCESSED", "Processed"),
                            ("FAILED", "Failed"),
                            ("DEFERRED", "Deferred"),
                        ],
                        db_index=True,
                        default="PENDING",
                        help_text="Current processing status",
                        max_length=20,
                    ),
                ),
                ("received_at", models.DateTimeField(default=django.utils.timezone.now, help_text="When the notification first arrived")),
                ("processed_at", models.DateTimeField(blank=True, help_text="When the event was successfully processed", null=True)),
                ("error", models.TextField(blank=True, help_text="Error (or note) from the last processing attempt", null=True)),
                ("retry_count", models.PositiveSmallIntegerField(default=0, help_text="Number of processing attempts")),
            ],
            options={
                "verbose_name": "Webhook Event",
                "verbose_name_plural": "Webhook Events",
                "db_table": "webhook_events",
                "ordering": ["-received_at"],
                "indexes": [
                    models.Index(fields=["status", "retry_count"], name="webhook_status_retry_idx"),
                    models.Index(fields=["status", "updated_at"], name="webhook_status_updated_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("event_type", "gateway_reference"),
                        name="unique_webhook_event_per_reference",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Payout",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier for this record", primary_key=True, serialize=False)),
                ("amount_cents", models.PositiveBigIntegerField(help_text="Payout amount in smallest currency unit")),
                ("currency", models.CharField(default="ZAR", help_text="ISO 4217 currency code", max_length=3)),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("PENDING", "Pending"),
                            ("PROCESSING", "Processing"),
                            ("COMPLETED", "Completed"),
                            ("FAILED", "Failed"),
                        ],
                        db_index=True,
                        default="PENDING",
                        help_text="Current payout status (changed only by PayoutStateMachine)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("transfer_reference", models.CharField(help_text="Our Paystack transfer reference (PAYOUT_...)", max_length=100, unique=True)),
                ("transfer_code", models.CharField(blank=True, help_text="Paystack transfer code (TRF_...)", max_length=100, null=True)),
                ("attempts", models.PositiveSmallIntegerField(default=0, help_text="Number of transfer calls made to Paystack")),
                ("gateway_response", models.JSONField(blank=True, default=dict, help_text="Most recent Paystack transfer payload")),
                ("failure_reason", models.TextField(blank=True, help_text="Reason the transfer failed", null=True)),
                ("completed_at", models.DateTimeField(blank=True, help_text="When Paystack confirmed the transfer", null=True)),
                ("failed_at", models.DateTimeField(blank=True, help_text="When the transfer failed", null=True)),
                (
                    "payment",
                    models.OneToOneField(
                        help_text="Payment whose escrow this payout releases (unique)",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payout",
                        to="escrow.payment",
                    ),
                ),
                (
                    "provider",
                    models.ForeignKey(
                        help_text="Provider receiving the funds",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="escrow_payouts",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "recipient",
                    models.ForeignKey(
                        blank=True,
                        help_text="Paystack transfer recipient the money was sent to",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payouts",
                        to="escrow.transferrecipient",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payout",
                "verbose_name_plural": "Payouts",
                "db_table": "payouts",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "updated_at"], name="payout_status_updated_idx"),
                    models.Index(fields=["provider", "status"], name="payout_provider_status_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        check=models.Q(amount_cents__gt=0),
                        name="payout_amount_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="ReconciliationDiscrepancy",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, help_text="Unique identifier for this record", primary_key=True, serialize=False)),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("TRANSFER_FAILED", "Transfer failed during release"),
                            ("TRANSFER_REJECTED", "Transfer rejected by gateway"),
                            ("AMOUNT_MISMATCH", "Charged amount differs from expected"),
                        ],
                        db_index=True,
                        help_text="What went wrong",
                        max_length=30,
                    ),
                ),
                ("local_status", models.CharField(help_text="Payment status when the discrepancy was recorded", max_length=30)),
                ("gateway_status", models.CharField(blank=True, default="", help_text="Status reported by Paystack", max_length=30)),
                ("details", models.JSONField(blank=True, default=dict, help_text="Supporting data (amounts, failure reason, raw gateway data)")),
                ("resolved", models.BooleanField(db_index=True, default=False, help_text="Whether an administrator has resolved it")),
                ("resolved_at", models.DateTimeField(blank=True, help_text="When it was resolved", null=True)),
                ("resolution_notes", models.TextField(blank=True, default="", help_text="What was decided and why")),
                (
                    "payment",
                    models.ForeignKey(
                        help_text="Payment under review",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="discrepancies",
                        to="escrow.payment",
                    ),
                ),
                (
                    "payout",
                    models.ForeignKey(
                        blank=True,
                        help_text="Payout involved, for transfer problems",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="discrepancies",
                        to="escrow.payout",
                    ),
                ),
                (
                    "resolved_by",
                    models.ForeignKey(
                        blank=True,
                        help_text="Administrator who resolved it",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="resolved_discrepancies",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "run",
                    models.ForeignKey(
                        blank=True,
                        help_text="Run that found it (empty when raised by a webhook or release)",
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="discrepancies",
                        to="escrow.reconciliationrun",
                    ),
                ),
            ],
            options={
                "verbose_name": "Reconciliation Discrepancy",
                "verbose_name_plural": "Reconciliation Discrepancies",
                "db_table": "reconciliation_discrepancies",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["payment", "resolved"], name="discrepancy_payment_open_idx"),
                ],
            },
        ),
    ]
