"""
Tests for escrow models.

Tests cover:
- Payment amount constraints and protected status
- Payout helpers
- WebhookEvent uniqueness and status helpers
- ReconciliationDiscrepancy resolution
"""

import pytest
from django.db import IntegrityError, transaction

from escrow.models import Payment, WebhookEvent
from escrow.state_machines import PaymentStatus, PayoutStatus, WebhookEventStatus
from escrow.tests.factories import (
    PaymentFactory,
    PayoutFactory,
    ReconciliationDiscrepancyFactory,
    WebhookEventFactory,
)


# =============================================================================
# Payment
# =============================================================================


class TestPaymentModel:
    """Tests for the Payment model."""

    def test_defaults_to_pending(self, db):
        """Should start in PENDING."""
        payment = PaymentFactory()

        assert payment.status == PaymentStatus.PENDING
        assert Payment.objects.get(pk=payment.pk).status == PaymentStatus.PENDING

    def test_str_includes_status_and_amount(self, db):
        """Should render id, status and a formatted amount."""
        payment = PaymentFactory()

        assert "PENDING" in str(payment)
        assert "1000.00 ZAR" in str(payment)

    def test_status_is_protected(self, db):
        """Should refuse direct assignment of the status field."""
        payment = Payment.objects.get(pk=PaymentFactory().pk)

        with pytest.raises(AttributeError):
            payment.status = PaymentStatus.RELEASED

    def test_rejects_inconsistent_split(self, db):
        """Should enforce amount = escrow + fee at the database level."""
        with pytest.raises(IntegrityError), transaction.atomic():
            PaymentFactory(amount_cents=100000, escrow_amount_cents=90000, platform_fee_cents=5000)

    def test_one_payment_per_booking(self, db):
        """Should refuse a second payment for the same booking."""
        payment = PaymentFactory()

        with pytest.raises(IntegrityError), transaction.atomic():
            PaymentFactory(booking=payment.booking, payer=payment.payer)

    def test_provider_id_comes_from_booking(self, db):
        payment = PaymentFactory()

        assert payment.provider_id == payment.booking.provider_id


# =============================================================================
# Payout
# =============================================================================


class TestPayoutModel:
    """Tests for the Payout model."""

    @pytest.mark.parametrize(
        "status,is_final",
        [
            (PayoutStatus.PENDING, False),
            (PayoutStatus.PROCESSING, False),
            (PayoutStatus.COMPLETED, True),
            (PayoutStatus.FAILED, True),
        ],
    )
    def test_is_final(self, db, status, is_final):
        """Should report COMPLETED and FAILED as final."""
        assert PayoutFactory(status=status).is_final is is_final

    def test_amount_defaults_to_escrow_amount(self, db):
        payout = PayoutFactory()

        assert payout.amount_cents == payout.payment.escrow_amount_cents


# =============================================================================
# WebhookEvent
# =============================================================================


class TestWebhookEventModel:
    """Tests for the WebhookEvent model."""

    def test_unique_per_event_type_and_reference(self, db):
        """Should store a given (event, reference) pair only once."""
        event = WebhookEventFactory()

        with pytest.raises(IntegrityError), transaction.atomic():
            WebhookEvent.objects.create(
                event_type=event.event_type,
                gateway_reference=event.gateway_reference,
                payload={},
            )

    def test_same_reference_allowed_for_other_event_type(self, db):
        """Should accept charge.failed after charge.success for one reference."""
        event = WebhookEventFactory()

        other = WebhookEventFactory(event_type="charge.failed", gateway_reference=event.gateway_reference)

        assert other.pk != event.pk

    def test_mark_processed(self, db):
        event = WebhookEventFactory()

        event.mark_processed()

        assert event.processed
        assert event.processed_at is not None
        assert event.error is None

    def test_mark_processed_keeps_note(self, db):
        event = WebhookEventFactory()

        event.mark_processed("ignored: no handler")

        assert event.error == "ignored: no handler"

    def test_mark_failed_and_deferred(self, db):
        event = WebhookEventFactory()

        event.mark_failed("boom")
        assert event.status == WebhookEventStatus.FAILED
        assert event.error == "boom"

        event.mark_deferred("no payment yet")
        assert event.status == WebhookEventStatus.DEFERRED

    @pytest.mark.parametrize(
        "status,retry_count,expected",
        [
            (WebhookEventStatus.FAILED, 1, True),
            (WebhookEventStatus.DEFERRED, 4, True),
            (WebhookEventStatus.FAILED, 5, False),
            (WebhookEventStatus.PROCESSED, 0, False),
            (WebhookEventStatus.PENDING, 0, False),
        ],
    )
    def test_can_retry(self, db, status, retry_count, expected):
        event = WebhookEventFactory(status=status, retry_count=retry_count)

        assert event.can_retry(max_retries=5) is expected

    def test_data_is_empty_dict_for_malformed_payload(self, db):
        event = WebhookEventFactory(payload={"event": "charge.success", "data": "oops"})

        assert event.data == {}


# =============================================================================
# ReconciliationDiscrepancy
# =============================================================================


class TestReconciliationDiscrepancy:
    def test_resolve_sets_audit_fields(self, db, admin_user):
        """Should record who resolved it, when and why."""
        discrepancy = ReconciliationDiscrepancyFactory()

        discrepancy.resolve(admin_user, "Paid manually via EFT")

        assert discrepancy.resolved is True
        assert discrepancy.resolved_at is not None
        assert discrepancy.resolved_by == admin_user
        assert discrepancy.resolution_notes == "Paid manually via EFT"
