"""
Reconciliation engine tests.

Verifies:
- One status mapping serves webhook event names and polled statuses
- Re-applying a verdict is a silent no-op (idempotence)
- Final charges never change (an EXPIRED charge is never paid)
- Webhook signatures are checked before the body is parsed
"""

import json

import pytest

from vouchernet.models import AuditEvent, ChargeStatus, MerchantStatus
from vouchernet.services import billing_service, concurrency, reconciliation_service
from vouchernet.services.billing_service import ChargeNotFound
from vouchernet.services.gateway_client import compute_signature
from vouchernet.services.reconciliation_service import (
    OUTCOME_ALREADY_FINAL,
    OUTCOME_APPLIED,
    OUTCOME_GATEWAY_UNAVAILABLE,
    OUTCOME_IGNORED,
    OUTCOME_NOT_FOUND,
    ApplyTransition,
    IgnoreObservation,
    InvalidWebhookSignature,
    MalformedWebhook,
)

from conftest import WEBHOOK_SECRET


@pytest.mark.parametrize(
    "observed,target",
    [
        ("PAYMENT_RECEIVED", ChargeStatus.PAID),
        ("RECEIVED", ChargeStatus.PAID),
        ("PAYMENT_CONFIRMED", ChargeStatus.PAID),
        ("confirmed", ChargeStatus.PAID),
        ("RECEIVED_IN_CASH", ChargeStatus.PAID),
        ("PAYMENT_OVERDUE", ChargeStatus.EXPIRED),
        ("OVERDUE", ChargeStatus.EXPIRED),
        ("PAYMENT_DELETED", ChargeStatus.CANCELLED),
        ("cancelled", ChargeStatus.CANCELLED),
    ],
)
def test_mapped_statuses(observed, target):
    assert reconciliation_service.map_gateway_status(observed) == ApplyTransition(target)


@pytest.mark.parametrize("observed", ["PAYMENT_CREATED", "PENDING", "REFUNDED", "", None])
def test_unmapped_statuses_are_ignored(observed):
    assert isinstance(reconciliation_service.map_gateway_status(observed), IgnoreObservation)


@pytest.fixture
def charge(merchant):
    """PENDING activation charge linked to the fake gateway."""
    return billing_service.create_activation_charge(merchant.id)


def _paid_events(db_session):
    return db_session.query(AuditEvent).filter_by(action="charge.paid").count()


class TestReconcile:

    def test_draft_merchant_activated_by_received(self, db_session, merchant, charge):
        assert merchant.status == MerchantStatus.PENDING_PAYMENT

        result = reconciliation_service.reconcile(charge.gateway_charge_id, "received")

        assert result.outcome == OUTCOME_APPLIED
        assert result.status == ChargeStatus.PAID
        assert result.merchant_activated is True
        db_session.refresh(merchant)
        assert merchant.status == MerchantStatus.ACTIVE

    def test_merchant_is_locked_before_charge(self, monkeypatch, charge):
        locked = []

        def recording_lock(query):
            locked.append(query.column_descriptions[0]["entity"].__name__)
            return concurrency.lock_for_update(query)

        monkeypatch.setattr(billing_service, "lock_for_update", recording_lock)
        result = reconciliation_service.reconcile(charge.gateway_charge_id, "received")

        assert result.outcome == OUTCOME_APPLIED
        assert locked[:2] == ["Merchant", "Charge"]

    def test_replayed_verdict_is_a_noop(self, db_session, merchant, charge):
        first = reconciliation_service.reconcile(charge.gateway_charge_id, "PAYMENT_RECEIVED")
        db_session.refresh(merchant)
        activated_at = merchant.activated_at

        second = reconciliation_service.reconcile(charge.gateway_charge_id, "PAYMENT_RECEIVED")

        assert first.outcome == OUTCOME_APPLIED
        assert second.outcome == OUTCOME_ALREADY_FINAL
        assert second.status == ChargeStatus.PAID
        db_session.refresh(merchant)
        assert merchant.activated_at == activated_at
        assert _paid_events(db_session) == 1

    def test_expired_charge_is_never_paid(self, db_session, merchant, charge):
        reconciliation_service.reconcile(charge.gateway_charge_id, "PAYMENT_OVERDUE")

        late = reconciliation_service.reconcile(charge.gateway_charge_id, "PAYMENT_RECEIVED")

        assert late.outcome == OUTCOME_ALREADY_FINAL
        assert late.status == ChargeStatus.EXPIRED
        db_session.refresh(merchant)
        assert merchant.status != MerchantStatus.ACTIVE
        assert _paid_events(db_session) == 0

    def test_unknown_gateway_id_is_dropped(self, db_session):
        result = reconciliation_service.reconcile("pay_unknown", "PAYMENT_RECEIVED")
        assert result.outcome == OUTCOME_NOT_FOUND
        assert db_session.query(AuditEvent).count() == 0

    def test_unmapped_status_leaves_charge_pending(self, db_session, charge):
        result = reconciliation_service.reconcile(charge.gateway_charge_id, "PAYMENT_CREATED")

        assert result.outcome == OUTCOME_IGNORED
        assert billing_service.get_charge(charge.id).status == ChargeStatus.PENDING

    def test_deleted_cancels_without_activation(self, db_session, merchant, charge):
        result = reconciliation_service.reconcile(charge.gateway_charge_id, "PAYMENT_DELETED")

        assert result.status == ChargeStatus.CANCELLED
        assert result.merchant_activated is False
        db_session.refresh(merchant)
        assert merchant.status == MerchantStatus.PENDING_PAYMENT


class TestPolling:

    def test_poll_applies_gateway_status(self, db_session, merchant, charge, gateway):
        gateway.charges[charge.gateway_charge_id] = "RECEIVED"

        result = reconciliation_service.poll_and_reconcile(charge.id)

        assert result.outcome == OUTCOME_APPLIED
        event = db_session.query(AuditEvent).filter_by(action="charge.paid").one()
        assert event.source == "poll"
        db_session.refresh(merchant)
        assert merchant.status == MerchantStatus.ACTIVE

    def test_webhook_then_poll_applies_once(self, db_session, charge, gateway):
        reconciliation_service.reconcile(charge.gateway_charge_id, "PAYMENT_RECEIVED")
        gateway.charges[charge.gateway_charge_id] = "RECEIVED"

        result = reconciliation_service.poll_and_reconcile(charge.id)

        assert result.outcome == OUTCOME_ALREADY_FINAL
        assert "get_charge_status" not in gateway.calls
        assert _paid_events(db_session) == 1

    def test_gateway_outage_returns_local_state(self, charge, gateway):
        gateway.fail = True

        result = reconciliation_service.poll_and_reconcile(charge.id)

        assert result.outcome == OUTCOME_GATEWAY_UNAVAILABLE
        assert result.status == ChargeStatus.PENDING

    def test_unlinked_charge_is_not_polled(self, merchant, gateway):
        gateway.fail = True
        degraded = billing_service.create_activation_charge(merchant.id)
        gateway.fail = False

        result = reconciliation_service.poll_and_reconcile(degraded.id)

        assert result.outcome == OUTCOME_IGNORED
        assert "get_charge_status" not in gateway.calls

    def test_unknown_charge(self, db_session):
        with pytest.raises(ChargeNotFound):
            reconciliation_service.poll_and_reconcile(999999)


class TestWebhook:

    def _body(self, gateway_charge_id, event="PAYMENT_RECEIVED"):
        return json.dumps({"event": event, "payment": {"id": gateway_charge_id}}).encode("utf-8")

    def test_signed_webhook_is_applied(self, db_session, merchant, charge):
        body = self._body(charge.gateway_charge_id)

        result = reconciliation_service.handle_webhook(body, compute_signature(WEBHOOK_SECRET, body))

        assert result.outcome == OUTCOME_APPLIED
        db_session.refresh(merchant)
        assert merchant.status == MerchantStatus.ACTIVE

    def test_bad_signature_is_rejected_before_parsing(self, charge):
        with pytest.raises(InvalidWebhookSignature):
            reconciliation_service.handle_webhook(b"not json at all", "deadbeef")
        assert billing_service.get_charge(charge.id).status == ChargeStatus.PENDING

    def test_missing_signature(self, charge):
        with pytest.raises(InvalidWebhookSignature):
            reconciliation_service.handle_webhook(self._body(charge.gateway_charge_id), None)

    @pytest.mark.parametrize(
        "body",
        [b"not json", b"[]", b'{"event": "PAYMENT_RECEIVED"}', b'{"payment": {"id": "pay_1"}}'],
    )
    def test_malformed_body(self, db_session, body):
        with pytest.raises(MalformedWebhook):
            reconciliation_service.handle_webhook(body, compute_signature(WEBHOOK_SECRET, body))
