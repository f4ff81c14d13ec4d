"""
Billing ledger tests: activation charge creation, degraded mode, manual
payment, cancellation and expiry.
"""

from datetime import timedelta

import pytest
from sqlalchemy import update

from vouchernet.extensions import db
from vouchernet.models import AuditEvent, Charge, ChargeStatus, Franchisee, MerchantStatus
from vouchernet.services import billing_service, concurrency, merchant_service
from vouchernet.services.billing_service import (
    ChargeAlreadyPaid,
    ChargeCancelled,
    ChargeExpired,
    ChargeNotFound,
    MerchantAlreadyActive,
)
from vouchernet.services.merchant_service import InvalidMerchantState, MerchantNotFound
from vouchernet.time_utils import utctoday


class TestCreateActivationCharge:

    def test_draft_merchant_is_billed(self, db_session, merchant, franchisee, gateway):
        charge = billing_service.create_activation_charge(merchant.id)

        assert charge.status == ChargeStatus.PENDING
        assert charge.amount_cents == 15000
        assert charge.due_date == utctoday() + timedelta(days=30)
        assert charge.gateway_charge_id.startswith("pay_")
        assert charge.payment_url
        assert charge.qr_payload

        db_session.refresh(merchant)
        db_session.refresh(franchisee)
        assert merchant.status == MerchantStatus.PENDING_PAYMENT
        assert franchisee.gateway_customer_id == gateway.customers["12345678000190"]
        assert gateway.calls.count("create_customer") == 1
        assert db_session.query(AuditEvent).filter_by(action="charge.created").count() == 1

    def test_retry_reuses_live_charge(self, db_session, merchant, gateway):
        first = billing_service.create_activation_charge(merchant.id)
        second = billing_service.create_activation_charge(merchant.id)

        assert second.id == first.id
        assert gateway.calls.count("create_charge") == 1
        assert db_session.query(Charge).count() == 1

    def test_gateway_outage_leaves_degraded_charge(self, db_session, merchant, gateway):
        gateway.fail = True
        charge = billing_service.create_activation_charge(merchant.id)

        assert charge.status == ChargeStatus.PENDING
        assert charge.gateway_charge_id is None
        assert charge.payment_url is None
        db_session.refresh(merchant)
        assert merchant.status == MerchantStatus.PENDING_PAYMENT

        gateway.fail = False
        retried = billing_service.create_activation_charge(merchant.id)

        assert retried.id == charge.id
        assert retried.gateway_charge_id is not None
        assert db_session.query(Charge).count() == 1

    def test_existing_gateway_customer_is_adopted(self, db_session, merchant, franchisee, gateway):
        gateway.customers["12345678000190"] = "cus_existing"

        billing_service.create_activation_charge(merchant.id)

        db_session.refresh(franchisee)
        assert franchisee.gateway_customer_id == "cus_existing"
        assert "create_customer" not in gateway.calls

    def test_customer_backfill_race_adopts_stored_id(self, db_session, franchisee, gateway):
        original = gateway.create_customer

        def create_customer_after_concurrent_winner(**kwargs):
            # Another request links the franchisee while we talk to the gateway
            db.session.execute(
                update(Franchisee).where(Franchisee.id == franchisee.id).values(gateway_customer_id="cus_winner")
            )
            db.session.commit()
            return original(**kwargs)

        gateway.create_customer = create_customer_after_concurrent_winner

        customer_id = billing_service.ensure_gateway_customer(franchisee.id, gateway=gateway)

        assert customer_id == "cus_winner"
        db_session.refresh(franchisee)
        assert franchisee.gateway_customer_id == "cus_winner"
        assert db_session.query(AuditEvent).filter_by(action="franchisee.gateway_customer_linked").count() == 0

    def test_active_merchant_is_not_billed(self, active_merchant):
        with pytest.raises(MerchantAlreadyActive):
            billing_service.create_activation_charge(active_merchant.id)

    def test_unknown_merchant(self, db_session):
        with pytest.raises(MerchantNotFound):
            billing_service.create_activation_charge(999999)

    def test_overdue_charge_is_superseded(self, db_session, merchant):
        old = billing_service.create_activation_charge(merchant.id)
        old.due_date = utctoday() - timedelta(days=1)
        db_session.commit()

        new = billing_service.create_activation_charge(merchant.id)

        assert new.id != old.id
        assert new.status == ChargeStatus.PENDING
        assert db_session.get(Charge, old.id).status == ChargeStatus.EXPIRED

    def test_deactivated_merchant_keeps_paid_charge(self, merchant):
        charge = billing_service.create_activation_charge(merchant.id)
        billing_service.mark_paid_manually(charge.id)
        merchant_service.deactivate(merchant.id, reason="chargeback")

        with pytest.raises(ChargeAlreadyPaid):
            billing_service.create_activation_charge(merchant.id)


class TestManualPayment:

    def test_mark_paid_activates_merchant(self, db_session, merchant):
        charge = billing_service.create_activation_charge(merchant.id)

        paid = billing_service.mark_paid_manually(charge.id, user_id=None)

        assert paid.status == ChargeStatus.PAID
        assert paid.paid_at is not None
        db_session.refresh(merchant)
        assert merchant.status == MerchantStatus.ACTIVE
        assert merchant.activated_at is not None

        event = db_session.query(AuditEvent).filter_by(action="charge.paid").one()
        assert event.after["merchant_activated"] is True

    def test_mark_paid_twice(self, merchant):
        charge = billing_service.create_activation_charge(merchant.id)
        billing_service.mark_paid_manually(charge.id)
        with pytest.raises(ChargeAlreadyPaid):
            billing_service.mark_paid_manually(charge.id)

    def test_cancelled_charge_cannot_be_paid(self, merchant):
        charge = billing_service.create_activation_charge(merchant.id)
        billing_service.cancel_charge(charge.id)
        with pytest.raises(ChargeCancelled):
            billing_service.mark_paid_manually(charge.id)

    def test_merchant_is_locked_before_charge(self, monkeypatch, merchant):
        charge = billing_service.create_activation_charge(merchant.id)
        locked = []

        def recording_lock(query):
            locked.append(query.column_descriptions[0]["entity"].__name__)
            return concurrency.lock_for_update(query)

        monkeypatch.setattr(billing_service, "lock_for_update", recording_lock)
        billing_service.mark_paid_manually(charge.id)

        assert locked[:2] == ["Merchant", "Charge"]

    def test_unknown_charge(self, db_session):
        with pytest.raises(ChargeNotFound):
            billing_service.mark_paid_manually(999999)


class TestCancelAndExpire:

    def test_cancel_also_cancels_at_gateway(self, db_session, merchant, gateway):
        charge = billing_service.create_activation_charge(merchant.id)

        cancelled = billing_service.cancel_charge(charge.id)

        assert cancelled.status == ChargeStatus.CANCELLED
        assert cancelled.closed_at is not None
        assert gateway.cancelled == [charge.gateway_charge_id]

    def test_cancel_survives_gateway_outage(self, merchant, gateway):
        charge = billing_service.create_activation_charge(merchant.id)
        gateway.fail = True

        cancelled = billing_service.cancel_charge(charge.id)

        assert cancelled.status == ChargeStatus.CANCELLED
        assert gateway.cancelled == []

    def test_expire_overdue(self, db_session, merchant):
        charge = billing_service.create_activation_charge(merchant.id)
        due = charge.due_date

        assert billing_service.expire_overdue_charges(today=due) == []
        expired = billing_service.expire_overdue_charges(today=due + timedelta(days=1))

        assert expired == [charge.id]
        assert db_session.get(Charge, charge.id).status == ChargeStatus.EXPIRED
        db_session.refresh(merchant)
        assert merchant.status == MerchantStatus.PENDING_PAYMENT

        with pytest.raises(ChargeExpired):
            billing_service.mark_paid_manually(charge.id)

    def test_get_live_charge(self, merchant):
        assert billing_service.get_live_charge(merchant.id) is None
        charge = billing_service.create_activation_charge(merchant.id)
        assert billing_service.get_live_charge(merchant.id).id == charge.id
        billing_service.cancel_charge(charge.id)
        assert billing_service.get_live_charge(merchant.id) is None


def test_deactivate_requires_active_merchant(merchant):
    with pytest.raises(InvalidMerchantState):
        merchant_service.deactivate(merchant.id)


def test_deactivate_moves_to_pending_payment(db_session, active_merchant):
    merchant = merchant_service.deactivate(active_merchant.id, reason="contract ended")
    assert merchant.status == MerchantStatus.PENDING_PAYMENT
    assert db_session.query(AuditEvent).filter_by(action="merchant.deactivated").count() == 1
