# Overview: Service-layer operations for merchant activation billing; charge lifecycle and gateway linkage.

"""
Billing Ledger

WHY: A merchant may only transact after its franchisee pays the activation
fee. Each merchant has at most one live (PENDING or PAID) activation charge,
linked to a charge at the payment gateway.

CHARGE STATE MACHINE:
- PENDING -> PAID       (webhook, poll, or manual confirmation)
- PENDING -> EXPIRED    (due date passed, or gateway reports overdue)
- PENDING -> CANCELLED  (administrative, or gateway reports deleted)
- PAID / EXPIRED / CANCELLED are final; an EXPIRED charge is superseded by
  a new charge, never revived

DESIGN PRINCIPLES:
- Gateway calls never happen while a DB transaction is open
- Creation is two short units of work around the gateway call; a gateway
  failure leaves a PENDING charge with NULL gateway fields (degraded)
- Retrying creation reuses the live PENDING charge instead of adding one
- Reaching PAID activates the merchant in the same unit of work
"""

from datetime import date, timedelta

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Charge, ChargeStatus, ChargeType, Franchisee, Merchant, MerchantStatus
from ..time_utils import utcnow, utctoday
from . import merchant_service
from .audit_service import SOURCE_API, SOURCE_CLI, record_audit_event, snapshot
from .concurrency import lock_for_update, release_read_transaction, run_with_retry
from .gateway_client import GatewayError, get_gateway
from .merchant_service import MerchantNotFound


class BillingError(Exception):
    """Raised for billing operation errors."""
    pass


class ChargeNotFound(BillingError):
    pass


class ChargeAlreadyPaid(BillingError):
    pass


class ChargeCancelled(BillingError):
    pass


class ChargeExpired(BillingError):
    pass


class MerchantAlreadyActive(BillingError):
    pass


# =============================================================================
# CHARGE TRANSITIONS (shared with reconciliation)
# =============================================================================

def transition_charge(charge: Charge, target_status: str, now=None) -> bool:
    """
    Move a PENDING charge to a final state inside the caller's unit of work.

    Returns True if the merchant was activated as a consequence. The caller
    must hold the charge lock (lock_charge) and has already checked that it
    is PENDING.
    """
    if charge.status != ChargeStatus.PENDING:
        raise BillingError(f"Charge {charge.id} is {charge.status}; only PENDING charges can transition")
    if target_status not in ChargeStatus.FINAL:
        raise BillingError(f"Invalid target status: {target_status}")

    now = now or utcnow()
    charge.status = target_status
    charge.closed_at = now

    if target_status != ChargeStatus.PAID:
        db.session.flush()
        return False

    charge.paid_at = now
    merchant = lock_for_update(db.session.query(Merchant).filter_by(id=charge.merchant_id)).first()
    return merchant_service.activate_for_charge(merchant, charge)


def _require_pending(charge: Charge) -> None:
    if charge.status == ChargeStatus.PAID:
        raise ChargeAlreadyPaid(f"Charge {charge.id} is already paid")
    if charge.status == ChargeStatus.CANCELLED:
        raise ChargeCancelled(f"Charge {charge.id} is cancelled")
    if charge.status == ChargeStatus.EXPIRED:
        raise ChargeExpired(f"Charge {charge.id} is expired; issue a new activation charge")


def lock_charge(query) -> Charge | None:
    """
    Lock the merchant row, then the charge matched by query.

    Every unit that mutates charges takes its locks in this order
    (_prepare_activation_charge locks the merchant before its charges).
    """
    found = query.first()
    if found is None:
        return None
    lock_for_update(db.session.query(Merchant).filter_by(id=found.merchant_id)).first()
    return lock_for_update(query).first()


def _lock_charge(charge_id: int) -> Charge:
    charge = lock_charge(db.session.query(Charge).filter_by(id=charge_id))
    if not charge:
        raise ChargeNotFound(f"Charge {charge_id} not found")
    return charge


# =============================================================================
# ACTIVATION CHARGE CREATION
# =============================================================================

def create_activation_charge(merchant_id: int, user_id: int | None = None, gateway=None) -> Charge:
    """
    Issue (or re-issue) the activation charge for a merchant.

    Unit A (locked merchant): expire overdue PENDING charges, cancel stale
    extras, reuse or create the live PENDING charge, move the merchant to
    PENDING_PAYMENT.
    Gateway step (no transaction open): ensure the franchisee exists as a
    gateway customer and create the gateway charge.
    Unit B (locked charge): attach gateway id and payment artifacts.

    Raises:
        MerchantNotFound, MerchantAlreadyActive, ChargeAlreadyPaid
    """
    charge_id = run_with_retry(lambda: _prepare_activation_charge(merchant_id, user_id))

    charge = db.session.get(Charge, charge_id)
    if charge.gateway_charge_id:
        return charge

    gateway = gateway or get_gateway()
    franchisee_id = charge.franchisee_id
    amount_cents = charge.amount_cents
    due_date = charge.due_date
    description = f"Merchant activation fee (merchant #{charge.merchant_id})"
    release_read_transaction()

    try:
        customer_ref = ensure_gateway_customer(franchisee_id, gateway=gateway, user_id=user_id)
        release_read_transaction()
        gateway_charge = gateway.create_charge(
            customer_ref,
            amount_cents,
            due_date,
            description,
            external_reference=f"charge:{charge_id}",
        )
    except GatewayError as exc:
        current_app.logger.warning(
            "Gateway unavailable while billing charge %s; left PENDING without gateway link: %s",
            charge_id,
            exc,
        )
        return db.session.get(Charge, charge_id)

    charge, duplicate_id = run_with_retry(lambda: _attach_gateway_charge(charge_id, gateway_charge, user_id))
    if duplicate_id:
        _cancel_at_gateway(gateway, duplicate_id)
    return charge


def _prepare_activation_charge(merchant_id: int, user_id: int | None) -> int:
    merchant = lock_for_update(db.session.query(Merchant).filter_by(id=merchant_id)).first()
    if not merchant:
        raise MerchantNotFound(f"Merchant {merchant_id} not found")
    if merchant.status == MerchantStatus.ACTIVE:
        raise MerchantAlreadyActive(f"Merchant {merchant_id} is already active")

    paid = db.session.query(Charge).filter_by(
        merchant_id=merchant.id,
        charge_type=ChargeType.ACTIVATION,
        status=ChargeStatus.PAID,
    ).first()
    if paid:
        raise ChargeAlreadyPaid(f"Merchant {merchant_id} already has a paid activation charge ({paid.id})")

    now = utcnow()
    today = now.date()

    pending = lock_for_update(
        db.session.query(Charge).filter_by(
            merchant_id=merchant.id,
            charge_type=ChargeType.ACTIVATION,
            status=ChargeStatus.PENDING,
        ).order_by(Charge.created_at.desc(), Charge.id.desc())
    ).all()

    expired_ids = []
    cancelled_ids = []
    live = None
    for charge in pending:
        if charge.due_date < today:
            transition_charge(charge, ChargeStatus.EXPIRED, now)
            expired_ids.append(charge.id)
        elif live is None:
            live = charge
        else:
            # Only the newest live charge survives
            transition_charge(charge, ChargeStatus.CANCELLED, now)
            cancelled_ids.append(charge.id)
    db.session.flush()

    before = snapshot(merchant, "status")
    created = live is None
    if created:
        live = Charge(
            charge_type=ChargeType.ACTIVATION,
            amount_cents=current_app.config["ACTIVATION_FEE_CENTS"],
            status=ChargeStatus.PENDING,
            due_date=today + timedelta(days=current_app.config["ACTIVATION_CHARGE_DUE_DAYS"]),
            merchant_id=merchant.id,
            franchisee_id=merchant.franchisee_id,
            created_at=now,
        )
        db.session.add(live)

    if merchant.status in (MerchantStatus.DRAFT, MerchantStatus.INACTIVE):
        merchant.status = MerchantStatus.PENDING_PAYMENT
    merchant.last_billed_at = now
    db.session.flush()

    after = snapshot(live, "status", "amount_cents", "due_date", "gateway_charge_id")
    after.update({
        "merchant_status": merchant.status,
        "expired_charge_ids": expired_ids,
        "cancelled_charge_ids": cancelled_ids,
    })
    record_audit_event(
        action="charge.created" if created else "charge.reissued",
        entity_type="charge",
        entity_id=live.id,
        actor_user_id=user_id,
        before={"merchant_status": before["status"]},
        after=after,
    )
    db.session.commit()
    return live.id


def _attach_gateway_charge(charge_id: int, gateway_charge, user_id: int | None):
    """Returns (charge, duplicate_gateway_id)."""
    charge = _lock_charge(charge_id)

    if charge.gateway_charge_id or charge.status != ChargeStatus.PENDING:
        # Another request linked it first, or it closed meanwhile
        db.session.commit()
        return charge, gateway_charge.gateway_charge_id

    charge.gateway_charge_id = gateway_charge.gateway_charge_id
    charge.payment_url = gateway_charge.payment_url
    charge.qr_payload = gateway_charge.qr_payload

    record_audit_event(
        action="charge.gateway_linked",
        entity_type="charge",
        entity_id=charge.id,
        actor_user_id=user_id,
        after=snapshot(charge, "gateway_charge_id", "payment_url"),
    )
    db.session.commit()
    return charge, None


def ensure_gateway_customer(franchisee_id: int, gateway=None, user_id: int | None = None) -> str:
    """
    Return the franchisee's gateway customer id, creating it if needed.

    Backfill is idempotent: the id is written with a conditional UPDATE
    (only while still NULL). A concurrent caller that loses the race adopts
    the stored id.
    """
    franchisee = db.session.get(Franchisee, franchisee_id)
    if not franchisee:
        raise BillingError(f"Franchisee {franchisee_id} not found")
    if franchisee.gateway_customer_id:
        return franchisee.gateway_customer_id

    name, document, email, phone = franchisee.name, franchisee.document, franchisee.email, franchisee.phone
    release_read_transaction()

    gateway = gateway or get_gateway()
    customer_id = gateway.find_customer_by_document(document)
    if not customer_id:
        customer_id = gateway.create_customer(name=name, document=document, email=email, phone=phone)

    def _op():
        result = db.session.execute(
            update(Franchisee)
            .where(Franchisee.id == franchisee_id, Franchisee.gateway_customer_id.is_(None))
            .values(gateway_customer_id=customer_id)
        )
        if result.rowcount == 1:
            record_audit_event(
                action="franchisee.gateway_customer_linked",
                entity_type="franchisee",
                entity_id=franchisee_id,
                actor_user_id=user_id,
                after={"gateway_customer_id": customer_id},
            )
            db.session.commit()
            return customer_id

        db.session.commit()
        stored = db.session.get(Franchisee, franchisee_id, populate_existing=True)
        current_app.logger.info(
            "Franchisee %s already linked to gateway customer %s; discarding %s",
            franchisee_id,
            stored.gateway_customer_id,
            customer_id,
        )
        return stored.gateway_customer_id

    return run_with_retry(_op)


# =============================================================================
# MANUAL / ADMINISTRATIVE TRANSITIONS
# =============================================================================

def mark_paid_manually(charge_id: int, user_id: int | None = None) -> Charge:
    """
    Confirm payment received outside the gateway (FRANCHISOR only).

    Sets PAID and activates the merchant in the same unit of work.

    Raises:
        ChargeNotFound, ChargeAlreadyPaid, ChargeCancelled, ChargeExpired
    """
    def _op():
        charge = _lock_charge(charge_id)
        _require_pending(charge)

        before = snapshot(charge, "status")
        activated = transition_charge(charge, ChargeStatus.PAID)

        after = snapshot(charge, "status", "paid_at")
        after["merchant_activated"] = activated
        record_audit_event(
            action="charge.paid",
            entity_type="charge",
            entity_id=charge.id,
            actor_user_id=user_id,
            source=SOURCE_API,
            before=before,
            after=after,
            note="Manual payment confirmation",
        )
        db.session.commit()
        return charge

    charge = run_with_retry(_op)
    current_app.logger.info("Charge %s marked paid manually by user %s", charge_id, user_id)
    return charge


def cancel_charge(charge_id: int, user_id: int | None = None, gateway=None) -> Charge:
    """
    Administrative PENDING -> CANCELLED.

    The gateway charge (if any) is cancelled best-effort after commit; a
    failure there is logged and does not undo the local cancellation.
    """
    def _op():
        charge = _lock_charge(charge_id)
        _require_pending(charge)

        before = snapshot(charge, "status")
        transition_charge(charge, ChargeStatus.CANCELLED)
        record_audit_event(
            action="charge.cancelled",
            entity_type="charge",
            entity_id=charge.id,
            actor_user_id=user_id,
            before=before,
            after=snapshot(charge, "status", "closed_at"),
        )
        db.session.commit()
        return charge

    charge = run_with_retry(_op)
    gateway_charge_id = charge.gateway_charge_id
    release_read_transaction()

    if gateway_charge_id:
        _cancel_at_gateway(gateway or get_gateway(), gateway_charge_id)
    return charge


def _cancel_at_gateway(gateway, gateway_charge_id: str) -> None:
    try:
        gateway.cancel_charge(gateway_charge_id)
    except GatewayError as exc:
        current_app.logger.warning("Could not cancel gateway charge %s: %s", gateway_charge_id, exc)


def expire_overdue_charges(today: date | None = None, user_id: int | None = None, source: str = SOURCE_CLI) -> list[int]:
    """
    PENDING charges whose due date is before today -> EXPIRED.

    One unit of work (and one audit event) per charge. Merchants stay
    PENDING_PAYMENT until a new charge is paid.
    """
    today = today or utctoday()
    ids = [
        row.id for row in db.session.query(Charge.id).filter(
            Charge.status == ChargeStatus.PENDING,
            Charge.due_date < today,
        ).order_by(Charge.id).all()
    ]

    expired = []
    for charge_id in ids:
        def _op(charge_id=charge_id):
            charge = _lock_charge(charge_id)
            if charge.status != ChargeStatus.PENDING or charge.due_date >= today:
                db.session.commit()
                return False

            transition_charge(charge, ChargeStatus.EXPIRED)
            record_audit_event(
                action="charge.expired",
                entity_type="charge",
                entity_id=charge.id,
                actor_user_id=user_id,
                source=source,
                before={"status": ChargeStatus.PENDING},
                after=snapshot(charge, "status", "due_date", "closed_at"),
            )
            db.session.commit()
            return True

        if run_with_retry(_op):
            expired.append(charge_id)

    if expired:
        current_app.logger.info("Expired %d overdue charge(s): %s", len(expired), expired)
    return expired


# =============================================================================
# QUERIES
# =============================================================================

def get_charge(charge_id: int) -> Charge:
    charge = db.session.get(Charge, charge_id)
    if not charge:
        raise ChargeNotFound(f"Charge {charge_id} not found")
    return charge


def get_live_charge(merchant_id: int) -> Charge | None:
    return db.session.query(Charge).filter(
        Charge.merchant_id == merchant_id,
        Charge.charge_type == ChargeType.ACTIVATION,
        Charge.status.in_(ChargeStatus.LIVE),
    ).order_by(Charge.created_at.desc(), Charge.id.desc()).first()


def list_charges(
    *,
    merchant_id: int | None = None,
    franchisee_id: int | None = None,
    status: str | None = None,
    limit: int = 100,
) -> list[Charge]:
    query = db.session.query(Charge)
    if merchant_id is not None:
        query = query.filter(Charge.merchant_id == merchant_id)
    if franchisee_id is not None:
        query = query.filter(Charge.franchisee_id == franchisee_id)
    if status:
        query = query.filter(Charge.status == status)
    return query.order_by(Charge.created_at.desc(), Charge.id.desc()).limit(limit).all()
