# Overview: Merchant lifecycle; activation cascade and administrative deactivation.

from ..extensions import db
from ..models import Charge, ChargeStatus, Merchant, MerchantStatus
from ..time_utils import utcnow
from .audit_service import record_audit_event, snapshot
from .concurrency import lock_for_update, run_with_retry


class MerchantError(Exception):
    """Raised for merchant lifecycle errors."""
    pass


class MerchantNotFound(MerchantError):
    pass


class InvalidMerchantState(MerchantError):
    pass


def get_merchant(merchant_id: int) -> Merchant:
    merchant = db.session.get(Merchant, merchant_id)
    if not merchant:
        raise MerchantNotFound(f"Merchant {merchant_id} not found")
    return merchant


def activate_for_charge(merchant: Merchant, charge: Charge) -> bool:
    """
    Cascade of a charge reaching PAID: merchant becomes ACTIVE.

    Runs inside the caller's unit of work (no commit). Idempotent: an
    already ACTIVE merchant is left untouched and False is returned.
    """
    if charge.status != ChargeStatus.PAID:
        raise MerchantError(f"Charge {charge.id} is {charge.status}, not PAID")
    if charge.merchant_id != merchant.id:
        raise MerchantError(f"Charge {charge.id} does not belong to merchant {merchant.id}")

    if merchant.status == MerchantStatus.ACTIVE:
        return False

    merchant.status = MerchantStatus.ACTIVE
    merchant.activated_at = utcnow()
    db.session.flush()
    return True


def deactivate(merchant_id: int, user_id: int | None = None, reason: str | None = None) -> Merchant:
    """
    Administrative ACTIVE -> PENDING_PAYMENT.

    The only way out of ACTIVE. The PAID activation charge stays final, so
    create_activation_charge refuses to bill this merchant again
    (ChargeAlreadyPaid).
    """
    def _op():
        merchant = lock_for_update(db.session.query(Merchant).filter_by(id=merchant_id)).first()
        if not merchant:
            raise MerchantNotFound(f"Merchant {merchant_id} not found")
        if merchant.status != MerchantStatus.ACTIVE:
            raise InvalidMerchantState(f"Merchant {merchant_id} is {merchant.status}, only ACTIVE merchants can be deactivated")

        before = snapshot(merchant, "status", "activated_at")
        merchant.status = MerchantStatus.PENDING_PAYMENT

        record_audit_event(
            action="merchant.deactivated",
            entity_type="merchant",
            entity_id=merchant.id,
            actor_user_id=user_id,
            before=before,
            after=snapshot(merchant, "status"),
            note=reason,
        )
        db.session.commit()
        return merchant

    return run_with_retry(_op)


def list_merchants(*, franchisee_id: int | None = None, status: str | None = None) -> list[Merchant]:
    query = db.session.query(Merchant)
    if franchisee_id is not None:
        query = query.filter(Merchant.franchisee_id == franchisee_id)
    if status:
        query = query.filter(Merchant.status == status)
    return query.order_by(Merchant.id).all()
