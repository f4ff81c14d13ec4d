# Overview: Service-layer operations for vouchers; atomic recharge/redeem over the voucher row.

"""
Voucher Store

WHY: Voucher balance is money. Every balance change is one atomic unit of
work that mutates the voucher, appends to the transaction log and (for
recharges) accrues the franchisee commission. Either all of it commits or
none of it does.

STATE MACHINE:
- AVAILABLE --recharge--> ACTIVE
- ACTIVE    --recharge--> ACTIVE (balance grows)
- ACTIVE    --redeem----> REDEEMED (balance drops to zero, terminal)
- EXPIRED is terminal; set outside this module

CONCURRENCY:
- The voucher row is locked (SELECT ... FOR UPDATE) for the whole unit
- version_id makes a racing writer fail with StaleDataError on SQLite;
  run_with_retry re-reads and re-applies, so no update is lost or doubled
"""

import secrets
from dataclasses import dataclass

from ..extensions import db
from ..models import (
    Commission,
    Merchant,
    MerchantStatus,
    Transaction,
    TransactionKind,
    TransactionStatus,
    Voucher,
    VoucherStatus,
)
from ..time_utils import utcnow
from ..validation import MAX_AMOUNT_CENTS
from . import commission_service
from .audit_service import record_audit_event, snapshot
from .concurrency import lock_for_update, run_with_retry


class VoucherError(Exception):
    """Raised for voucher operation errors."""
    pass


class VoucherNotFound(VoucherError):
    pass


class VoucherExpired(VoucherError):
    pass


class VoucherAlreadyRedeemed(VoucherError):
    pass


class VoucherNotActive(VoucherError):
    pass


class VoucherEmpty(VoucherError):
    pass


class VoucherCodeConflict(VoucherError):
    pass


class MerchantNotActive(VoucherError):
    """Only ACTIVE merchants may move value on vouchers."""
    pass


@dataclass
class RechargeResult:
    voucher: Voucher
    transaction: Transaction
    commission: Commission

    def to_dict(self) -> dict:
        return {
            "voucher": self.voucher.to_dict(),
            "transaction": self.transaction.to_dict(),
            "commission": self.commission.to_dict(),
        }


@dataclass
class RedeemResult:
    voucher: Voucher
    transaction: Transaction

    @property
    def receipt_code(self) -> str:
        return self.transaction.receipt_code

    def to_dict(self) -> dict:
        return {
            "voucher": self.voucher.to_dict(),
            "transaction": self.transaction.to_dict(),
            "receipt_code": self.receipt_code,
        }


# =============================================================================
# ISSUANCE & LOOKUP
# =============================================================================

def issue_voucher(franchisee_id: int, code: str, scan_code: str, user_id: int | None = None) -> Voucher:
    """
    Issue a new AVAILABLE voucher with zero balance.

    Value only enters through recharge(), so commission accrual can never
    be bypassed by issuing a pre-loaded voucher.
    """
    code = (code or "").strip().upper()
    scan_code = (scan_code or "").strip()
    if not code or not scan_code:
        raise VoucherError("code and scan_code are required")

    clash = db.session.query(Voucher).filter(
        db.or_(Voucher.code == code, Voucher.scan_code == scan_code)
    ).first()
    if clash:
        raise VoucherCodeConflict("A voucher with this code or scan code already exists")

    voucher = Voucher(
        code=code,
        scan_code=scan_code,
        balance_cents=0,
        status=VoucherStatus.AVAILABLE,
        franchisee_id=franchisee_id,
    )
    db.session.add(voucher)
    db.session.flush()

    record_audit_event(
        action="voucher.issued",
        entity_type="voucher",
        entity_id=voucher.id,
        actor_user_id=user_id,
        after=snapshot(voucher, "code", "scan_code", "status", "franchisee_id"),
    )
    db.session.commit()
    return voucher


def get_voucher(voucher_id: int) -> Voucher:
    voucher = db.session.get(Voucher, voucher_id)
    if not voucher:
        raise VoucherNotFound(f"Voucher {voucher_id} not found")
    return voucher


def find_voucher(lookup: str) -> Voucher | None:
    """Resolve a voucher by its printed code or its scan code."""
    value = (lookup or "").strip()
    if not value:
        return None
    return db.session.query(Voucher).filter(
        db.or_(Voucher.code == value.upper(), Voucher.scan_code == value)
    ).first()


# =============================================================================
# RECHARGE / REDEEM
# =============================================================================

def recharge(voucher_id: int, amount_cents: int, merchant_id: int, user_id: int | None = None) -> RechargeResult:
    """
    Add value to a voucher at a merchant.

    One atomic unit: balance += amount, AVAILABLE -> ACTIVE, activation
    timestamp on first recharge, RECHARGE transaction, PENDING commission
    for the merchant's franchisee at its current rate, one audit event.

    Raises:
        VoucherError: amount not positive
        VoucherNotFound, VoucherExpired, VoucherAlreadyRedeemed
        MerchantNotActive
    """
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise VoucherError("Recharge amount must be positive")
    if amount_cents > MAX_AMOUNT_CENTS:
        raise VoucherError("Recharge amount exceeds maximum allowed value")

    def _op():
        voucher = lock_for_update(db.session.query(Voucher).filter_by(id=voucher_id)).first()
        if not voucher:
            raise VoucherNotFound(f"Voucher {voucher_id} not found")

        if voucher.status == VoucherStatus.EXPIRED:
            raise VoucherExpired("Expired voucher cannot be recharged")
        if voucher.status == VoucherStatus.REDEEMED:
            raise VoucherAlreadyRedeemed("Voucher was already redeemed and cannot be recharged")

        merchant = _get_active_merchant(merchant_id)
        # Rate snapshot: whatever the franchisee has configured right now
        rate_bps = merchant.franchisee.commission_rate_bps

        before = snapshot(voucher, "balance_cents", "status", "merchant_id")
        now = utcnow()

        voucher.balance_cents = voucher.balance_cents + amount_cents
        if voucher.status == VoucherStatus.AVAILABLE:
            voucher.status = VoucherStatus.ACTIVE
        if voucher.activated_at is None:
            voucher.activated_at = now
        if voucher.merchant_id is None:
            voucher.merchant_id = merchant.id

        transaction = Transaction(
            kind=TransactionKind.RECHARGE,
            amount_cents=amount_cents,
            status=TransactionStatus.COMPLETED,
            voucher_id=voucher.id,
            merchant_id=merchant.id,
            created_by_user_id=user_id,
            created_at=now,
        )
        db.session.add(transaction)
        db.session.flush()  # Get transaction ID; also raises StaleDataError on a racing writer

        commission = commission_service.accrue(transaction, merchant, rate_bps)

        after = snapshot(voucher, "balance_cents", "status", "merchant_id")
        after.update({
            "transaction_id": transaction.id,
            "amount_cents": amount_cents,
            "commission_id": commission.id,
            "commission_cents": commission.amount_cents,
        })
        record_audit_event(
            action="voucher.recharged",
            entity_type="voucher",
            entity_id=voucher.id,
            actor_user_id=user_id,
            before=before,
            after=after,
        )

        db.session.commit()
        return RechargeResult(voucher=voucher, transaction=transaction, commission=commission)

    return run_with_retry(_op)


def redeem(
    voucher_id: int,
    customer_name: str | None,
    customer_phone: str | None,
    merchant_id: int,
    user_id: int | None = None,
) -> RedeemResult:
    """
    Consume the full remaining balance of a voucher.

    One atomic unit: captured amount = balance, balance -> 0,
    status -> REDEEMED, receipt code, REDEMPTION transaction, one audit
    event. No commission.

    Raises:
        VoucherNotFound, VoucherNotActive, VoucherEmpty, MerchantNotActive
    """
    def _op():
        voucher = lock_for_update(db.session.query(Voucher).filter_by(id=voucher_id)).first()
        if not voucher:
            raise VoucherNotFound(f"Voucher {voucher_id} not found")

        if voucher.status in (VoucherStatus.REDEEMED, VoucherStatus.EXPIRED):
            raise VoucherNotActive(f"Voucher is {voucher.status} and cannot be redeemed")
        if voucher.balance_cents <= 0:
            raise VoucherEmpty("Voucher has no balance to redeem")
        if voucher.status != VoucherStatus.ACTIVE:
            raise VoucherNotActive("Voucher is not active")

        merchant = _get_active_merchant(merchant_id)

        before = snapshot(voucher, "balance_cents", "status")
        now = utcnow()
        amount_cents = voucher.balance_cents
        receipt_code = generate_receipt_code(now)

        voucher.balance_cents = 0
        voucher.status = VoucherStatus.REDEEMED
        voucher.redeemed_at = now

        transaction = Transaction(
            kind=TransactionKind.REDEMPTION,
            amount_cents=amount_cents,
            status=TransactionStatus.COMPLETED,
            voucher_id=voucher.id,
            merchant_id=merchant.id,
            customer_name=(customer_name or "").strip() or None,
            customer_phone=(customer_phone or "").strip() or None,
            receipt_code=receipt_code,
            created_by_user_id=user_id,
            created_at=now,
        )
        db.session.add(transaction)
        db.session.flush()

        after = snapshot(voucher, "balance_cents", "status", "redeemed_at")
        after.update({
            "transaction_id": transaction.id,
            "amount_cents": amount_cents,
            "receipt_code": receipt_code,
        })
        record_audit_event(
            action="voucher.redeemed",
            entity_type="voucher",
            entity_id=voucher.id,
            actor_user_id=user_id,
            before=before,
            after=after,
        )

        db.session.commit()
        return RedeemResult(voucher=voucher, transaction=transaction)

    return run_with_retry(_op)


def generate_receipt_code(now=None) -> str:
    """
    COMP-YYYYMMDD-####

    Random 4-digit suffix: practically unique per day, not guaranteed
    globally unique.
    """
    now = now or utcnow()
    return f"COMP-{now.strftime('%Y%m%d')}-{secrets.randbelow(10_000):04d}"


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _get_active_merchant(merchant_id: int) -> Merchant:
    merchant = db.session.get(Merchant, merchant_id)
    if not merchant:
        raise MerchantNotActive(f"Merchant {merchant_id} not found")
    if merchant.status != MerchantStatus.ACTIVE:
        raise MerchantNotActive(f"Merchant {merchant_id} is {merchant.status}")
    return merchant


def list_vouchers(
    *,
    franchisee_id: int | None = None,
    merchant_id: int | None = None,
    status: str | None = None,
    limit: int = 100,
) -> list[Voucher]:
    query = db.session.query(Voucher)
    if franchisee_id is not None:
        query = query.filter(Voucher.franchisee_id == franchisee_id)
    if merchant_id is not None:
        query = query.filter(Voucher.merchant_id == merchant_id)
    if status:
        query = query.filter(Voucher.status == status)
    return query.order_by(Voucher.created_at.desc(), Voucher.id.desc()).limit(limit).all()
