# Overview: Service-layer operations for commissions; accrual rule and payout lifecycle.

"""
Commission Accrual Engine

WHY: Franchisees earn a percentage of every recharge made at their
merchants. Recharge is where new value enters the network; redemption only
exhausts value that already accrued, so it never produces a commission.

DESIGN PRINCIPLES:
- accrue() runs inside the caller's unit of work and never commits
- Exactly one commission per originating transaction (unique constraint)
- rate_bps is snapshotted at accrual; later rate edits never rewrite history
- PENDING -> PAID | PENDING -> CANCELLED; nothing leaves PAID or CANCELLED
"""

from decimal import Decimal, ROUND_HALF_UP

from flask import current_app

from ..extensions import db
from ..models import Commission, CommissionStatus, Merchant, Transaction, TransactionStatus
from ..time_utils import utcnow
from ..validation import MAX_RATE_BPS
from .audit_service import record_audit_event, snapshot
from .concurrency import lock_for_update, run_with_retry


class CommissionError(Exception):
    """Raised for commission operation errors."""
    pass


class CommissionNotFound(CommissionError):
    pass


class CommissionAlreadyPaid(CommissionError):
    """Paid commissions are never clawed back."""
    pass


class CommissionCancelled(CommissionError):
    pass


class LedgerInvariantError(Exception):
    """
    Programmer/data error: the ledger reached a state that must be impossible.

    Not a CommissionError on purpose; callers must not treat it as an
    ordinary business rejection.
    """
    pass


def calculate_commission_cents(amount_cents: int, rate_bps: int) -> int:
    """
    amount * rate / 100, rounded half-up to the cent.

    With amounts in cents and rates in basis points this is
    amount_cents * rate_bps / 10000.
    """
    if rate_bps < 0 or rate_bps > MAX_RATE_BPS:
        raise CommissionError(f"Commission rate out of range: {rate_bps} bps")
    exact = Decimal(amount_cents) * Decimal(rate_bps) / Decimal(10_000)
    return int(exact.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def accrue(transaction: Transaction, merchant: Merchant, rate_bps: int) -> Commission:
    """
    Create the PENDING commission for a recharge transaction.

    Runs inside the caller's unit of work (flush, no commit). Any failure
    here must abort the whole recharge, so nothing is caught.
    """
    if transaction.id is None:
        raise CommissionError("Transaction must be flushed before accrual")

    commission = Commission(
        amount_cents=calculate_commission_cents(transaction.amount_cents, rate_bps),
        rate_bps=rate_bps,
        status=CommissionStatus.PENDING,
        franchisee_id=merchant.franchisee_id,
        merchant_id=merchant.id,
        transaction_id=transaction.id,
        created_at=utcnow(),
    )
    db.session.add(commission)
    db.session.flush()
    return commission


def cancel_commission(commission_id: int, user_id: int | None = None) -> Commission:
    """
    Cancel a PENDING commission.

    Raises:
        CommissionNotFound, CommissionAlreadyPaid, CommissionCancelled
    """
    def _op():
        commission = lock_for_update(db.session.query(Commission).filter_by(id=commission_id)).first()
        if not commission:
            raise CommissionNotFound(f"Commission {commission_id} not found")

        if commission.status == CommissionStatus.PAID:
            raise CommissionAlreadyPaid(f"Commission {commission_id} is already paid")
        if commission.status == CommissionStatus.CANCELLED:
            raise CommissionCancelled(f"Commission {commission_id} is already cancelled")

        before = snapshot(commission, "status")
        commission.status = CommissionStatus.CANCELLED
        commission.cancelled_at = utcnow()

        record_audit_event(
            action="commission.cancelled",
            entity_type="commission",
            entity_id=commission.id,
            actor_user_id=user_id,
            before=before,
            after=snapshot(commission, "status", "cancelled_at"),
        )
        db.session.commit()
        return commission

    return run_with_retry(_op)


def mark_commission_paid(commission_id: int, user_id: int | None = None) -> Commission:
    """
    Record the payout of a PENDING commission.

    A commission whose originating transaction was cancelled must already
    be CANCELLED; finding it PENDING means the ledger is corrupt, so the
    payout is refused with LedgerInvariantError and logged as critical.
    """
    def _op():
        commission = lock_for_update(db.session.query(Commission).filter_by(id=commission_id)).first()
        if not commission:
            raise CommissionNotFound(f"Commission {commission_id} not found")

        if commission.status == CommissionStatus.PAID:
            raise CommissionAlreadyPaid(f"Commission {commission_id} is already paid")
        if commission.status == CommissionStatus.CANCELLED:
            raise CommissionCancelled(f"Commission {commission_id} is cancelled")

        transaction = db.session.get(Transaction, commission.transaction_id)
        if transaction is None or transaction.status == TransactionStatus.CANCELLED:
            current_app.logger.critical(
                "Ledger invariant violated: commission %s is PENDING but transaction %s is %s",
                commission.id,
                commission.transaction_id,
                transaction.status if transaction else "missing",
            )
            raise LedgerInvariantError(
                f"Commission {commission.id} references a cancelled or missing transaction"
            )

        before = snapshot(commission, "status")
        commission.status = CommissionStatus.PAID
        commission.paid_at = utcnow()

        record_audit_event(
            action="commission.paid",
            entity_type="commission",
            entity_id=commission.id,
            actor_user_id=user_id,
            before=before,
            after=snapshot(commission, "status", "paid_at"),
        )
        db.session.commit()
        return commission

    return run_with_retry(_op)


def list_commissions(
    *,
    franchisee_id: int | None = None,
    merchant_id: int | None = None,
    status: str | None = None,
    limit: int = 100,
) -> list[Commission]:
    query = db.session.query(Commission)
    if franchisee_id is not None:
        query = query.filter(Commission.franchisee_id == franchisee_id)
    if merchant_id is not None:
        query = query.filter(Commission.merchant_id == merchant_id)
    if status:
        query = query.filter(Commission.status == status)
    return query.order_by(Commission.created_at.desc(), Commission.id.desc()).limit(limit).all()


def get_commission_summary(franchisee_id: int) -> dict:
    """Totals per status for one franchisee (cents)."""
    rows = db.session.query(
        Commission.status,
        db.func.count(Commission.id),
        db.func.coalesce(db.func.sum(Commission.amount_cents), 0),
    ).filter(
        Commission.franchisee_id == franchisee_id,
    ).group_by(Commission.status).all()

    summary = {
        status: {"count": 0, "amount_cents": 0}
        for status in (CommissionStatus.PENDING, CommissionStatus.PAID, CommissionStatus.CANCELLED)
    }
    for status, count, total in rows:
        summary[status] = {"count": int(count), "amount_cents": int(total)}
    return summary
