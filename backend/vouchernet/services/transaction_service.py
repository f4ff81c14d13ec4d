# Overview: Service-layer operations for the transaction log; queries and recharge cancellation.

"""
Transaction Log

WHY: Append-only record of every balance-affecting event. Rows are created
by voucher_service inside the recharge/redeem unit of work and are never
deleted. The only mutation allowed is COMPLETED -> CANCELLED for a recharge
whose commission has not been paid yet.

CANCELLATION (one atomic unit):
- transaction COMPLETED -> CANCELLED
- dependent commission PENDING -> CANCELLED
- voucher balance -= amount (must still hold the recharged value)
"""

from ..extensions import db
from ..models import (
    Commission,
    CommissionStatus,
    Transaction,
    TransactionKind,
    TransactionStatus,
    Voucher,
    VoucherStatus,
)
from ..time_utils import utcnow
from .audit_service import record_audit_event, snapshot
from .commission_service import CommissionAlreadyPaid
from .concurrency import lock_for_update, run_with_retry


class TransactionError(Exception):
    """Raised for transaction log errors."""
    pass


class TransactionNotFound(TransactionError):
    pass


class TransactionAlreadyCancelled(TransactionError):
    pass


class TransactionNotReversible(TransactionError):
    pass


def get_transaction(transaction_id: int) -> Transaction:
    transaction = db.session.get(Transaction, transaction_id)
    if not transaction:
        raise TransactionNotFound(f"Transaction {transaction_id} not found")
    return transaction


def cancel_transaction(transaction_id: int, user_id: int | None = None, reason: str | None = None) -> Transaction:
    """
    Reverse a COMPLETED recharge.

    Raises:
        TransactionNotFound
        TransactionAlreadyCancelled
        TransactionNotReversible: redemption, or the voucher no longer holds
            the recharged value (spent, redeemed or expired)
        CommissionAlreadyPaid: the franchisee was already paid for it
    """
    def _op():
        found = db.session.get(Transaction, transaction_id)
        if not found:
            raise TransactionNotFound(f"Transaction {transaction_id} not found")

        # Voucher first, as recharge and redeem lock it; the transaction is
        # only trusted once read under that lock.
        voucher = lock_for_update(db.session.query(Voucher).filter_by(id=found.voucher_id)).first()
        transaction = lock_for_update(db.session.query(Transaction).filter_by(id=transaction_id)).first()

        if transaction.status == TransactionStatus.CANCELLED:
            raise TransactionAlreadyCancelled(f"Transaction {transaction_id} is already cancelled")
        if transaction.kind != TransactionKind.RECHARGE:
            raise TransactionNotReversible("Only recharge transactions can be cancelled")

        commission = lock_for_update(
            db.session.query(Commission).filter_by(transaction_id=transaction.id)
        ).first()

        if commission is not None and commission.status == CommissionStatus.PAID:
            raise CommissionAlreadyPaid(
                f"Commission {commission.id} for transaction {transaction_id} is already paid"
            )
        if voucher.status != VoucherStatus.ACTIVE:
            raise TransactionNotReversible(f"Voucher is {voucher.status}; the recharge cannot be reversed")
        if voucher.balance_cents < transaction.amount_cents:
            raise TransactionNotReversible("Voucher balance no longer covers the recharged amount")

        now = utcnow()
        before = {
            "transaction_status": transaction.status,
            "voucher_balance_cents": voucher.balance_cents,
            "commission_status": commission.status if commission else None,
        }

        transaction.status = TransactionStatus.CANCELLED
        transaction.cancelled_at = now
        transaction.cancelled_by_user_id = user_id

        voucher.balance_cents = voucher.balance_cents - transaction.amount_cents

        if commission is not None and commission.status == CommissionStatus.PENDING:
            commission.status = CommissionStatus.CANCELLED
            commission.cancelled_at = now

        db.session.flush()

        record_audit_event(
            action="transaction.cancelled",
            entity_type="transaction",
            entity_id=transaction.id,
            actor_user_id=user_id,
            before=before,
            after={
                "transaction_status": transaction.status,
                "voucher_balance_cents": voucher.balance_cents,
                "commission_status": commission.status if commission else None,
            },
            note=reason,
        )
        db.session.commit()
        return transaction

    return run_with_retry(_op)


def list_transactions(
    *,
    voucher_id: int | None = None,
    merchant_id: int | None = None,
    franchisee_id: int | None = None,
    kind: str | None = None,
    status: str | None = None,
    limit: int = 100,
) -> list[Transaction]:
    query = db.session.query(Transaction)
    if voucher_id is not None:
        query = query.filter(Transaction.voucher_id == voucher_id)
    if merchant_id is not None:
        query = query.filter(Transaction.merchant_id == merchant_id)
    if franchisee_id is not None:
        query = query.join(Voucher, Transaction.voucher_id == Voucher.id).filter(
            Voucher.franchisee_id == franchisee_id
        )
    if kind:
        query = query.filter(Transaction.kind == kind)
    if status:
        query = query.filter(Transaction.status == status)
    return query.order_by(Transaction.created_at.desc(), Transaction.id.desc()).limit(limit).all()


def transaction_snapshot(transaction: Transaction) -> dict:
    data = snapshot(transaction)
    commission = transaction.commission
    data["commission"] = commission.to_dict() if commission else None
    return data
