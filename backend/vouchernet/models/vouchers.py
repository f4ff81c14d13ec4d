from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from ..validation import bps_to_percent, cents_to_decimal


class VoucherStatus:
    AVAILABLE = "AVAILABLE"
    ACTIVE = "ACTIVE"
    REDEEMED = "REDEEMED"
    EXPIRED = "EXPIRED"


class TransactionKind:
    RECHARGE = "RECHARGE"
    REDEMPTION = "REDEMPTION"


class TransactionStatus:
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class CommissionStatus:
    PENDING = "PENDING"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class Voucher(db.Model):
    """
    Prepaid voucher ("cartão").

    INVARIANTS:
    - balance_cents >= 0
    - balance_cents > 0 implies status == ACTIVE
    - status == REDEEMED implies balance_cents == 0

    Mutated only by voucher_service (recharge/redeem) under a row lock.
    version_id guards the balance read-modify-write on databases that ignore
    SELECT ... FOR UPDATE (SQLite).
    """
    __tablename__ = "vouchers"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_vouchers_code"),
        db.UniqueConstraint("scan_code", name="uq_vouchers_scan_code"),
        db.CheckConstraint("balance_cents >= 0", name="ck_vouchers_balance_non_negative"),
        db.Index("ix_vouchers_franchisee_status", "franchisee_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False)
    scan_code = db.Column(db.String(128), nullable=False)

    balance_cents = db.Column(db.BigInteger, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=VoucherStatus.AVAILABLE, index=True)

    franchisee_id = db.Column(db.Integer, db.ForeignKey("franchisees.id"), nullable=False, index=True)
    merchant_id = db.Column(db.Integer, db.ForeignKey("merchants.id"), nullable=True, index=True)

    activated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    redeemed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    franchisee = db.relationship("Franchisee", backref=db.backref("vouchers", lazy=True))
    merchant = db.relationship("Merchant", backref=db.backref("vouchers", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Voucher id={self.id} code={self.code!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "scan_code": self.scan_code,
            "balance_cents": self.balance_cents,
            "balance": cents_to_decimal(self.balance_cents),
            "status": self.status,
            "franchisee_id": self.franchisee_id,
            "merchant_id": self.merchant_id,
            "activated_at": to_utc_z(self.activated_at),
            "redeemed_at": to_utc_z(self.redeemed_at),
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }


class Transaction(db.Model):
    """
    Balance-affecting event on a voucher.

    IMMUTABLE once COMPLETED, except for a single COMPLETED -> CANCELLED
    transition (see transaction_service.cancel_transaction).
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
        db.Index("ix_transactions_voucher_created", "voucher_id", "created_at"),
        db.Index("ix_transactions_merchant_created", "merchant_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(16), nullable=False, index=True)
    amount_cents = db.Column(db.BigInteger, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=TransactionStatus.COMPLETED, index=True)

    voucher_id = db.Column(db.Integer, db.ForeignKey("vouchers.id"), nullable=False)
    merchant_id = db.Column(db.Integer, db.ForeignKey("merchants.id"), nullable=False)

    # Redemption only
    customer_name = db.Column(db.String(160), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)
    receipt_code = db.Column(db.String(32), nullable=True, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    voucher = db.relationship("Voucher", backref=db.backref("transactions", lazy=True))
    merchant = db.relationship("Merchant")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "kind": self.kind,
            "amount_cents": self.amount_cents,
            "amount": cents_to_decimal(self.amount_cents),
            "status": self.status,
            "voucher_id": self.voucher_id,
            "merchant_id": self.merchant_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "receipt_code": self.receipt_code,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "cancelled_at": to_utc_z(self.cancelled_at),
        }


class Commission(db.Model):
    """
    Franchisee commission accrued on a recharge.

    amount_cents == round(transaction.amount_cents * rate_bps / 10000)
    rate_bps is a snapshot of the franchisee's rate at accrual time.
    Exactly one commission per originating transaction.
    """
    __tablename__ = "commissions"
    __table_args__ = (
        db.UniqueConstraint("transaction_id", name="uq_commissions_transaction"),
        db.Index("ix_commissions_franchisee_status", "franchisee_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    amount_cents = db.Column(db.BigInteger, nullable=False)
    rate_bps = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=CommissionStatus.PENDING, index=True)

    franchisee_id = db.Column(db.Integer, db.ForeignKey("franchisees.id"), nullable=False)
    merchant_id = db.Column(db.Integer, db.ForeignKey("merchants.id"), nullable=False, index=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    franchisee = db.relationship("Franchisee")
    merchant = db.relationship("Merchant")
    transaction = db.relationship("Transaction", backref=db.backref("commission", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "amount_cents": self.amount_cents,
            "amount": cents_to_decimal(self.amount_cents),
            "rate_bps": self.rate_bps,
            "rate": bps_to_percent(self.rate_bps),
            "status": self.status,
            "franchisee_id": self.franchisee_id,
            "merchant_id": self.merchant_id,
            "transaction_id": self.transaction_id,
            "created_at": to_utc_z(self.created_at),
            "paid_at": to_utc_z(self.paid_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
        }
