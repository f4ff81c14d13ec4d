from __future__ import annotations

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z
from ..validation import cents_to_decimal


class ChargeStatus:
    PENDING = "PENDING"
    PAID = "PAID"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"

    # No transition leaves these states
    FINAL = frozenset({PAID, EXPIRED, CANCELLED})
    LIVE = (PENDING, PAID)


class ChargeType:
    ACTIVATION = "ACTIVATION"


_LIVE_STATUS_CLAUSE = db.text("status IN ('PENDING', 'PAID')")


class Charge(db.Model):
    """
    Billing ledger entry: money a merchant owes for activation, tracked
    against the payment gateway.

    INVARIANT: at most one PENDING/PAID activation charge per merchant.
    billing_service checks it under lock before creating; the partial unique
    index is the database backstop.

    gateway_charge_id / payment_url / qr_payload stay NULL when the gateway
    was unreachable at creation ("billed locally, payable after retry").
    """
    __tablename__ = "charges"
    __table_args__ = (
        db.UniqueConstraint("gateway_charge_id", name="uq_charges_gateway_charge_id"),
        db.Index(
            "uq_charges_merchant_live",
            "merchant_id",
            "charge_type",
            unique=True,
            sqlite_where=_LIVE_STATUS_CLAUSE,
            postgresql_where=_LIVE_STATUS_CLAUSE,
        ),
        db.Index("ix_charges_status_due", "status", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    charge_type = db.Column(db.String(32), nullable=False, default=ChargeType.ACTIVATION)
    amount_cents = db.Column(db.BigInteger, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=ChargeStatus.PENDING, index=True)
    due_date = db.Column(db.Date, nullable=False)

    gateway_charge_id = db.Column(db.String(64), nullable=True)
    payment_url = db.Column(db.String(512), nullable=True)
    qr_payload = db.Column(db.Text, nullable=True)

    merchant_id = db.Column(db.Integer, db.ForeignKey("merchants.id"), nullable=False, index=True)
    franchisee_id = db.Column(db.Integer, db.ForeignKey("franchisees.id"), nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    merchant = db.relationship("Merchant", backref=db.backref("charges", lazy=True))
    franchisee = db.relationship("Franchisee", backref=db.backref("charges", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_final(self) -> bool:
        return self.status in ChargeStatus.FINAL

    def __repr__(self) -> str:
        return f"<Charge id={self.id} status={self.status} gateway={self.gateway_charge_id!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "charge_type": self.charge_type,
            "amount_cents": self.amount_cents,
            "amount": cents_to_decimal(self.amount_cents),
            "status": self.status,
            "due_date": to_iso_date(self.due_date),
            "gateway_charge_id": self.gateway_charge_id,
            "payment_url": self.payment_url,
            "qr_payload": self.qr_payload,
            "merchant_id": self.merchant_id,
            "franchisee_id": self.franchisee_id,
            "created_at": to_utc_z(self.created_at),
            "paid_at": to_utc_z(self.paid_at),
            "closed_at": to_utc_z(self.closed_at),
            "version_id": self.version_id,
        }
