from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from ..validation import bps_to_percent


class MerchantStatus:
    """Merchant lifecycle states."""
    DRAFT = "DRAFT"
    PENDING_PAYMENT = "PENDING_PAYMENT"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"

    ALL = (DRAFT, PENDING_PAYMENT, ACTIVE, INACTIVE)


class Franchisor(db.Model):
    """Top of the network. Issues vouchers through its franchisees."""
    __tablename__ = "franchisors"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(160), nullable=False, unique=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Franchisor id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": to_utc_z(self.created_at),
        }


class Franchisee(db.Model):
    """
    Franchisee ("franqueado").

    WHY: Owns vouchers and merchants, earns commission on every recharge
    made at its merchants, and is the billed customer at the payment gateway
    for merchant activation fees.

    commission_rate_bps is the CURRENT configured rate. Commissions snapshot
    it at creation time, so later edits never rewrite history.
    """
    __tablename__ = "franchisees"
    __table_args__ = (
        db.UniqueConstraint("document", name="uq_franchisees_document"),
        db.UniqueConstraint("gateway_customer_id", name="uq_franchisees_gateway_customer"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    franchisor_id = db.Column(db.Integer, db.ForeignKey("franchisors.id"), nullable=False, index=True)

    name = db.Column(db.String(160), nullable=False)
    # CNPJ digits only
    document = db.Column(db.String(18), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)

    # 10000 bps == 100%
    commission_rate_bps = db.Column(db.Integer, nullable=False, default=0)

    # Backfilled on first billing; unique so concurrent backfills converge
    gateway_customer_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    franchisor = db.relationship("Franchisor", backref=db.backref("franchisees", lazy=True))

    def __repr__(self) -> str:
        return f"<Franchisee id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "franchisor_id": self.franchisor_id,
            "name": self.name,
            "document": self.document,
            "email": self.email,
            "phone": self.phone,
            "commission_rate_bps": self.commission_rate_bps,
            "commission_rate": bps_to_percent(self.commission_rate_bps),
            "gateway_customer_id": self.gateway_customer_id,
            "created_at": to_utc_z(self.created_at),
        }


class Merchant(db.Model):
    """
    Merchant ("estabelecimento") where vouchers are recharged and redeemed.

    LIFECYCLE:
    - DRAFT -> PENDING_PAYMENT when an activation charge is issued
    - PENDING_PAYMENT -> ACTIVE only when that charge reaches PAID
    - ACTIVE -> PENDING_PAYMENT only via the administrative deactivate action
    """
    __tablename__ = "merchants"
    __table_args__ = (
        db.Index("ix_merchants_franchisee_status", "franchisee_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    franchisee_id = db.Column(db.Integer, db.ForeignKey("franchisees.id"), nullable=False, index=True)

    name = db.Column(db.String(160), nullable=False)
    document = db.Column(db.String(18), nullable=True)

    status = db.Column(db.String(24), nullable=False, default=MerchantStatus.DRAFT, index=True)
    activated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Touched by every billing unit of work so concurrent charge creation
    # for the same merchant collides on version_id
    last_billed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    franchisee = db.relationship("Franchisee", backref=db.backref("merchants", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Merchant id={self.id} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "franchisee_id": self.franchisee_id,
            "name": self.name,
            "document": self.document,
            "status": self.status,
            "activated_at": to_utc_z(self.activated_at),
            "last_billed_at": to_utc_z(self.last_billed_at),
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
