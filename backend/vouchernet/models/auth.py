from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Role:
    """Principal roles. One role per user."""
    FRANCHISOR = "FRANCHISOR"
    FRANCHISEE = "FRANCHISEE"
    MERCHANT = "MERCHANT"
    END_USER = "END_USER"

    ALL = (FRANCHISOR, FRANCHISEE, MERCHANT, END_USER)


class User(db.Model):
    """
    User accounts for authentication and attribution.

    SCOPE: A user acts on behalf of exactly one network node, matching its
    role:
    - FRANCHISOR -> franchisor_id
    - FRANCHISEE -> franchisee_id
    - MERCHANT   -> merchant_id
    - END_USER   -> none

    Ledger mutations record the acting user id, so logins are never shared.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("email", name="uq_users_email"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(160), nullable=False)

    # bcrypt, cost from BCRYPT_ROUNDS
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(16), nullable=False, index=True)
    franchisor_id = db.Column(db.Integer, db.ForeignKey("franchisors.id"), nullable=True, index=True)
    franchisee_id = db.Column(db.Integer, db.ForeignKey("franchisees.id"), nullable=True, index=True)
    merchant_id = db.Column(db.Integer, db.ForeignKey("merchants.id"), nullable=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    franchisor = db.relationship("Franchisor")
    franchisee = db.relationship("Franchisee")
    merchant = db.relationship("Merchant")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "franchisor_id": self.franchisor_id,
            "franchisee_id": self.franchisee_id,
            "merchant_id": self.merchant_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at),
        }


class SessionToken(db.Model):
    """
    Bearer session. Only the SHA-256 of the token is kept; timeouts and
    revocation are enforced by services/session_service.py.
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_user_active", "user_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # sha256 hex of the bearer token
    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user_agent = db.Column(db.String(512), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)  # IPv6 max length

    user = db.relationship("User", backref=db.backref("sessions", lazy=True))
