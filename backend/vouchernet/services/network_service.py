# Overview: Creation of the franchise network (franchisors, franchisees, merchants).

import re

from ..extensions import db
from ..models import Franchisee, Franchisor, Merchant, MerchantStatus
from ..validation import MAX_RATE_BPS
from .audit_service import SOURCE_CLI, record_audit_event, snapshot


class NetworkError(ValueError):
    """Raised when a network node cannot be created or changed."""
    pass


def _digits(value: str | None) -> str | None:
    if value is None:
        return None
    return re.sub(r"\D", "", value) or None


def create_franchisor(name: str, user_id: int | None = None, source: str = SOURCE_CLI) -> Franchisor:
    name = (name or "").strip()
    if not name:
        raise NetworkError("Franchisor name is required")
    if db.session.query(Franchisor).filter_by(name=name).first():
        raise NetworkError(f"Franchisor '{name}' already exists")

    franchisor = Franchisor(name=name)
    db.session.add(franchisor)
    db.session.flush()
    record_audit_event(
        action="franchisor.created",
        entity_type="franchisor",
        entity_id=franchisor.id,
        actor_user_id=user_id,
        source=source,
        after=snapshot(franchisor, "name"),
    )
    db.session.commit()
    return franchisor


def create_franchisee(
    franchisor_id: int,
    name: str,
    document: str,
    email: str,
    commission_rate_bps: int,
    phone: str | None = None,
    user_id: int | None = None,
    source: str = SOURCE_CLI,
) -> Franchisee:
    """
    Register a franchisee.

    document is stored as digits only (CNPJ has 14). The gateway customer id
    is backfilled on first billing, never here.
    """
    if db.session.get(Franchisor, franchisor_id) is None:
        raise NetworkError(f"Franchisor {franchisor_id} not found")
    document = _digits(document)
    if not document or len(document) not in (11, 14):
        raise NetworkError("document must be a CPF (11 digits) or CNPJ (14 digits)")
    if not name or not email:
        raise NetworkError("name and email are required")
    if commission_rate_bps < 0 or commission_rate_bps > MAX_RATE_BPS:
        raise NetworkError("commission rate must be between 0% and 100%")
    if db.session.query(Franchisee).filter_by(document=document).first():
        raise NetworkError(f"A franchisee with document {document} already exists")

    franchisee = Franchisee(
        franchisor_id=franchisor_id,
        name=name.strip(),
        document=document,
        email=email.strip().lower(),
        phone=_digits(phone),
        commission_rate_bps=commission_rate_bps,
    )
    db.session.add(franchisee)
    db.session.flush()
    record_audit_event(
        action="franchisee.created",
        entity_type="franchisee",
        entity_id=franchisee.id,
        actor_user_id=user_id,
        source=source,
        after=snapshot(franchisee, "name", "document", "commission_rate_bps"),
    )
    db.session.commit()
    return franchisee


def set_commission_rate(franchisee_id: int, commission_rate_bps: int, user_id: int | None = None,
                        source: str = SOURCE_CLI) -> Franchisee:
    """New rate applies to future recharges only; accrued commissions keep their snapshot."""
    if commission_rate_bps < 0 or commission_rate_bps > MAX_RATE_BPS:
        raise NetworkError("commission rate must be between 0% and 100%")
    franchisee = db.session.get(Franchisee, franchisee_id)
    if franchisee is None:
        raise NetworkError(f"Franchisee {franchisee_id} not found")

    before = snapshot(franchisee, "commission_rate_bps")
    franchisee.commission_rate_bps = commission_rate_bps
    record_audit_event(
        action="franchisee.rate_changed",
        entity_type="franchisee",
        entity_id=franchisee.id,
        actor_user_id=user_id,
        source=source,
        before=before,
        after=snapshot(franchisee, "commission_rate_bps"),
    )
    db.session.commit()
    return franchisee


def create_merchant(
    franchisee_id: int,
    name: str,
    document: str | None = None,
    user_id: int | None = None,
    source: str = SOURCE_CLI,
) -> Merchant:
    """New merchants start in DRAFT and cannot transact until activated."""
    if db.session.get(Franchisee, franchisee_id) is None:
        raise NetworkError(f"Franchisee {franchisee_id} not found")
    name = (name or "").strip()
    if not name:
        raise NetworkError("Merchant name is required")

    merchant = Merchant(
        franchisee_id=franchisee_id,
        name=name,
        document=_digits(document),
        status=MerchantStatus.DRAFT,
    )
    db.session.add(merchant)
    db.session.flush()
    record_audit_event(
        action="merchant.created",
        entity_type="merchant",
        entity_id=merchant.id,
        actor_user_id=user_id,
        source=source,
        after=snapshot(merchant, "name", "status", "franchisee_id"),
    )
    db.session.commit()
    return merchant
