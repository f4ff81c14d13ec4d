# Overview: Role-based permission checks, principal scoping and security event logging.

"""
Permission Checking and Security Event Logging

WHY: Enforce role-based access control and keep an audit trail of denials.

SCOPING: Every principal acts for one node of the network. Reads are
filtered to that node and single-entity access is checked against it:
- FRANCHISOR sees everything under its franchisees
- FRANCHISEE sees its own vouchers, merchants, commissions and charges
- MERCHANT sees its own merchant and the vouchers of its franchisee

DESIGN PRINCIPLES:
- Fail closed: deny by default, unknown roles have no permissions
- Log denials only: grants are not logged
"""

from ..extensions import db
from ..models import Franchisee, Merchant, Role, SecurityEvent, User, Voucher
from ..permissions import ROLE_PERMISSIONS
from ..time_utils import utcnow


class PermissionDeniedError(Exception):
    """Raised when user lacks required permission."""
    pass


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> SecurityEvent:
    """
    Log security event to audit trail.

    event_type examples:
    - PERMISSION_DENIED
    - LOGIN_FAILED
    - LOGIN_SUCCESS
    - LOGOUT
    - SCOPE_DENIED
    - WEBHOOK_SIGNATURE_INVALID
    """
    event = SecurityEvent(
        user_id=user_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow()
    )

    db.session.add(event)
    db.session.commit()

    return event


def get_user_permissions(user: User) -> set[str]:
    return set(ROLE_PERMISSIONS.get(user.role, set()))


def has_permission(user: User, permission_code: str) -> bool:
    return permission_code in get_user_permissions(user)


def require_permission(
    user: User,
    permission_code: str,
    resource: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> None:
    """
    Raise PermissionDeniedError (and log it) unless the user holds the permission.
    """
    if has_permission(user, permission_code):
        return

    log_security_event(
        user_id=user.id,
        event_type="PERMISSION_DENIED",
        success=False,
        resource=resource,
        action=permission_code,
        reason=f"Role {user.role} lacks permission {permission_code}",
        ip_address=ip_address,
        user_agent=user_agent,
    )
    raise PermissionDeniedError(f"Role {user.role} lacks permission {permission_code}")


# =============================================================================
# SCOPING
# =============================================================================

def scope_filters(user: User) -> dict:
    """Keyword filters for list queries (franchisee_id / merchant_id)."""
    if user.role == Role.FRANCHISEE:
        return {"franchisee_id": user.franchisee_id}
    if user.role == Role.MERCHANT:
        return {"merchant_id": user.merchant_id}
    return {}


def _franchisee_in_scope(user: User, franchisee_id: int | None) -> bool:
    if franchisee_id is None:
        return False
    if user.role == Role.FRANCHISOR:
        franchisee = db.session.get(Franchisee, franchisee_id)
        return franchisee is not None and franchisee.franchisor_id == user.franchisor_id
    if user.role == Role.FRANCHISEE:
        return franchisee_id == user.franchisee_id
    return False


def can_access_merchant(user: User, merchant: Merchant) -> bool:
    if user.role == Role.MERCHANT:
        return merchant.id == user.merchant_id
    return _franchisee_in_scope(user, merchant.franchisee_id)


def can_access_franchisee(user: User, franchisee_id: int) -> bool:
    return _franchisee_in_scope(user, franchisee_id)


def can_access_voucher(user: User, voucher: Voucher) -> bool:
    if user.role == Role.MERCHANT:
        merchant = db.session.get(Merchant, user.merchant_id) if user.merchant_id else None
        return merchant is not None and voucher.franchisee_id == merchant.franchisee_id
    return _franchisee_in_scope(user, voucher.franchisee_id)
