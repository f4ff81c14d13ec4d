# Overview: Flask API routes for voucher operations; parses input and returns JSON responses.

# backend/vouchernet/routes/vouchers.py
"""
Voucher API Routes

DESIGN:
- Issue vouchers (franchisor / franchisee)
- Recharge and redeem at the caller's merchant (merchant users only)
- Read vouchers within the caller's scope

ERRORS:
- 400: invalid input
- 404: unknown voucher, or a voucher outside the caller's scope
- 409: the voucher's state forbids the operation
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..models import Role
from ..services import voucher_service, transaction_service, permission_service
from ..services.audit_service import get_entity_history
from ..services.voucher_service import (
    VoucherError,
    VoucherNotFound,
    VoucherCodeConflict,
    VoucherExpired,
    VoucherAlreadyRedeemed,
    VoucherNotActive,
    VoucherEmpty,
    MerchantNotActive,
)
from ..decorators import require_auth, require_permission, deny_out_of_scope
from ..permissions import ISSUE_VOUCHER, VIEW_VOUCHERS, RECHARGE_VOUCHER, REDEEM_VOUCHER
from ..validation import ValidationError, parse_amount_cents, parse_limit, require_fields


vouchers_bp = Blueprint("vouchers", __name__, url_prefix="/api/vouchers")

_CONFLICTS = (
    VoucherCodeConflict,
    VoucherExpired,
    VoucherAlreadyRedeemed,
    VoucherNotActive,
    VoucherEmpty,
    MerchantNotActive,
)


def _voucher_error(e: VoucherError):
    if isinstance(e, VoucherNotFound):
        return jsonify({"error": str(e)}), 404
    if isinstance(e, _CONFLICTS):
        return jsonify({"error": str(e), "code": type(e).__name__}), 409
    return jsonify({"error": str(e)}), 400


def _load_in_scope(voucher_id: int):
    """Returns (voucher, None) or (None, error_response)."""
    voucher = voucher_service.get_voucher(voucher_id)
    if not permission_service.can_access_voucher(g.current_user, voucher):
        return None, deny_out_of_scope("voucher", voucher_id)
    return voucher, None


# =============================================================================
# ISSUANCE
# =============================================================================

@vouchers_bp.post("")
@require_auth
@require_permission(ISSUE_VOUCHER)
def issue_voucher_route():
    """
    Issue a new voucher (AVAILABLE, zero balance).

    Request body:
    {
        "code": "VCH-0001",
        "scan_code": "QR-8f2a...",
        "franchisee_id": 3   (franchisor only; franchisees issue for themselves)
    }
    """
    try:
        data = require_fields(request.get_json(silent=True), "code", "scan_code")
        user = g.current_user

        if user.role == Role.FRANCHISEE:
            franchisee_id = user.franchisee_id
        else:
            franchisee_id = data.get("franchisee_id")
            if not franchisee_id:
                return jsonify({"error": "franchisee_id required"}), 400
            if not permission_service.can_access_franchisee(user, int(franchisee_id)):
                return deny_out_of_scope("franchisee", franchisee_id)

        voucher = voucher_service.issue_voucher(
            franchisee_id=int(franchisee_id),
            code=data["code"],
            scan_code=data["scan_code"],
            user_id=user.id,
        )
        return jsonify({"voucher": voucher.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except VoucherError as e:
        return _voucher_error(e)
    except Exception:
        current_app.logger.exception("Failed to issue voucher")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# QUERIES
# =============================================================================

@vouchers_bp.get("")
@require_auth
@require_permission(VIEW_VOUCHERS)
def list_vouchers_route():
    """
    List vouchers in scope.

    Query params: status, limit, lookup (printed code or scan code)
    """
    try:
        lookup = request.args.get("lookup")
        if lookup:
            voucher = voucher_service.find_voucher(lookup)
            if not voucher or not permission_service.can_access_voucher(g.current_user, voucher):
                return jsonify({"vouchers": []}), 200
            return jsonify({"vouchers": [voucher.to_dict()]}), 200

        vouchers = voucher_service.list_vouchers(
            status=request.args.get("status"),
            limit=parse_limit(request.args.get("limit")),
            **permission_service.scope_filters(g.current_user),
        )
        return jsonify({"vouchers": [v.to_dict() for v in vouchers]}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list vouchers")
        return jsonify({"error": "Internal server error"}), 500


@vouchers_bp.get("/<int:voucher_id>")
@require_auth
@require_permission(VIEW_VOUCHERS)
def get_voucher_route(voucher_id: int):
    """Voucher with its transaction log and audit history."""
    try:
        voucher, denied = _load_in_scope(voucher_id)
        if denied:
            return denied

        transactions = transaction_service.list_transactions(voucher_id=voucher.id)
        return jsonify({
            "voucher": voucher.to_dict(),
            "transactions": [t.to_dict() for t in transactions],
            "history": [e.to_dict() for e in get_entity_history("voucher", voucher.id)],
        }), 200

    except VoucherError as e:
        return _voucher_error(e)
    except Exception:
        current_app.logger.exception("Failed to get voucher")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# RECHARGE / REDEEM
# =============================================================================

@vouchers_bp.post("/<int:voucher_id>/recharge")
@require_auth
@require_permission(RECHARGE_VOUCHER)
def recharge_route(voucher_id: int):
    """
    Recharge a voucher at the caller's merchant.

    Request body:
    {
        "amount": "50.00"
    }

    Returns:
        200: voucher, transaction and accrued commission
        400: invalid amount
        404: voucher not found
        409: voucher expired / redeemed, or merchant not active
    """
    try:
        data = require_fields(request.get_json(silent=True), "amount")
        amount_cents = parse_amount_cents(data["amount"])

        _, denied = _load_in_scope(voucher_id)
        if denied:
            return denied

        result = voucher_service.recharge(
            voucher_id=voucher_id,
            amount_cents=amount_cents,
            merchant_id=g.current_user.merchant_id,
            user_id=g.current_user.id,
        )
        return jsonify(result.to_dict()), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except VoucherError as e:
        return _voucher_error(e)
    except Exception:
        current_app.logger.exception("Failed to recharge voucher")
        return jsonify({"error": "Internal server error"}), 500


@vouchers_bp.post("/<int:voucher_id>/redeem")
@require_auth
@require_permission(REDEEM_VOUCHER)
def redeem_route(voucher_id: int):
    """
    Redeem the full balance of a voucher at the caller's merchant.

    Request body:
    {
        "customer_name": "Maria Souza",   (optional)
        "customer_phone": "11999990000"   (optional)
    }

    Returns:
        200: voucher, transaction and receipt code
        404: voucher not found
        409: voucher not active or empty, or merchant not active
    """
    try:
        data = request.get_json(silent=True) or {}

        _, denied = _load_in_scope(voucher_id)
        if denied:
            return denied

        result = voucher_service.redeem(
            voucher_id=voucher_id,
            customer_name=data.get("customer_name"),
            customer_phone=data.get("customer_phone"),
            merchant_id=g.current_user.merchant_id,
            user_id=g.current_user.id,
        )
        return jsonify(result.to_dict()), 200

    except VoucherError as e:
        return _voucher_error(e)
    except Exception:
        current_app.logger.exception("Failed to redeem voucher")
        return jsonify({"error": "Internal server error"}), 500
