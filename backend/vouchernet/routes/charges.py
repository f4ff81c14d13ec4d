# Overview: Flask API routes for merchant activation charges; parses input and returns JSON responses.

# backend/vouchernet/routes/charges.py
"""
Activation Charge API Routes

DESIGN:
- Create (or re-issue) a merchant's activation charge
- Manual payment confirmation (franchisor only)
- Administrative cancellation
- Read-only listing in the caller's scope

A gateway outage while creating a charge is not an error: the charge is
returned PENDING without payment_url, and "degraded" is set in the body.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import billing_service, merchant_service, permission_service
from ..services.billing_service import (
    BillingError,
    ChargeNotFound,
    ChargeAlreadyPaid,
    ChargeCancelled,
    ChargeExpired,
    MerchantAlreadyActive,
)
from ..services.merchant_service import MerchantNotFound
from ..decorators import require_auth, require_permission, deny_out_of_scope
from ..permissions import VIEW_CHARGES, CREATE_ACTIVATION_CHARGE, MARK_CHARGE_PAID, CANCEL_CHARGE
from ..validation import ValidationError, parse_limit, require_fields


charges_bp = Blueprint("charges", __name__, url_prefix="/api/charges")


def _billing_error(e: BillingError):
    if isinstance(e, ChargeNotFound):
        return jsonify({"error": str(e)}), 404
    if isinstance(e, (ChargeAlreadyPaid, ChargeCancelled, ChargeExpired, MerchantAlreadyActive)):
        return jsonify({"error": str(e), "code": type(e).__name__}), 409
    return jsonify({"error": str(e)}), 400


def _charge_in_scope(charge_id: int):
    charge = billing_service.get_charge(charge_id)
    if not permission_service.can_access_merchant(g.current_user, charge.merchant):
        return deny_out_of_scope("charge", charge_id)
    return None


@charges_bp.post("/activation")
@require_auth
@require_permission(CREATE_ACTIVATION_CHARGE)
def create_activation_charge_route():
    """
    Bill a merchant for activation.

    Request body:
    {
        "merchant_id": 12
    }

    Returns:
        201: charge (degraded=true when the gateway was unavailable)
        404: merchant not found / out of scope
        409: merchant already active, or already paid
    """
    try:
        data = require_fields(request.get_json(silent=True), "merchant_id")
        merchant_id = int(data["merchant_id"])

        merchant = merchant_service.get_merchant(merchant_id)
        if not permission_service.can_access_merchant(g.current_user, merchant):
            return deny_out_of_scope("merchant", merchant_id)

        charge = billing_service.create_activation_charge(merchant_id, user_id=g.current_user.id)
        return jsonify({
            "charge": charge.to_dict(),
            "degraded": charge.gateway_charge_id is None,
        }), 201

    except (ValidationError, ValueError) as e:
        return jsonify({"error": str(e)}), 400
    except MerchantNotFound as e:
        return jsonify({"error": str(e)}), 404
    except BillingError as e:
        return _billing_error(e)
    except Exception:
        current_app.logger.exception("Failed to create activation charge")
        return jsonify({"error": "Internal server error"}), 500


@charges_bp.get("")
@require_auth
@require_permission(VIEW_CHARGES)
def list_charges_route():
    """Query params: merchant_id, status, limit"""
    try:
        filters = permission_service.scope_filters(g.current_user)
        merchant_id = request.args.get("merchant_id", type=int)
        if merchant_id is not None and "merchant_id" not in filters:
            filters["merchant_id"] = merchant_id

        charges = billing_service.list_charges(
            status=request.args.get("status"),
            limit=parse_limit(request.args.get("limit")),
            **filters,
        )
        return jsonify({"charges": [c.to_dict() for c in charges]}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list charges")
        return jsonify({"error": "Internal server error"}), 500


@charges_bp.post("/<int:charge_id>/pay")
@require_auth
@require_permission(MARK_CHARGE_PAID)
def mark_paid_route(charge_id: int):
    """Confirm payment received outside the gateway; activates the merchant."""
    try:
        denied = _charge_in_scope(charge_id)
        if denied:
            return denied
        charge = billing_service.mark_paid_manually(charge_id, user_id=g.current_user.id)
        return jsonify({
            "charge": charge.to_dict(),
            "merchant": charge.merchant.to_dict(),
        }), 200

    except BillingError as e:
        return _billing_error(e)
    except Exception:
        current_app.logger.exception("Failed to mark charge paid")
        return jsonify({"error": "Internal server error"}), 500


@charges_bp.post("/<int:charge_id>/cancel")
@require_auth
@require_permission(CANCEL_CHARGE)
def cancel_charge_route(charge_id: int):
    try:
        denied = _charge_in_scope(charge_id)
        if denied:
            return denied
        charge = billing_service.cancel_charge(charge_id, user_id=g.current_user.id)
        return jsonify({"charge": charge.to_dict()}), 200

    except BillingError as e:
        return _billing_error(e)
    except Exception:
        current_app.logger.exception("Failed to cancel charge")
        return jsonify({"error": "Internal server error"}), 500
