# Overview: Flask API routes for merchants; payment status polling and deactivation.

from flask import Blueprint, request, jsonify, g, current_app

from ..models import ChargeStatus
from ..services import billing_service, merchant_service, permission_service, reconciliation_service
from ..services.billing_service import BillingError
from ..services.merchant_service import MerchantError, MerchantNotFound, InvalidMerchantState
from ..decorators import require_auth, require_permission, deny_out_of_scope
from ..permissions import VIEW_MERCHANTS, DEACTIVATE_MERCHANT


merchants_bp = Blueprint("merchants", __name__, url_prefix="/api/merchants")


@merchants_bp.get("")
@require_auth
@require_permission(VIEW_MERCHANTS)
def list_merchants_route():
    try:
        user = g.current_user
        filters = permission_service.scope_filters(user)
        if "merchant_id" in filters:
            merchants = [merchant_service.get_merchant(filters["merchant_id"])]
        else:
            merchants = merchant_service.list_merchants(status=request.args.get("status"), **filters)
        return jsonify({"merchants": [m.to_dict() for m in merchants]}), 200

    except MerchantNotFound as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to list merchants")
        return jsonify({"error": "Internal server error"}), 500


@merchants_bp.get("/<int:merchant_id>/payment-status")
@require_auth
@require_permission(VIEW_MERCHANTS)
def payment_status_route(merchant_id: int):
    """
    Current activation payment status.

    If the live charge is PENDING and linked to the gateway, the gateway is
    polled and its verdict reconciled before answering. A gateway outage
    answers with the local state ("reconcile.outcome" = gateway_unavailable).
    """
    try:
        merchant = merchant_service.get_merchant(merchant_id)
        if not permission_service.can_access_merchant(g.current_user, merchant):
            return deny_out_of_scope("merchant", merchant_id)

        charge = billing_service.get_live_charge(merchant_id)
        reconcile = None
        if charge is not None and charge.status == ChargeStatus.PENDING:
            result = reconciliation_service.poll_and_reconcile(charge.id)
            reconcile = result.to_dict()
            charge = billing_service.get_charge(charge.id)
            merchant = merchant_service.get_merchant(merchant_id)

        return jsonify({
            "merchant": merchant.to_dict(),
            "charge": charge.to_dict() if charge else None,
            "reconcile": reconcile,
        }), 200

    except MerchantNotFound as e:
        return jsonify({"error": str(e)}), 404
    except BillingError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to get merchant payment status")
        return jsonify({"error": "Internal server error"}), 500


@merchants_bp.post("/<int:merchant_id>/deactivate")
@require_auth
@require_permission(DEACTIVATE_MERCHANT)
def deactivate_merchant_route(merchant_id: int):
    """ACTIVE -> PENDING_PAYMENT (administrative)."""
    try:
        data = request.get_json(silent=True) or {}
        merchant = merchant_service.get_merchant(merchant_id)
        if not permission_service.can_access_merchant(g.current_user, merchant):
            return deny_out_of_scope("merchant", merchant_id)

        merchant = merchant_service.deactivate(merchant_id, user_id=g.current_user.id, reason=data.get("reason"))
        return jsonify({"merchant": merchant.to_dict()}), 200

    except MerchantNotFound as e:
        return jsonify({"error": str(e)}), 404
    except InvalidMerchantState as e:
        return jsonify({"error": str(e), "code": type(e).__name__}), 409
    except MerchantError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to deactivate merchant")
        return jsonify({"error": "Internal server error"}), 500
