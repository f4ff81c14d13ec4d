# Overview: Flask API routes for commissions; listing, cancellation and payout.

from flask import Blueprint, request, jsonify, g, current_app

from ..models import Commission, Role
from ..extensions import db
from ..services import commission_service, permission_service
from ..services.commission_service import (
    CommissionError,
    CommissionNotFound,
    CommissionAlreadyPaid,
    CommissionCancelled,
    LedgerInvariantError,
)
from ..decorators import require_auth, require_permission, deny_out_of_scope
from ..permissions import VIEW_COMMISSIONS, CANCEL_COMMISSION, PAY_COMMISSION
from ..validation import ValidationError, parse_limit


commissions_bp = Blueprint("commissions", __name__, url_prefix="/api/commissions")


def _commission_error(e: CommissionError):
    if isinstance(e, CommissionNotFound):
        return jsonify({"error": str(e)}), 404
    if isinstance(e, (CommissionAlreadyPaid, CommissionCancelled)):
        return jsonify({"error": str(e), "code": type(e).__name__}), 409
    return jsonify({"error": str(e)}), 400


def _check_scope(commission_id: int):
    commission = db.session.get(Commission, commission_id)
    if not commission:
        raise CommissionNotFound(f"Commission {commission_id} not found")
    if not permission_service.can_access_franchisee(g.current_user, commission.franchisee_id):
        return deny_out_of_scope("commission", commission_id)
    return None


@commissions_bp.get("")
@require_auth
@require_permission(VIEW_COMMISSIONS)
def list_commissions_route():
    """
    Commissions in scope, plus per-status totals for a franchisee.

    Query params: status, franchisee_id (franchisor only), limit
    """
    try:
        user = g.current_user
        filters = permission_service.scope_filters(user)
        if user.role == Role.FRANCHISOR:
            franchisee_id = request.args.get("franchisee_id", type=int)
            if franchisee_id is not None:
                filters["franchisee_id"] = franchisee_id

        commissions = commission_service.list_commissions(
            status=request.args.get("status"),
            limit=parse_limit(request.args.get("limit")),
            **filters,
        )
        response = {"commissions": [c.to_dict() for c in commissions]}
        if filters.get("franchisee_id") is not None:
            response["summary"] = commission_service.get_commission_summary(filters["franchisee_id"])
        return jsonify(response), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list commissions")
        return jsonify({"error": "Internal server error"}), 500


@commissions_bp.post("/<int:commission_id>/cancel")
@require_auth
@require_permission(CANCEL_COMMISSION)
def cancel_commission_route(commission_id: int):
    try:
        denied = _check_scope(commission_id)
        if denied:
            return denied
        commission = commission_service.cancel_commission(commission_id, user_id=g.current_user.id)
        return jsonify({"commission": commission.to_dict()}), 200

    except CommissionError as e:
        return _commission_error(e)
    except Exception:
        current_app.logger.exception("Failed to cancel commission")
        return jsonify({"error": "Internal server error"}), 500


@commissions_bp.post("/<int:commission_id>/pay")
@require_auth
@require_permission(PAY_COMMISSION)
def pay_commission_route(commission_id: int):
    """
    Record the payout of a pending commission.

    Returns:
        200: commission now PAID
        404: not found
        409: already paid or cancelled
        500: ledger invariant violation (logged critical, payout refused)
    """
    try:
        denied = _check_scope(commission_id)
        if denied:
            return denied
        commission = commission_service.mark_commission_paid(commission_id, user_id=g.current_user.id)
        return jsonify({"commission": commission.to_dict()}), 200

    except CommissionError as e:
        return _commission_error(e)
    except LedgerInvariantError:
        return jsonify({"error": "Ledger invariant violated; payout refused"}), 500
    except Exception:
        current_app.logger.exception("Failed to pay commission")
        return jsonify({"error": "Internal server error"}), 500
