# Overview: Flask API routes for the transaction log; listing and recharge cancellation.

from flask import Blueprint, request, jsonify, g, current_app

from ..services import transaction_service, permission_service
from ..services.transaction_service import (
    TransactionError,
    TransactionNotFound,
    TransactionAlreadyCancelled,
    TransactionNotReversible,
)
from ..services.commission_service import CommissionAlreadyPaid
from ..decorators import require_auth, require_permission, deny_out_of_scope
from ..permissions import VIEW_TRANSACTIONS, CANCEL_TRANSACTION
from ..validation import ValidationError, parse_limit


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


@transactions_bp.get("")
@require_auth
@require_permission(VIEW_TRANSACTIONS)
def list_transactions_route():
    """
    Read-only transaction log in the caller's scope.

    Query params: voucher_id, kind (RECHARGE|REDEMPTION), status, limit
    """
    try:
        voucher_id = request.args.get("voucher_id", type=int)
        transactions = transaction_service.list_transactions(
            voucher_id=voucher_id,
            kind=request.args.get("kind"),
            status=request.args.get("status"),
            limit=parse_limit(request.args.get("limit")),
            **permission_service.scope_filters(g.current_user),
        )
        return jsonify({"transactions": [t.to_dict() for t in transactions]}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list transactions")
        return jsonify({"error": "Internal server error"}), 500


@transactions_bp.post("/<int:transaction_id>/cancel")
@require_auth
@require_permission(CANCEL_TRANSACTION)
def cancel_transaction_route(transaction_id: int):
    """
    Cancel a recharge: reverses the voucher balance and cancels the
    pending commission.

    Request body (optional):
    {
        "reason": "Duplicated at the counter"
    }

    Returns:
        200: cancelled transaction (with its commission)
        404: transaction not found / out of scope
        409: already cancelled, commission already paid, or not reversible
    """
    try:
        data = request.get_json(silent=True) or {}

        transaction = transaction_service.get_transaction(transaction_id)
        if not permission_service.can_access_franchisee(g.current_user, transaction.voucher.franchisee_id):
            return deny_out_of_scope("transaction", transaction_id)

        transaction = transaction_service.cancel_transaction(
            transaction_id,
            user_id=g.current_user.id,
            reason=data.get("reason"),
        )
        return jsonify({"transaction": transaction_service.transaction_snapshot(transaction)}), 200

    except TransactionNotFound as e:
        return jsonify({"error": str(e)}), 404
    except (TransactionAlreadyCancelled, TransactionNotReversible, CommissionAlreadyPaid) as e:
        return jsonify({"error": str(e), "code": type(e).__name__}), 409
    except TransactionError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to cancel transaction")
        return jsonify({"error": "Internal server error"}), 500
