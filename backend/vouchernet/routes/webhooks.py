# Overview: Inbound payment gateway webhooks.

"""
Gateway Webhook Route

- The signature is checked against the raw body before anything is parsed
- Invalid signature: 401 and a security event; nothing is applied
- Anything the engine cannot match (unknown charge, unmapped event, charge
  already final) still answers 200 so the gateway stops retrying
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import permission_service, reconciliation_service
from ..services.gateway_client import SIGNATURE_HEADER
from ..services.reconciliation_service import InvalidWebhookSignature, MalformedWebhook


webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")


@webhooks_bp.post("/gateway")
def gateway_webhook_route():
    try:
        raw_body = request.get_data()
        signature = request.headers.get(SIGNATURE_HEADER)

        result = reconciliation_service.handle_webhook(raw_body, signature)
        return jsonify({"received": True, "result": result.to_dict()}), 200

    except InvalidWebhookSignature:
        permission_service.log_security_event(
            user_id=None,
            event_type="WEBHOOK_SIGNATURE_INVALID",
            success=False,
            resource=request.path,
            action="POST",
            reason="Missing or invalid gateway signature",
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
        )
        current_app.logger.warning("Rejected gateway webhook with invalid signature from %s", request.remote_addr)
        return jsonify({"error": "Invalid signature"}), 401
    except MalformedWebhook as e:
        current_app.logger.warning("Rejected malformed gateway webhook: %s", e)
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to process gateway webhook")
        return jsonify({"error": "Internal server error"}), 500
