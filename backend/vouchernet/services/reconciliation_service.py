# Overview: Applies gateway payment verdicts to charges; shared by webhook and polling paths.

"""
Reconciliation Engine

WHY: The gateway tells us about payments in two ways: it pushes webhooks,
and we pull the charge status when a user checks payment status. Both may
report the same transition, in any order, any number of times. The result
must be as if it was applied exactly once.

RULES:
- One mapping function (map_gateway_status) for both paths
- Final charges (PAID/EXPIRED/CANCELLED) never change; re-applying is a
  silent no-op, never an error
- PAID activates the merchant in the same unit of work
- Unknown gateway ids and unmapped statuses are logged and dropped
- Webhook signatures are verified before the body is parsed
"""

import json
from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..models import Charge, ChargeStatus
from ..time_utils import utcnow
from .audit_service import SOURCE_POLL, SOURCE_WEBHOOK, record_audit_event, snapshot
from .billing_service import ChargeNotFound, lock_charge, transition_charge
from .concurrency import release_read_transaction, run_with_retry
from .gateway_client import GatewayError, get_gateway


class ReconciliationError(Exception):
    """Raised for reconciliation errors."""
    pass


class InvalidWebhookSignature(ReconciliationError):
    pass


class MalformedWebhook(ReconciliationError):
    pass


OUTCOME_APPLIED = "applied"
OUTCOME_IGNORED = "ignored"
OUTCOME_NOT_FOUND = "not_found"
OUTCOME_ALREADY_FINAL = "already_final"
OUTCOME_GATEWAY_UNAVAILABLE = "gateway_unavailable"


# =============================================================================
# STATUS MAPPING
# =============================================================================

@dataclass(frozen=True)
class ApplyTransition:
    target_status: str


@dataclass(frozen=True)
class IgnoreObservation:
    reason: str


_STATUS_TABLE = {
    "received": ChargeStatus.PAID,
    "confirmed": ChargeStatus.PAID,
    "received_in_cash": ChargeStatus.PAID,
    "overdue": ChargeStatus.EXPIRED,
    "deleted": ChargeStatus.CANCELLED,
    "cancelled": ChargeStatus.CANCELLED,
}


def normalize_status(observed: str | None) -> str:
    """PAYMENT_RECEIVED (webhook event) and RECEIVED (polled status) -> "received"."""
    key = (observed or "").strip().lower()
    if key.startswith("payment_"):
        key = key[len("payment_"):]
    return key


def map_gateway_status(observed: str | None):
    """
    Map a gateway event name or charge status to a transition.

    Returns ApplyTransition(target_status) or IgnoreObservation(reason).
    """
    key = normalize_status(observed)
    if not key:
        return IgnoreObservation("empty status")
    target = _STATUS_TABLE.get(key)
    if target is None:
        return IgnoreObservation(f"unmapped gateway status: {observed}")
    return ApplyTransition(target)


@dataclass
class ReconcileResult:
    outcome: str
    charge_id: int | None = None
    status: str | None = None
    observed_status: str | None = None
    merchant_activated: bool = False
    reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome,
            "charge_id": self.charge_id,
            "status": self.status,
            "observed_status": self.observed_status,
            "merchant_activated": self.merchant_activated,
            "reason": self.reason,
        }


# =============================================================================
# RECONCILE
# =============================================================================

def reconcile(gateway_charge_id: str, observed_status: str, source: str = SOURCE_WEBHOOK) -> ReconcileResult:
    """
    Apply one gateway observation to the matching charge.

    Idempotent and commutative per charge: the first terminal transition
    wins, every later observation is a no-op.
    """
    decision = map_gateway_status(observed_status)

    def _op():
        charge = lock_charge(db.session.query(Charge).filter_by(gateway_charge_id=gateway_charge_id))
        if not charge:
            db.session.commit()
            current_app.logger.warning(
                "Reconcile (%s): no charge for gateway id %s (status %s); dropped",
                source,
                gateway_charge_id,
                observed_status,
            )
            return ReconcileResult(OUTCOME_NOT_FOUND, observed_status=observed_status)

        if charge.is_final:
            db.session.commit()
            return ReconcileResult(
                OUTCOME_ALREADY_FINAL,
                charge_id=charge.id,
                status=charge.status,
                observed_status=observed_status,
            )

        if isinstance(decision, IgnoreObservation):
            db.session.commit()
            current_app.logger.info(
                "Reconcile (%s): charge %s ignores %s (%s)",
                source,
                charge.id,
                observed_status,
                decision.reason,
            )
            return ReconcileResult(
                OUTCOME_IGNORED,
                charge_id=charge.id,
                status=charge.status,
                observed_status=observed_status,
                reason=decision.reason,
            )

        before = snapshot(charge, "status")
        activated = transition_charge(charge, decision.target_status, utcnow())

        after = snapshot(charge, "status", "paid_at", "closed_at")
        after["merchant_activated"] = activated
        record_audit_event(
            action=f"charge.{decision.target_status.lower()}",
            entity_type="charge",
            entity_id=charge.id,
            source=source,
            before=before,
            after=after,
            note=f"gateway status {observed_status}",
        )
        db.session.commit()
        return ReconcileResult(
            OUTCOME_APPLIED,
            charge_id=charge.id,
            status=charge.status,
            observed_status=observed_status,
            merchant_activated=activated,
        )

    result = run_with_retry(_op)
    if result.outcome == OUTCOME_APPLIED:
        current_app.logger.info(
            "Reconcile (%s): charge %s -> %s%s",
            source,
            result.charge_id,
            result.status,
            " (merchant activated)" if result.merchant_activated else "",
        )
    return result


def poll_and_reconcile(charge_id: int, gateway=None) -> ReconcileResult:
    """
    Pull the charge status from the gateway and reconcile it.

    The read transaction is released before the network call. If the
    gateway cannot be reached the local state is returned unchanged.
    """
    charge = db.session.get(Charge, charge_id)
    if not charge:
        raise ChargeNotFound(f"Charge {charge_id} not found")

    local_status = charge.status
    gateway_charge_id = charge.gateway_charge_id
    release_read_transaction()

    if local_status in ChargeStatus.FINAL:
        return ReconcileResult(OUTCOME_ALREADY_FINAL, charge_id=charge_id, status=local_status)
    if not gateway_charge_id:
        return ReconcileResult(
            OUTCOME_IGNORED,
            charge_id=charge_id,
            status=local_status,
            reason="charge has no gateway link yet",
        )

    gateway = gateway or get_gateway()
    try:
        observed = gateway.get_charge_status(gateway_charge_id)
    except GatewayError as exc:
        current_app.logger.warning("Polling gateway for charge %s failed: %s", charge_id, exc)
        return ReconcileResult(
            OUTCOME_GATEWAY_UNAVAILABLE,
            charge_id=charge_id,
            status=local_status,
            reason=str(exc),
        )

    return reconcile(gateway_charge_id, observed, source=SOURCE_POLL)


def handle_webhook(raw_body: bytes, signature: str | None, gateway=None) -> ReconcileResult:
    """
    Verify, parse and reconcile one gateway webhook delivery.

    Raises:
        InvalidWebhookSignature: signature missing or wrong (nothing parsed)
        MalformedWebhook: body is not the expected JSON shape
    """
    gateway = gateway or get_gateway()
    if not gateway.verify_webhook_signature(raw_body, signature):
        raise InvalidWebhookSignature("Invalid webhook signature")

    try:
        payload = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise MalformedWebhook("Webhook body is not valid JSON") from exc

    if not isinstance(payload, dict):
        raise MalformedWebhook("Webhook body must be a JSON object")
    event = payload.get("event")
    payment = payload.get("payment")
    if not event or not isinstance(payment, dict) or not payment.get("id"):
        raise MalformedWebhook("Webhook must carry event and payment.id")

    return reconcile(str(payment["id"]), str(event), source=SOURCE_WEBHOOK)
