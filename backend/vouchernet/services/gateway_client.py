# Overview: HTTP client for the external payment gateway (Asaas-compatible REST API).

"""
Payment Gateway Client

WHY: Merchant activation fees are collected through an external gateway.
This module is the only place that speaks its wire format; the rest of the
application sees GatewayCharge values, status strings and GatewayError.

RULES:
- Never called while a database transaction is open (callers release first)
- Every transport or HTTP failure surfaces as GatewayError
- Configuration is injected (GatewayConfig); no module-level credentials
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from datetime import date

import httpx
from flask import current_app


SANDBOX_BASE_URL = "https://sandbox.asaas.com/api/v3"
PRODUCTION_BASE_URL = "https://www.asaas.com/api/v3"

SIGNATURE_HEADER = "asaas-signature"


class GatewayError(Exception):
    """Raised when the gateway cannot be reached or rejects a request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class GatewayNotConfigured(GatewayError):
    pass


@dataclass(frozen=True)
class GatewayConfig:
    api_key: str | None
    sandbox: bool = True
    base_url: str | None = None
    webhook_secret: str | None = None
    timeout: float = 10.0

    @property
    def resolved_base_url(self) -> str:
        if self.base_url:
            return self.base_url.rstrip("/")
        return SANDBOX_BASE_URL if self.sandbox else PRODUCTION_BASE_URL

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    @classmethod
    def from_app_config(cls, config) -> "GatewayConfig":
        return cls(
            api_key=config.get("GATEWAY_API_KEY"),
            sandbox=bool(config.get("GATEWAY_SANDBOX", True)),
            base_url=config.get("GATEWAY_BASE_URL"),
            webhook_secret=config.get("GATEWAY_WEBHOOK_SECRET"),
            timeout=float(config.get("GATEWAY_TIMEOUT_SECONDS", 10)),
        )


@dataclass(frozen=True)
class GatewayCharge:
    gateway_charge_id: str
    payment_url: str | None
    qr_payload: str | None
    status: str | None = None


class AsaasGatewayClient:
    """
    Thin synchronous wrapper over the gateway REST API.

    transport is only for tests (httpx.MockTransport).
    """

    def __init__(self, config: GatewayConfig, transport: httpx.BaseTransport | None = None):
        self.config = config
        self._transport = transport

    # -------------------------------------------------------------------------
    # Customers
    # -------------------------------------------------------------------------

    def find_customer_by_document(self, document: str) -> str | None:
        payload = self._request("GET", "/customers", params={"cpfCnpj": document})
        rows = payload.get("data") or []
        if not rows:
            return None
        return rows[0].get("id")

    def create_customer(self, *, name: str, document: str, email: str, phone: str | None = None) -> str:
        body = {"name": name, "cpfCnpj": document, "email": email}
        if phone:
            body["mobilePhone"] = phone
        payload = self._request("POST", "/customers", json=body)
        customer_id = payload.get("id")
        if not customer_id:
            raise GatewayError("Gateway did not return a customer id")
        return customer_id

    # -------------------------------------------------------------------------
    # Charges
    # -------------------------------------------------------------------------

    def create_charge(
        self,
        customer_ref: str,
        amount_cents: int,
        due_date: date,
        description: str,
        external_reference: str | None = None,
    ) -> GatewayCharge:
        """Create a PIX charge and fetch its QR payload."""
        body = {
            "customer": customer_ref,
            "billingType": "PIX",
            "value": float(amount_cents) / 100,
            "dueDate": due_date.isoformat(),
            "description": description,
        }
        if external_reference:
            body["externalReference"] = external_reference

        payload = self._request("POST", "/payments", json=body)
        charge_id = payload.get("id")
        if not charge_id:
            raise GatewayError("Gateway did not return a charge id")

        qr_payload = None
        try:
            qr = self._request("GET", f"/payments/{charge_id}/pixQrCode")
            qr_payload = qr.get("payload")
        except GatewayError as exc:
            # The charge exists; the QR code can be fetched again later
            current_app.logger.warning("PIX QR code unavailable for charge %s: %s", charge_id, exc)

        return GatewayCharge(
            gateway_charge_id=charge_id,
            payment_url=payload.get("invoiceUrl"),
            qr_payload=qr_payload,
            status=payload.get("status"),
        )

    def get_charge_status(self, gateway_charge_id: str) -> str:
        payload = self._request("GET", f"/payments/{gateway_charge_id}")
        status = payload.get("status")
        if not status:
            raise GatewayError(f"Gateway returned no status for charge {gateway_charge_id}")
        return status

    def cancel_charge(self, gateway_charge_id: str) -> None:
        self._request("DELETE", f"/payments/{gateway_charge_id}")

    # -------------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------------

    def verify_webhook_signature(self, raw_body: bytes, signature: str | None) -> bool:
        """
        HMAC-SHA256 of the raw request body, hex encoded.

        Fails closed: no configured secret or no signature means invalid.
        """
        secret = self.config.webhook_secret
        if not secret or not signature:
            return False
        expected = compute_signature(secret, raw_body)
        return hmac.compare_digest(expected, signature.strip().lower())

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.config.resolved_base_url,
            headers={
                "access_token": self.config.api_key or "",
                "Content-Type": "application/json",
                "User-Agent": "vouchernet",
            },
            timeout=self.config.timeout,
            transport=self._transport,
        )

    def _request(self, method: str, path: str, *, params: dict | None = None, json: dict | None = None) -> dict:
        if not self.config.is_configured:
            raise GatewayNotConfigured("Payment gateway API key is not configured")

        try:
            with self._client() as client:
                response = client.request(method, path, params=params, json=json)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise GatewayError(
                f"Gateway {method} {path} failed with HTTP {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise GatewayError(f"Gateway {method} {path} failed: {exc}") from exc

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise GatewayError(f"Gateway {method} {path} returned invalid JSON") from exc


def compute_signature(secret: str, raw_body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def get_gateway():
    """The gateway client bound to the current app (set up in create_app)."""
    return current_app.extensions["payment_gateway"]
