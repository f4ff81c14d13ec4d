"""
Gateway client tests against httpx.MockTransport (no network).
"""

import json
from datetime import date

import httpx
import pytest

from vouchernet.services.gateway_client import (
    PRODUCTION_BASE_URL,
    SANDBOX_BASE_URL,
    AsaasGatewayClient,
    GatewayConfig,
    GatewayError,
    GatewayNotConfigured,
    compute_signature,
)


CONFIG = GatewayConfig(api_key="key-123", sandbox=True, webhook_secret="s3cret")


def make_client(handler, config=CONFIG):
    return AsaasGatewayClient(config, transport=httpx.MockTransport(handler))


def test_base_url_resolution():
    assert GatewayConfig(api_key="k").resolved_base_url == SANDBOX_BASE_URL
    assert GatewayConfig(api_key="k", sandbox=False).resolved_base_url == PRODUCTION_BASE_URL
    assert GatewayConfig(api_key="k", base_url="http://local/api/").resolved_base_url == "http://local/api"


def test_config_from_app_config():
    config = GatewayConfig.from_app_config({
        "GATEWAY_API_KEY": "abc",
        "GATEWAY_SANDBOX": False,
        "GATEWAY_WEBHOOK_SECRET": "whs",
        "GATEWAY_TIMEOUT_SECONDS": 3,
    })
    assert config.is_configured
    assert config.sandbox is False
    assert config.webhook_secret == "whs"
    assert config.timeout == 3.0


def test_create_charge_posts_pix_payment_and_fetches_qr(app):
    seen = []

    def handler(request):
        seen.append(request)
        if request.method == "POST" and request.url.path.endswith("/payments"):
            return httpx.Response(200, json={"id": "pay_1", "invoiceUrl": "https://i/pay_1", "status": "PENDING"})
        if request.url.path.endswith("/payments/pay_1/pixQrCode"):
            return httpx.Response(200, json={"payload": "00020126PIX"})
        return httpx.Response(404)

    with app.app_context():
        charge = make_client(handler).create_charge(
            "cus_1", 15000, date(2024, 6, 1), "Activation", external_reference="charge:7"
        )

    assert charge.gateway_charge_id == "pay_1"
    assert charge.payment_url == "https://i/pay_1"
    assert charge.qr_payload == "00020126PIX"

    body = json.loads(seen[0].content)
    assert body == {
        "customer": "cus_1",
        "billingType": "PIX",
        "value": 150.0,
        "dueDate": "2024-06-01",
        "description": "Activation",
        "externalReference": "charge:7",
    }
    assert seen[0].headers["access_token"] == "key-123"
    assert str(seen[0].url).startswith(SANDBOX_BASE_URL)


def test_missing_qr_code_does_not_fail_charge(app):
    def handler(request):
        if request.method == "POST":
            return httpx.Response(200, json={"id": "pay_2", "invoiceUrl": "https://i/pay_2"})
        return httpx.Response(502)

    with app.app_context():
        charge = make_client(handler).create_charge("cus_1", 100, date(2024, 6, 1), "x")

    assert charge.gateway_charge_id == "pay_2"
    assert charge.qr_payload is None


def test_customer_lookup():
    def handler(request):
        assert request.url.params["cpfCnpj"] == "12345678000190"
        return httpx.Response(200, json={"data": [{"id": "cus_9"}]})

    assert make_client(handler).find_customer_by_document("12345678000190") == "cus_9"


def test_customer_lookup_empty():
    client = make_client(lambda request: httpx.Response(200, json={"data": []}))
    assert client.find_customer_by_document("12345678000190") is None


def test_http_error_becomes_gateway_error():
    client = make_client(lambda request: httpx.Response(401, json={"errors": []}))
    with pytest.raises(GatewayError) as exc:
        client.get_charge_status("pay_1")
    assert exc.value.status_code == 401


def test_transport_error_becomes_gateway_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(GatewayError):
        make_client(handler).get_charge_status("pay_1")


def test_unconfigured_client_refuses_calls():
    client = make_client(lambda request: httpx.Response(200, json={}), config=GatewayConfig(api_key=None))
    with pytest.raises(GatewayNotConfigured):
        client.get_charge_status("pay_1")


def test_charge_status_and_cancel():
    calls = []

    def handler(request):
        calls.append((request.method, request.url.path))
        if request.method == "DELETE":
            return httpx.Response(200, json={"deleted": True})
        return httpx.Response(200, json={"id": "pay_1", "status": "RECEIVED"})

    client = make_client(handler)
    assert client.get_charge_status("pay_1") == "RECEIVED"
    client.cancel_charge("pay_1")
    assert calls[-1] == ("DELETE", "/api/v3/payments/pay_1")


class TestWebhookSignature:

    body = b'{"event":"PAYMENT_RECEIVED","payment":{"id":"pay_1"}}'

    def test_valid_signature(self):
        client = AsaasGatewayClient(CONFIG)
        assert client.verify_webhook_signature(self.body, compute_signature("s3cret", self.body))

    def test_signature_over_different_body(self):
        client = AsaasGatewayClient(CONFIG)
        signature = compute_signature("s3cret", self.body)
        assert not client.verify_webhook_signature(self.body + b" ", signature)

    def test_wrong_secret(self):
        client = AsaasGatewayClient(CONFIG)
        assert not client.verify_webhook_signature(self.body, compute_signature("other", self.body))

    def test_no_secret_configured_fails_closed(self):
        client = AsaasGatewayClient(GatewayConfig(api_key="k"))
        assert not client.verify_webhook_signature(self.body, compute_signature("", self.body))
