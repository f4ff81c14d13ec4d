"""
Pytest fixtures for vouchernet backend tests.

Provides test database setup, network fixtures (franchisor, franchisees,
merchants, vouchers), authenticated users and an in-process fake payment
gateway so no test ever reaches the network.
"""

import pytest

from vouchernet import create_app
from vouchernet.extensions import db
from vouchernet.models import MerchantStatus, Role
from vouchernet.services import network_service, voucher_service
from vouchernet.services.auth_service import create_user
from vouchernet.services.gateway_client import (
    AsaasGatewayClient,
    GatewayCharge,
    GatewayConfig,
    GatewayError,
)
from vouchernet.time_utils import utcnow


WEBHOOK_SECRET = "test-webhook-secret"
PASSWORD = "Password123!"


class FakeGateway:
    """
    In-memory stand-in for the payment gateway.

    Set fail=True to simulate an outage: every call raises GatewayError.
    Webhook signatures are verified by the real client code.
    """

    def __init__(self):
        self.config = GatewayConfig(api_key="test-key", webhook_secret=WEBHOOK_SECRET)
        self.fail = False
        self.customers = {}  # document -> customer id
        self.charges = {}    # gateway charge id -> gateway status
        self.cancelled = []
        self.calls = []
        self._seq = 0

    def _call(self, name):
        self.calls.append(name)
        if self.fail:
            raise GatewayError(f"{name}: gateway unavailable")

    def _next_id(self, prefix):
        self._seq += 1
        return f"{prefix}_{self._seq:06d}"

    def find_customer_by_document(self, document):
        self._call("find_customer_by_document")
        return self.customers.get(document)

    def create_customer(self, *, name, document, email, phone=None):
        self._call("create_customer")
        customer_id = self._next_id("cus")
        self.customers[document] = customer_id
        return customer_id

    def create_charge(self, customer_ref, amount_cents, due_date, description, external_reference=None):
        self._call("create_charge")
        charge_id = self._next_id("pay")
        self.charges[charge_id] = "PENDING"
        return GatewayCharge(
            gateway_charge_id=charge_id,
            payment_url=f"https://pay.example.com/i/{charge_id}",
            qr_payload=f"00020126PIX{charge_id}",
            status="PENDING",
        )

    def get_charge_status(self, gateway_charge_id):
        self._call("get_charge_status")
        return self.charges.get(gateway_charge_id, "PENDING")

    def cancel_charge(self, gateway_charge_id):
        self._call("cancel_charge")
        self.cancelled.append(gateway_charge_id)
        self.charges[gateway_charge_id] = "DELETED"

    def verify_webhook_signature(self, raw_body, signature):
        return AsaasGatewayClient(self.config).verify_webhook_signature(raw_body, signature)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'GATEWAY_API_KEY': 'test-key',
        'GATEWAY_WEBHOOK_SECRET': WEBHOOK_SECRET,
        'ACTIVATION_FEE_CENTS': 15000,
        'ACTIVATION_CHARGE_DUE_DAYS': 30,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(autouse=True)
def gateway(app):
    """Replace the app's gateway client with a fresh FakeGateway."""
    fake = FakeGateway()
    previous = app.extensions["payment_gateway"]
    app.extensions["payment_gateway"] = fake
    yield fake
    app.extensions["payment_gateway"] = previous


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


# =============================================================================
# NETWORK
# =============================================================================

def activate_merchant(merchant):
    """Force a merchant ACTIVE without going through billing."""
    merchant.status = MerchantStatus.ACTIVE
    merchant.activated_at = utcnow()
    db.session.commit()
    return merchant


@pytest.fixture(scope='function')
def franchisor(db_session):
    return network_service.create_franchisor("Rede Teste")


@pytest.fixture(scope='function')
def franchisee(db_session, franchisor):
    """Franchisee earning 10% on recharges."""
    return network_service.create_franchisee(
        franchisor_id=franchisor.id,
        name="Franquia Centro",
        document="12.345.678/0001-90",
        email="centro@example.com",
        commission_rate_bps=1000,
    )


@pytest.fixture(scope='function')
def other_franchisee(db_session, franchisor):
    return network_service.create_franchisee(
        franchisor_id=franchisor.id,
        name="Franquia Norte",
        document="98765432000110",
        email="norte@example.com",
        commission_rate_bps=500,
    )


@pytest.fixture(scope='function')
def merchant(db_session, franchisee):
    """DRAFT merchant, not yet billed."""
    return network_service.create_merchant(franchisee_id=franchisee.id, name="Padaria Sol")


@pytest.fixture(scope='function')
def active_merchant(db_session, franchisee):
    merchant = network_service.create_merchant(franchisee_id=franchisee.id, name="Mercado Lua")
    return activate_merchant(merchant)


@pytest.fixture(scope='function')
def other_merchant(db_session, other_franchisee):
    merchant = network_service.create_merchant(franchisee_id=other_franchisee.id, name="Farmacia Norte")
    return activate_merchant(merchant)


@pytest.fixture(scope='function')
def voucher(db_session, franchisee):
    """AVAILABLE voucher with zero balance."""
    return voucher_service.issue_voucher(franchisee.id, "vch-0001", "QR-0001")


@pytest.fixture(scope='function')
def funded_voucher(voucher, active_merchant):
    """ACTIVE voucher holding 100.00 recharged at active_merchant."""
    voucher_service.recharge(voucher.id, 10000, active_merchant.id)
    return voucher


# =============================================================================
# USERS
# =============================================================================

@pytest.fixture(scope='function')
def franchisor_user(db_session, franchisor):
    return create_user("admin@rede.example", "Admin", PASSWORD, Role.FRANCHISOR, franchisor_id=franchisor.id)


@pytest.fixture(scope='function')
def franchisee_user(db_session, franchisee):
    return create_user("centro@rede.example", "Centro", PASSWORD, Role.FRANCHISEE, franchisee_id=franchisee.id)


@pytest.fixture(scope='function')
def other_franchisee_user(db_session, other_franchisee):
    return create_user("norte@rede.example", "Norte", PASSWORD, Role.FRANCHISEE, franchisee_id=other_franchisee.id)


@pytest.fixture(scope='function')
def merchant_user(db_session, active_merchant):
    return create_user("caixa@lua.example", "Caixa Lua", PASSWORD, Role.MERCHANT, merchant_id=active_merchant.id)


@pytest.fixture(scope='function')
def franchisor_headers(client, franchisor_user):
    return login(client, franchisor_user.email)


@pytest.fixture(scope='function')
def franchisee_headers(client, franchisee_user):
    return login(client, franchisee_user.email)


@pytest.fixture(scope='function')
def other_franchisee_headers(client, other_franchisee_user):
    return login(client, other_franchisee_user.email)


@pytest.fixture(scope='function')
def merchant_headers(client, merchant_user):
    return login(client, merchant_user.email)


def get_auth_token(client, email: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'email': email,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def login(client, email: str, password: str = PASSWORD) -> dict:
    token = get_auth_token(client, email, password)
    assert token, f"login failed for {email}"
    return auth_headers(token)
