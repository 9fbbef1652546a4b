# tests/conftest.py
"""
Pytest configuration and shared fixtures.

The environment is pinned before ``marketplace`` is imported because the
engine and ``Config`` are built at import time.
"""

import io
import os
import tempfile
from itertools import count

import pytest

_TMP_DIR = tempfile.mkdtemp(prefix="marketplace-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["UPLOAD_DIR"] = os.path.join(_TMP_DIR, "uploads")
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret-key-with-enough-length"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["STRUCTURED_LOGS_ENABLED"] = "false"
os.environ["RESEND_API_KEY"] = ""
os.environ["MIDTRANS_SERVER_KEY"] = ""
os.environ["MIDTRANS_CLIENT_KEY"] = ""
os.environ["SUPER_ADMIN_PASSWORD"] = ""
os.environ["BASE_URL"] = "http://testserver"

from werkzeug.security import generate_password_hash  # noqa: E402

from marketplace.database import Base, SessionLocal, engine  # noqa: E402
from marketplace.errors import GatewayUnavailable  # noqa: E402
from marketplace.main import create_app  # noqa: E402
from marketplace.models import (  # noqa: E402
    Account,
    AccountRole,
    ListingType,
    Product,
    ProductCondition,
    ProductStatus,
)
from marketplace.observability.metrics import reset_metrics  # noqa: E402
from marketplace.services.payment_gateway import compute_signature  # noqa: E402

DEFAULT_PASSWORD = "secret123"


class FakeGateway:
    """In-memory stand-in for the hosted checkout gateway."""

    server_key = "test-server-key"
    configured = True

    def __init__(self):
        self.created = []
        self.config_calls = 0
        self.fail = False
        self.status_responses = {}
        self._tokens = count(1)

    def public_config(self):
        self.config_calls += 1
        return {"clientKey": "test-client-key", "environment": "sandbox"}

    def create_transaction(self, payload):
        if self.fail:
            raise GatewayUnavailable("Payment gateway is unavailable (ConnectTimeout).")
        self.created.append(payload)
        token = f"snap-token-{next(self._tokens)}"
        return {"token": token, "redirect_url": f"https://gateway.test/snap/{token}"}

    def get_transaction_status(self, transaction_id):
        return self.status_responses.get(
            transaction_id, {"order_id": transaction_id, "transaction_status": "pending"}
        )

    def verify_signature(self, notification):
        expected = self.sign(
            notification.get("order_id", ""),
            notification.get("status_code", ""),
            notification.get("gross_amount", ""),
        )
        return notification.get("signature_key") == expected

    def sign(self, order_id, status_code, gross_amount):
        return compute_signature(str(order_id), str(status_code), str(gross_amount), self.server_key)

    def notification(self, order_id, transaction_status, gross_amount, status_code="200", **extra):
        gross = f"{gross_amount}.00"
        body = {
            "order_id": order_id,
            "status_code": status_code,
            "gross_amount": gross,
            "transaction_status": transaction_status,
            "signature_key": self.sign(order_id, status_code, gross),
            "payment_type": "bank_transfer",
        }
        body.update(extra)
        return body


class RecordingMailer:
    enabled = True

    def __init__(self):
        self.sent = []

    def send_verification(self, recipient, name, link):
        self.sent.append(("verification", recipient, link))
        return True

    def send_password_reset(self, recipient, name, link):
        self.sent.append(("reset", recipient, link))
        return True


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def app(fake_gateway, mailer):
    Base.metadata.drop_all(bind=engine)
    reset_metrics()
    application = create_app(overrides={"TESTING": True}, gateway_client=fake_gateway, mailer=mailer)
    yield application
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db_session(app):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def create_account(session, username, role=AccountRole.USER, password=DEFAULT_PASSWORD, **fields):
    account = Account(
        username=username,
        email=fields.pop("email", f"{username}@example.com"),
        role=role,
        is_verified=fields.pop("is_verified", True),
        **fields,
    )
    account.passwordHash = generate_password_hash(password)
    session.add(account)
    session.commit()
    session.refresh(account)
    return account


def create_product(session, seller, **overrides):
    values = {
        "name": "Refurbished Bicycle",
        "description": "City bike, new tyres",
        "price": 50000,
        "category": "Sports",
        "condition": ProductCondition.USED,
        "listing_type": ListingType.SELL,
        "images": ["uploads/bike.jpg"],
        "stock": 1,
        "status": ProductStatus.ACTIVE,
    }
    values.update(overrides)
    product = Product(sellerID=seller.accountID, **values)
    session.add(product)
    session.commit()
    session.refresh(product)
    return product


def login(client, username, password=DEFAULT_PASSWORD):
    response = client.post("/api/auth/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.get_json()
    return response.get_json()["token"]


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


def image_upload(name="photo.jpg", content=b"\xff\xd8\xff\xe0fake-jpeg-bytes"):
    return (io.BytesIO(content), name)


@pytest.fixture
def seller(db_session):
    return create_account(db_session, "seller_sam")


@pytest.fixture
def buyer(db_session):
    return create_account(db_session, "buyer_bea", full_name="Bea Buyer", phone="08123456789")


@pytest.fixture
def admin(db_session):
    return create_account(db_session, "admin_ada", role=AccountRole.ADMIN)


@pytest.fixture
def buyer_headers(client, buyer):
    return bearer(login(client, buyer.username))


@pytest.fixture
def seller_headers(client, seller):
    return bearer(login(client, seller.username))


@pytest.fixture
def admin_headers(client, admin):
    return bearer(login(client, admin.username))
