"""Pytest configuration and shared fixtures for all tests."""

import json
import os
import sys
from pathlib import Path

os.environ.setdefault("JWT_SECRET", "test_secret_key_for_testing_only")

# Добавить корень проекта в PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import httpx
import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import Base, make_engine, make_session_factory
from main import create_app
from models import UserRole
from payments import MercadoPagoClient
from storage import Storage
from utils import get_password_hash


class FakeRedis:
    """Token whitelist kept in a dict."""

    def __init__(self):
        self.store = {}

    def set(self, key, value, ex=None):
        self.store[key] = value
        return True

    def exists(self, key):
        return int(key in self.store)

    def delete(self, key):
        return int(self.store.pop(key, None) is not None)


class RecordingMailer:
    """Collects outgoing e-mails instead of sending them."""

    def __init__(self):
        self.sent = []

    async def send_welcome_email(self, email_to, full_name):
        self.sent.append(("welcome", email_to))

    async def send_contact_notification(self, contact):
        self.sent.append(("contact", contact["email"]))

    async def send_partner_commission_notification(self, email_to, full_name, amount):
        self.sent.append(("commission", email_to, amount))


class MercadoPagoStub:
    """MercadoPago REST API served through httpx.MockTransport."""

    def __init__(self):
        self.preferences = []
        self.payments = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST" and request.url.path == "/checkout/preferences":
            body = json.loads(request.content)
            preference_id = f"pref-{len(self.preferences) + 1}"
            self.preferences.append(body)
            return httpx.Response(
                201, json={"id": preference_id, "init_point": f"https://mp.test/checkout/{preference_id}"}
            )
        if request.method == "GET" and request.url.path.startswith("/v1/payments/"):
            payment_id = request.url.path.rsplit("/", 1)[-1]
            if payment_id in self.payments:
                return httpx.Response(200, json=self.payments[payment_id])
        return httpx.Response(404, json={"message": "not found"})


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        jwt_secret="test_secret_key_for_testing_only",
        bcrypt_rounds=4,
        mail_suppress_send=True,
        mercadopago_access_token="TEST-access-token",
        mercadopago_public_key="TEST-public-key",
        mercadopago_api_url="https://mp.test",
    )


@pytest.fixture
def storage(settings):
    """Storage over a fresh in-memory database."""
    engine = make_engine(settings)
    Base.metadata.create_all(bind=engine)
    session = make_session_factory(engine)()
    yield Storage(session, settings)
    session.close()
    engine.dispose()


@pytest.fixture
def hash_password(settings):
    return lambda password: get_password_hash(password, settings)


@pytest.fixture
def redis_client():
    return FakeRedis()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def mercadopago():
    return MercadoPagoStub()


@pytest.fixture
def gateway(settings, mercadopago):
    return MercadoPagoClient(settings, transport=httpx.MockTransport(mercadopago.handler))


@pytest.fixture
def client(settings, redis_client, mailer, gateway):
    app = create_app(
        settings,
        engine=make_engine(settings),
        redis_client=redis_client,
        mailer=mailer,
        gateway=gateway,
    )
    with TestClient(app) as test_client:
        yield test_client


def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def register(client):
    """POST /api/auth/register and return the decoded body."""

    def _register(email, role="client", referral_code=None, full_name="Test User", password="secret123"):
        body = {"email": email, "password": password, "fullName": full_name, "role": role}
        if referral_code is not None:
            body["referralCode"] = referral_code
        response = client.post("/api/auth/register", json=body)
        assert response.status_code == 201, response.text
        return response.json()

    return _register


@pytest.fixture
def app_storage(client, settings):
    """Storage bound to the running application's database."""
    session = client.app.state.session_factory()
    yield Storage(session, settings)
    session.close()


@pytest.fixture
def admin_headers(client, app_storage, hash_password):
    app_storage.register_user("admin@mail.com", hash_password("admin123"), "Admin", UserRole.ADMIN)
    response = client.post("/api/auth/login", json={"email": "admin@mail.com", "password": "admin123"})
    assert response.status_code == 200, response.text
    return auth_headers(response.json()["token"])
