"""
Pytest fixtures and configuration.

Environment is fixed before any application module is imported: settings,
the DB engine and the payment clients are all read at import time.
"""

import os
import time

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret-with-enough-length-0123456789"
os.environ["OPENAI_API_KEY"] = "sk-test"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "rzp_test_secret"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "rzp_webhook_secret"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_stripe"
os.environ["STRIPE_WEBHOOK_SIGNING_SECRET"] = "whsec_test"
os.environ["ADMIN_EMAILS"] = "admin@example.com"
os.environ["DAILY_MESSAGE_LIMIT"] = "10"

import jwt
import pytest
from unittest.mock import MagicMock
from fastapi.testclient import TestClient

import db as db_module
import payment
from main import app

ADMIN_EMAIL = "admin@example.com"


def make_token(sub: str, email: str = "", *, audience: str = "authenticated",
               expires_in: int = 3600, secret: str = None) -> str:
    """HS256 access token shaped like the identity service's."""
    now = int(time.time())
    claims = {"sub": sub, "email": email, "aud": audience, "iat": now, "exp": now + expires_in}
    return jwt.encode(claims, secret or os.environ["SUPABASE_JWT_SECRET"], algorithm="HS256")


def bearer(sub: str, email: str = "") -> dict:
    return {"Authorization": f"Bearer {make_token(sub, email)}"}


@pytest.fixture(autouse=True)
def reset_state():
    """Fresh schema and empty webhook dedupe sets for every test."""
    db_module.SessionLocal.remove()
    db_module.Base.metadata.drop_all(bind=db_module.engine)
    db_module.Base.metadata.create_all(bind=db_module.engine)
    payment._processed_razorpay_events.clear()
    payment._processed_stripe_events.clear()
    yield
    db_module.SessionLocal.remove()


@pytest.fixture
def client(reset_state):
    """TestClient with startup run (tables + admin allow-list)."""
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db():
    """Session on the shared in-memory database; call expire_all() before asserting."""
    session = db_module.SessionLocal()
    yield session
    session.rollback()


@pytest.fixture
def user_headers():
    return bearer("user-1", "user1@example.com")


@pytest.fixture
def admin_headers():
    return bearer("admin-1", ADMIN_EMAIL)


@pytest.fixture
def fake_completion(monkeypatch):
    """Replace the completion call; set .return_value or .side_effect per test."""
    from samadhan import engine_openai

    fake = MagicMock(return_value="Your heart line speaks of warmth.")
    monkeypatch.setattr(engine_openai, "generate", fake)
    return fake


@pytest.fixture
def fake_razorpay(monkeypatch):
    """Razorpay client double; order.create echoes amount/currency back."""
    fake = MagicMock()

    def _create(data):
        return {"id": "order_test_1", "amount": data["amount"], "currency": data["currency"],
                "status": "created"}

    fake.order.create.side_effect = _create
    fake.order.fetch.return_value = {"id": "order_test_1", "status": "paid"}
    monkeypatch.setattr(payment, "_rzp", fake)
    return fake
