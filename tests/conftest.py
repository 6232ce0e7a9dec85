"""Pytest fixtures for the Muraqqa backend tests."""

import base64
import json
import os
import tempfile
from datetime import datetime, timezone
from decimal import Decimal

# Configuration is read at import time, so the environment is prepared first
_DB_DIR = tempfile.mkdtemp(prefix="muraqqa-tests-")
WEBHOOK_SECRET = "whsec_" + base64.b64encode(b"muraqqa-webhook-test-secret-0001").decode()
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["PAYMENTS_WEBHOOK_SECRET"] = WEBHOOK_SECRET
os.environ["ADMIN_EMAILS"] = "ops@muraqqa.art"
os.environ.setdefault("SMTP_HOST", "")

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from standardwebhooks import Webhook

from core.auth import get_optional_user
from core.database import Base, SessionLocal, engine, init_db
from models.artwork import Artwork
from models.user import User


SHIPPING = {
    "fullName": "Ayesha Khan",
    "email": "ayesha@example.com",
    "phone": "+92 300 1234567",
    "address": "12 Gulberg III",
    "city": "Lahore",
    "country": "Pakistan",
}


@pytest.fixture(scope="session", autouse=True)
def _schema():
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()
        session.close()


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    """Capture outgoing email instead of talking to SMTP."""
    sent = []

    def _record(to_addr, subject, html, text=None, from_addr=None, reply_to=None):
        sent.append({"to": to_addr, "subject": subject, "html": html})
        return True

    monkeypatch.setattr("utils.notifications.send_email_smtp", _record)
    return sent


@pytest.fixture(autouse=True)
def _no_rate_limits(monkeypatch):
    monkeypatch.setattr("routers.orders.enforce", lambda *a, **k: None)
    monkeypatch.setattr("routers.giftcards.enforce", lambda *a, **k: None)


@pytest.fixture
def make_user(db):
    def _make(uid, email=None, is_admin=False, display_name=None):
        user = User(uid=uid, email=email or f"{uid}@example.com", is_admin=is_admin, display_name=display_name)
        db.add(user)
        db.commit()
        return user
    return _make


@pytest.fixture
def buyer(make_user):
    return make_user("buyer-1", "ayesha@example.com", display_name="Ayesha Khan")


@pytest.fixture
def other_buyer(make_user):
    return make_user("buyer-2", "bilal@example.com")


@pytest.fixture
def admin(make_user):
    return make_user("admin-1", "curator@muraqqa.art", is_admin=True)


@pytest.fixture
def make_artwork(db):
    def _make(artwork_id, price="10000", in_stock=True, title=None, artist_email="artist@example.com"):
        artwork = Artwork(
            id=artwork_id,
            title=title or f"Artwork {artwork_id}",
            price=Decimal(price),
            currency="PKR",
            in_stock=in_stock,
            artist_uid="artist-1",
            artist_name="Sadequain Studio",
            artist_email=artist_email,
        )
        db.add(artwork)
        db.commit()
        return artwork
    return _make


@pytest.fixture
def shipping():
    return dict(SHIPPING)


@pytest.fixture
def client(db):
    """TestClient whose caller is chosen per request with the X-Test-User header."""
    from main import app

    def _test_user(request: Request):
        uid = request.headers.get("X-Test-User")
        if not uid:
            return None
        session = SessionLocal()
        try:
            user = session.query(User).filter(User.uid == uid).first()
            if user:
                session.expunge(user)
            return user
        finally:
            session.close()

    app.dependency_overrides[get_optional_user] = _test_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def as_user(uid):
    return {"X-Test-User": uid}


def signed_webhook(payload: dict, msg_id: str, secret: str = WEBHOOK_SECRET):
    """Return (body, headers) signed the way the gateway signs deliveries."""
    body = json.dumps(payload)
    now = datetime.now(timezone.utc)
    signature = Webhook(secret).sign(msg_id, now, body)
    headers = {
        "webhook-id": msg_id,
        "webhook-timestamp": str(int(now.timestamp())),
        "webhook-signature": signature,
        "content-type": "application/json",
    }
    return body, headers


def payment_succeeded(order_id: str, payment_id: str = "pay_123"):
    return {
        "type": "payment.succeeded",
        "data": {"payment_id": payment_id, "total_amount": 1000000, "metadata": {"order_id": order_id}},
    }
