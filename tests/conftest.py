import json
import os

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

os.environ.setdefault("ENVIRONMENT", "test")

from config import Settings  # noqa: E402
from database import now  # noqa: E402
from errors import ExternalServiceError, ValidationError  # noqa: E402
from main import create_app  # noqa: E402
from media import UploadedImage  # noqa: E402
from payments import CheckoutSession, WebhookEvent  # noqa: E402
from security import create_access_token, hash_password  # noqa: E402

API = "/api/v1"
PASSWORD = "Secret#123"
PASSWORD_HASH = hash_password(PASSWORD)
JWT_SECRET = "test-secret-that-is-long-enough-for-hs256"


class FakeGateway:
    """In-process stand-in for the Stripe checkout API."""

    def __init__(self):
        self.sessions = {}
        self.created = []

    def create_checkout_session(self, line_items, success_url, cancel_url, metadata):
        session_id = f"cs_test_{len(self.sessions) + 1}"
        session = CheckoutSession(
            id=session_id,
            url=f"https://checkout.test/{session_id}",
            payment_intent=f"pi_test_{len(self.sessions) + 1}",
            payment_status="unpaid",
            metadata=metadata,
        )
        self.sessions[session_id] = session
        self.created.append({
            "line_items": line_items,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
        })
        return session

    def retrieve_session(self, session_id):
        if session_id not in self.sessions:
            raise ExternalServiceError("Payment provider error")
        return self.sessions[session_id]

    def mark_paid(self, session_id):
        self.sessions[session_id] = self.sessions[session_id].model_copy(update={"payment_status": "paid"})

    def parse_webhook_event(self, payload, signature):
        if signature != "valid-signature":
            raise ValidationError("Invalid webhook signature")
        data = json.loads(payload)
        return WebhookEvent(type=data["type"], session=self.sessions.get(data.get("session_id")))


class FakeMediaHost:
    folder = "ecommerce"

    def __init__(self):
        self.uploaded = []
        self.deleted = []

    def upload_image(self, content, folder=None):
        self.uploaded.append(content)
        n = len(self.uploaded)
        return UploadedImage(
            secure_url=f"https://res.cloudinary.com/demo/image/upload/v1/{folder or self.folder}/img{n}.jpg",
            public_id=f"{folder or self.folder}/img{n}",
            format="jpg",
            bytes=len(content),
        )

    def delete_image(self, public_id):
        self.deleted.append(public_id)


@pytest.fixture()
def settings():
    return Settings(environment="test", jwt_secret=JWT_SECRET, jwt_expires_in="1h")


@pytest.fixture()
def db():
    return mongomock.MongoClient()["ecommerce-test"]


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def media_host():
    return FakeMediaHost()


@pytest.fixture()
def app(settings, db, gateway, media_host):
    return create_app(settings, db=db, payment_gateway=gateway, media_host=media_host)


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c


_phone_counter = 0


def _insert_user(db, settings, role="user", email=None):
    global _phone_counter
    _phone_counter += 1
    doc = {
        "username": f"{role}{_phone_counter}",
        "email": email or f"{role}{_phone_counter}@example.com",
        "password_hash": PASSWORD_HASH,
        "phone": f"+1 555 {_phone_counter:04d}",
        "role": role,
        "created_at": now(),
        "updated_at": now(),
    }
    doc["_id"] = db["user"].insert_one(doc).inserted_id
    token = create_access_token(str(doc["_id"]), settings.jwt_secret, settings.token_ttl_seconds)
    doc["headers"] = {"Authorization": f"Bearer {token}"}
    return doc


@pytest.fixture()
def user(db, settings):
    return _insert_user(db, settings)


@pytest.fixture()
def other_user(db, settings):
    return _insert_user(db, settings)


@pytest.fixture()
def admin(db, settings):
    return _insert_user(db, settings, role="admin")


@pytest.fixture()
def make_product(db):
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        n = counter["n"]
        doc = {
            "name": f"Product {n}",
            "slug": f"product-{n}",
            "description": "A product",
            "tags": ["shirts"],
            "price": 10.0,
            "colour": "red",
            "size": "md",
            "images": [f"https://img.test/{n}.jpg"],
            "in_stock": True,
            "total_stock": 10,
            "sold_count": 0,
            "created_at": now(),
            "updated_at": now(),
        }
        doc.update(overrides)
        doc["_id"] = db["product"].insert_one(doc).inserted_id
        return doc

    return _make


def missing_id():
    return str(ObjectId())
