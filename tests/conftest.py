import asyncio
from types import SimpleNamespace

import pytest
import stripe
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from auth import get_identity
from database import ensure_indexes, get_db
from main import app
from payments import get_payments

USER_EMAIL = "alice@example.com"
OTHER_EMAIL = "bob@example.com"
ADMIN_EMAIL = "admin@example.com"

TOKENS = {
    "alice-token": USER_EMAIL,
    "bob-token": OTHER_EMAIL,
    "admin-token": ADMIN_EMAIL,
}


class FakeVerifier:
    def verify(self, token):
        if token not in TOKENS:
            raise ValueError("Invalid ID token")
        return {"uid": token, "email": TOKENS[token]}


class FakeGateway:
    def __init__(self):
        self.sessions = {}
        self.created = []

    def create_checkout_session(self, params):
        self.created.append(params)
        session_id = "cs_test_%d" % len(self.created)
        session = SimpleNamespace(
            id=session_id,
            url="https://checkout.stripe.com/c/pay/" + session_id,
            payment_status="unpaid",
            customer_email=params["customer_email"],
        )
        self.sessions[session_id] = session
        return session

    def retrieve_session(self, session_id):
        if session_id not in self.sessions:
            raise stripe.InvalidRequestError("No such checkout.session: %s" % session_id, "id")
        return self.sessions[session_id]

    def mark_paid(self, session_id):
        self.sessions[session_id].payment_status = "paid"


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def db():
    database = AsyncMongoMockClient()["lessons_test"]
    run(ensure_indexes(database))
    return database


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(db, gateway):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_identity] = lambda: FakeVerifier()
    app.dependency_overrides[get_payments] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


def bearer(token):
    return {"Authorization": "Bearer " + token}


@pytest.fixture
def alice():
    return bearer("alice-token")


@pytest.fixture
def admin(client, db):
    client.post("/user", json={"email": ADMIN_EMAIL, "name": "Admin"})
    run(db["users"].update_one({"email": ADMIN_EMAIL}, {"$set": {"role": "admin"}}))
    return bearer("admin-token")


@pytest.fixture
def create_lesson(client):
    def _create(**overrides):
        payload = {
            "creator": {"email": USER_EMAIL, "name": "Alice"},
            "title": "Patience pays off",
            "description": "What a failed startup taught me.",
            "category": "Career",
            "emotionalTone": "Motivational",
            "privacy": "public",
        }
        payload.update(overrides)
        response = client.post("/lessons", json=payload)
        assert response.status_code == 200, response.text
        return response.json()["insertedId"]
    return _create
