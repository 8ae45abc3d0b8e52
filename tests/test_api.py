"""HTTP-level tests: the app wired to SQLite, in-memory storage and a fake provider."""
import json
import time

import pytest
from fastapi.testclient import TestClient

from photovault.core.container import ServiceContainer
from photovault.db.session import build_engine
from photovault.main import create_app
from photovault.services.credits.service import CreditService
from photovault.services.payments.gateway import StripeGateway

from conftest import FakeProvider, MemoryStorage, make_png
from test_payments import STARTER_PRICE, sign


@pytest.fixture
def container():
    container = ServiceContainer(
        engine=build_engine("sqlite://"),
        storage=MemoryStorage(),
        provider=FakeProvider(),
        gateway=StripeGateway(secret_key="", webhook_secret="whsec_test_secret"),
    )
    yield container
    container.engine.dispose()


@pytest.fixture
def client(container):
    with TestClient(create_app(container)) as client:
        yield client


def register(client, email="api@example.com") -> tuple[dict, dict]:
    response = client.post("/auth/register", json={"email": email, "password": "s3cret-pass"})
    assert response.status_code == 201
    body = response.json()
    return body, {"Authorization": f"Bearer {body['access_token']}"}


def fund(container, account_id: str, amount: int) -> None:
    db = container.session_factory()
    try:
        CreditService(db).credit(account_id, amount, reason="test funding")
    finally:
        db.close()


def upload(client, headers) -> str:
    response = client.post(
        "/uploads",
        files={"file": ("me.png", make_png(), "image/png")},
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()["source_image_ref"]


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/ready").json() == {"status": "ready"}


def test_themes_are_seeded(client):
    ids = [theme["id"] for theme in client.get("/themes").json()]
    assert "linkedin" in ids


def test_register_login_me(client):
    body, headers = register(client)
    assert body["account"]["credits"] == 0

    login = client.post("/auth/login", json={"email": "api@example.com", "password": "s3cret-pass"})
    assert login.status_code == 200

    me = client.get("/auth/me", headers=headers)
    assert me.json()["email"] == "api@example.com"


def test_bad_login_and_missing_token(client):
    register(client)
    response = client.post("/auth/login", json={"email": "api@example.com", "password": "wrong-pass"})
    assert response.status_code == 401
    assert response.json()["error"] == "unauthorized"
    assert client.get("/account/credits").status_code == 401


def test_generate_without_credits(client):
    _, headers = register(client)
    ref = upload(client, headers)

    response = client.post(
        "/generate",
        json={"theme": "linkedin", "source_image_ref": ref, "count": 3},
        headers=headers,
    )

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "insufficient_credits"
    assert body["required"] == 3
    assert body["redirect_to_pricing"] is True


def test_generate_then_list_and_delete(client, container):
    body, headers = register(client)
    fund(container, body["account"]["id"], 5)
    ref = upload(client, headers)

    response = client.post(
        "/generate",
        json={"theme": "linkedin", "source_image_ref": ref, "count": 2},
        headers=headers,
    )
    assert response.status_code == 200
    result = response.json()
    assert result["state"] == "completed"
    assert len(result["outputs"]) == 2
    assert client.get("/account/credits", headers=headers).json() == {"credits": 3}

    photo_sets = client.get("/photos", headers=headers).json()
    assert [p["id"] for p in photo_sets] == [result["photo_set_id"]]

    kinds = [entry["kind"] for entry in client.get("/account/transactions", headers=headers).json()]
    assert "spent" in kinds

    assert client.delete(f"/photos/{result['photo_set_id']}", headers=headers).status_code == 204
    assert client.get(f"/photos/{result['photo_set_id']}", headers=headers).status_code == 404


def test_webhook_rejects_bad_signature(client):
    payload = json.dumps({"id": "evt_1", "type": "checkout.session.completed", "data": {"object": {}}}).encode()
    response = client.post(
        "/webhooks/stripe",
        content=payload,
        headers={"Stripe-Signature": f"t={int(time.time())},v1=deadbeef"},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "webhook_rejected"


def test_webhook_credits_once(client):
    body, headers = register(client)
    payload = json.dumps(
        {
            "id": "evt_1",
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": "cs_1",
                    "payment_status": "paid",
                    "metadata": {"accountId": body["account"]["id"], "priceId": STARTER_PRICE},
                }
            },
        }
    ).encode()

    first = client.post("/webhooks/stripe", content=payload, headers={"Stripe-Signature": sign(payload)})
    second = client.post("/webhooks/stripe", content=payload, headers={"Stripe-Signature": sign(payload)})

    assert first.json() == {"received": True, "duplicate": False}
    assert second.json() == {"received": True, "duplicate": True}
    assert client.get("/account/credits", headers=headers).json() == {"credits": 50}


def test_portal_session_without_subscription(client):
    _, headers = register(client)
    assert client.post("/billing/portal-session").status_code == 401
    response = client.post("/billing/portal-session", headers=headers)
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"
