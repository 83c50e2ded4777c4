from __future__ import annotations

import hashlib
import hmac
from typing import Any, Dict, List

import pytest
from fastapi.testclient import TestClient

from subscription_platform.config import Config
from subscription_platform.db import init_db

GATEWAY_SECRET = "rzp_test_secret"
GATEWAY_KEY_ID = "rzp_test_key"
ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin123456"


def sign(order_id: str, payment_id: str, secret: str = GATEWAY_SECRET) -> str:
    return hmac.new(secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


class FakeOrders:
    """Stands in for `razorpay.Client(...).order`."""

    def __init__(self) -> None:
        self.created: List[Dict[str, Any]] = []
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.fail_with: Exception | None = None

    def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        if self.fail_with is not None:
            raise self.fail_with
        self.created.append(data)
        order_id = f"order_test_{len(self.created)}"
        order = {
            "id": order_id,
            "entity": "order",
            "amount": data["amount"],
            "currency": data["currency"],
            "receipt": data["receipt"],
            "notes": dict(data["notes"]),
            "status": "created",
        }
        self.orders[order_id] = order
        return order

    def fetch(self, order_id: str) -> Dict[str, Any]:
        if order_id not in self.orders:
            raise RuntimeError(f"BAD_REQUEST_ERROR: order {order_id} does not exist")
        return self.orders[order_id]


class FakeGateway:
    def __init__(self) -> None:
        self.order = FakeOrders()


@pytest.fixture
def cfg(tmp_path) -> Config:
    return Config(
        DB_DSN=str(tmp_path / "test.sqlite"),
        AUTH_JWT_SECRET="test_jwt_secret_value",
        AUTH_BOOTSTRAP_ADMIN_EMAIL=ADMIN_EMAIL,
        AUTH_BOOTSTRAP_ADMIN_PASSWORD=ADMIN_PASSWORD,
        RAZORPAY_KEY_ID=GATEWAY_KEY_ID,
        RAZORPAY_KEY_SECRET=GATEWAY_SECRET,
        RAZORPAY_CURRENCY="INR",
        CORS_ALLOW_ORIGINS="",
    )


@pytest.fixture
def db_dsn(cfg: Config) -> str:
    init_db(cfg.DB_DSN)
    return cfg.DB_DSN


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def client(cfg: Config, gateway: FakeGateway, monkeypatch) -> TestClient:
    from subscription_platform.api import server

    monkeypatch.setattr(server, "cfg", cfg)
    server.app.state.gateway_client = gateway
    try:
        with TestClient(server.app) as c:
            yield c
    finally:
        server.app.state.gateway_client = None


def register(client: TestClient, email: str = "user@example.com", password: str = "password123") -> Dict[str, Any]:
    r = client.post("/auth/register", json={"email": email, "password": password, "name": "Test User"})
    assert r.status_code == 201, r.text
    client.cookies.clear()
    return r.json()


@pytest.fixture
def user(client: TestClient) -> Dict[str, Any]:
    body = register(client)
    return {
        "user": body["user"],
        "token": body["access_token"],
        "headers": {"Authorization": f"Bearer {body['access_token']}"},
    }


@pytest.fixture
def admin_headers(client: TestClient) -> Dict[str, str]:
    r = client.post("/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert r.status_code == 200, r.text
    client.cookies.clear()
    return {"Authorization": f"Bearer {r.json()['access_token']}"}
