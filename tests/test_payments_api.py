import sqlite3
from datetime import datetime

import pytest

from subscription_platform.billing import razorpay_billing
from subscription_platform.billing.pricing import PERIODS, PLAN_TYPES, price_of
from subscription_platform.util.time import add_months, utcnow

from .conftest import GATEWAY_KEY_ID, register, sign


def _create_order(client, headers, plan_type="pro", period="quarterly"):
    return client.post("/payments/create-order", json={"planType": plan_type, "period": period}, headers=headers)


def _verify(client, headers, order_id, payment_id, signature=None, **claims):
    body = {
        "razorpayOrderId": order_id,
        "razorpayPaymentId": payment_id,
        "razorpaySignature": signature if signature is not None else sign(order_id, payment_id),
    }
    body.update(claims)
    return client.post("/payments/verify-payment", json=body, headers=headers)


def _parse_iso(s):
    return datetime.fromisoformat(s.replace("Z", "+00:00"))


def test_payment_endpoints_require_authentication(client):
    client.cookies.clear()
    assert _create_order(client, {}).status_code == 401
    assert _verify(client, {}, "order_1", "pay_1").status_code == 401


def test_pricing_endpoint_matches_catalog(client):
    r = client.get("/payments/pricing")
    assert r.status_code == 200
    assert r.json()["checkout"]["brandName"] == "PaintOS"
    assert r.json()["checkout"]["scriptUrl"].startswith("https://")
    plans = r.json()["plans"]
    for plan_type in PLAN_TYPES:
        for period in PERIODS:
            assert plans[plan_type][period]["amount"] == price_of(plan_type, period).amount


@pytest.mark.parametrize("plan_type", PLAN_TYPES)
@pytest.mark.parametrize("period", PERIODS)
def test_create_order_charges_catalog_amount(client, user, gateway, plan_type, period):
    r = _create_order(client, user["headers"], plan_type, period)
    assert r.status_code == 200, r.text
    assert r.json()["amount"] == price_of(plan_type, period).amount
    assert gateway.order.created[-1]["amount"] == price_of(plan_type, period).amount


def test_create_order_returns_gateway_order(client, user, gateway):
    r = _create_order(client, user["headers"])
    assert r.status_code == 200, r.text
    body = r.json()
    assert body == {"orderId": "order_test_1", "amount": 5499, "currency": "INR", "keyId": GATEWAY_KEY_ID}

    notes = gateway.order.created[0]["notes"]
    assert notes == {"planType": "pro", "period": "quarterly", "userId": str(user["user"]["user_id"])}


def test_create_order_ignores_client_amount(client, user, gateway):
    r = client.post(
        "/payments/create-order",
        json={"planType": "pro", "period": "1year", "amount": 1},
        headers=user["headers"],
    )
    assert r.status_code == 200
    assert r.json()["amount"] == 17999


def test_unknown_plan_is_rejected_before_any_gateway_call(client, user, gateway):
    r = _create_order(client, user["headers"], "enterprise", "monthly")
    assert r.status_code == 400
    assert r.json() == {"success": False, "message": "Invalid plan selection"}
    assert gateway.order.created == []


def test_gateway_failure_is_sanitized(client, user, gateway):
    gateway.order.fail_with = RuntimeError("upstream said: key rzp_live_SECRET rejected")
    r = _create_order(client, user["headers"])
    assert r.status_code == 400
    assert r.json()["message"] == "Payment gateway error. Please try again."
    assert "SECRET" not in r.text


def test_end_to_end_pro_quarterly(client, user):
    order = _create_order(client, user["headers"]).json()
    assert order["amount"] == 5499

    before = utcnow()
    r = _verify(client, user["headers"], order["orderId"], "pay_e2e_1", planType="pro", period="quarterly")
    after = utcnow()
    assert r.status_code == 200, r.text
    assert r.json()["success"] is True

    me = client.get("/auth/me", headers=user["headers"]).json()["user"]
    assert me["plan_type"] == "pro"
    assert me["subscription_duration"] == "quarterly"
    assert me["account_status"] == "pending_approval"
    renewal = _parse_iso(me["renewal_date"])
    assert add_months(before, 3) <= renewal <= add_months(after, 3)


def test_plan_is_recovered_from_order_notes_when_not_resent(client, user):
    order = _create_order(client, user["headers"], "basic", "6months").json()
    r = _verify(client, user["headers"], order["orderId"], "pay_notes")
    assert r.status_code == 200, r.text
    sub = r.json()["subscription"]
    assert sub["planType"] == "basic"
    assert sub["subscriptionDuration"] == "6months"
    assert sub["accountStatus"] == "pending_approval"


def test_invalid_signature_is_rejected_and_state_unchanged(client, user):
    order = _create_order(client, user["headers"]).json()
    r = _verify(client, user["headers"], order["orderId"], "pay_bad", signature="0" * 64)
    assert r.status_code == 400
    assert r.json() == {"success": False, "message": "Invalid signature"}

    me = client.get("/auth/me", headers=user["headers"]).json()["user"]
    assert me["account_status"] == "active"
    assert me["renewal_date"] is None


def test_missing_callback_fields(client, user):
    r = client.post("/payments/verify-payment", json={"razorpayOrderId": "order_1"}, headers=user["headers"])
    assert r.status_code == 400
    assert r.json() == {"success": False, "message": "Missing details"}


def test_replayed_callback_is_rejected(client, user):
    order = _create_order(client, user["headers"]).json()
    first = _verify(client, user["headers"], order["orderId"], "pay_replay")
    assert first.status_code == 200
    renewal = client.get("/auth/me", headers=user["headers"]).json()["user"]["renewal_date"]

    second = _verify(client, user["headers"], order["orderId"], "pay_replay")
    assert second.status_code == 409
    assert second.json() == {"success": False, "message": "Payment already processed"}
    assert client.get("/auth/me", headers=user["headers"]).json()["user"]["renewal_date"] == renewal


def test_claimed_plan_must_match_order(client, user):
    order = _create_order(client, user["headers"], "basic", "monthly").json()
    r = _verify(client, user["headers"], order["orderId"], "pay_upgrade", planType="pro", period="1year")
    assert r.status_code == 400
    assert r.json()["message"] == "Plan does not match order"


def test_order_of_another_user_cannot_be_applied(client, user):
    order = _create_order(client, user["headers"]).json()
    other = register(client, email="other@example.com")
    headers = {"Authorization": f"Bearer {other['access_token']}"}

    r = _verify(client, headers, order["orderId"], "pay_stolen")
    assert r.status_code == 400
    assert r.json()["message"] == "Order does not belong to this account"


def test_unknown_order_is_a_gateway_error(client, user):
    r = _verify(client, user["headers"], "order_missing", "pay_1", planType="pro", period="monthly")
    assert r.status_code == 400
    assert r.json()["message"] == "Payment gateway error. Please try again."


def test_order_lookup_failure_after_valid_signature_is_flagged_for_reconciliation(client, user, gateway, capsys):
    order = _create_order(client, user["headers"]).json()

    def down(order_id):
        raise ConnectionError("gateway unreachable")

    gateway.order.fetch = down
    r = _verify(client, user["headers"], order["orderId"], "pay_outage", planType="pro", period="quarterly")
    assert r.status_code == 400

    out = capsys.readouterr().out
    assert "RECONCILE payment_id=pay_outage" in out
    assert order["orderId"] in out
    assert sign(order["orderId"], "pay_outage") not in out


def test_database_failure_returns_generic_500(client, user, monkeypatch, capsys):
    def broken(conn, **kwargs):
        raise sqlite3.OperationalError("disk I/O error at /var/secret/detail")

    monkeypatch.setattr(razorpay_billing, "apply_verified_payment", broken)
    order = _create_order(client, user["headers"]).json()
    r = _verify(client, user["headers"], order["orderId"], "pay_db_down")

    assert r.status_code == 500
    assert r.json() == {"success": False, "message": "Failed to update subscription"}
    assert "secret" not in r.text
    assert "RECONCILE payment_id=pay_db_down" in capsys.readouterr().out

    me = client.get("/auth/me", headers=user["headers"]).json()["user"]
    assert me["account_status"] == "active"
    assert me["renewal_date"] is None
