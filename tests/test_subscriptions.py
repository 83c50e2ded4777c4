import threading
from datetime import datetime, timezone

import pytest

from subscription_platform.auth.crud import create_user, get_user_by_id
from subscription_platform.billing import subscriptions
from subscription_platform.billing.errors import AlreadyProcessed, InvalidPlanSelection, NotFound
from subscription_platform.billing.subscriptions import (
    apply_verified_payment,
    compute_renewal_date,
    is_payment_applied,
    set_account_status,
)
from subscription_platform.db import connect

JAN_31 = datetime(2024, 1, 31, 10, 30, tzinfo=timezone.utc)


@pytest.fixture
def user_id(db_dsn):
    with connect(db_dsn) as conn:
        u = create_user(conn, email="buyer@example.com", password="password123", name="Buyer")
    return int(u["user_id"])


def _row(db_dsn, user_id):
    with connect(db_dsn) as conn:
        return dict(get_user_by_id(conn, user_id))


def test_monthly_from_jan_31_lands_in_february():
    renewal = compute_renewal_date("monthly", JAN_31)
    assert (renewal.year, renewal.month) == (2024, 2)
    assert renewal.day == 29


def test_one_year_from_jan_31():
    assert compute_renewal_date("1year", JAN_31).date().isoformat() == "2025-01-31"


@pytest.mark.parametrize(
    "period,start,expected",
    [
        ("quarterly", datetime(2024, 11, 30), "2025-02-28"),
        ("6months", datetime(2024, 8, 31), "2025-02-28"),
        ("annual", datetime(2024, 2, 29), "2025-02-28"),
        ("monthly", datetime(2024, 12, 15), "2025-01-15"),
    ],
)
def test_renewal_is_calendar_aware(period, start, expected):
    assert compute_renewal_date(period, start).date().isoformat() == expected


def test_renewal_rejects_unknown_period():
    with pytest.raises(InvalidPlanSelection):
        compute_renewal_date("fortnightly", JAN_31)


@pytest.mark.parametrize("prior_status", ["active", "pending_approval", "disabled"])
def test_payment_always_leaves_account_pending_approval(db_dsn, user_id, prior_status):
    with connect(db_dsn) as conn:
        set_account_status(conn, user_id=user_id, account_status=prior_status)

    with connect(db_dsn) as conn:
        state = apply_verified_payment(
            conn, user_id=user_id, plan_type="pro", period="quarterly", payment_id="pay_1", now=JAN_31
        )

    assert state.account_status == "pending_approval"
    row = _row(db_dsn, user_id)
    assert row["account_status"] == "pending_approval"
    assert row["plan_type"] == "pro"
    assert row["subscription_duration"] == "quarterly"
    assert row["renewal_date"] == "2024-04-30T10:30:00Z"


def test_unknown_user_raises_not_found(db_dsn):
    with connect(db_dsn) as conn:
        with pytest.raises(NotFound):
            apply_verified_payment(conn, user_id=9999, plan_type="basic", period="monthly", payment_id="pay_x")


def test_replayed_payment_is_rejected_and_renewal_not_extended(db_dsn, user_id):
    with connect(db_dsn) as conn:
        first = apply_verified_payment(
            conn, user_id=user_id, plan_type="basic", period="monthly", payment_id="pay_dup", order_id="order_1"
        )

    with connect(db_dsn) as conn:
        with pytest.raises(AlreadyProcessed):
            apply_verified_payment(
                conn, user_id=user_id, plan_type="basic", period="monthly", payment_id="pay_dup", order_id="order_1"
            )

    assert _row(db_dsn, user_id)["renewal_date"] == first.renewal_date
    with connect(db_dsn) as conn:
        assert is_payment_applied(conn, "pay_dup")
        n = conn.execute("SELECT COUNT(*) AS n FROM payment_events").fetchone()["n"]
    assert n == 1


def test_without_payment_id_there_is_no_replay_protection(db_dsn, user_id):
    # Direct callers that skip the payment id get no deduplication.
    with connect(db_dsn) as conn:
        apply_verified_payment(conn, user_id=user_id, plan_type="basic", period="monthly", now=JAN_31)
        apply_verified_payment(conn, user_id=user_id, plan_type="basic", period="monthly", now=JAN_31)
        n = conn.execute("SELECT COUNT(*) AS n FROM payment_events").fetchone()["n"]
    assert n == 0


def test_replay_is_caught_before_the_user_row_is_touched(db_dsn, user_id):
    with connect(db_dsn) as conn:
        apply_verified_payment(conn, user_id=user_id, plan_type="basic", period="monthly", payment_id="pay_a")
    before = _row(db_dsn, user_id)

    with pytest.raises(AlreadyProcessed):
        with connect(db_dsn) as conn:
            apply_verified_payment(conn, user_id=user_id, plan_type="pro", period="1year", payment_id="pay_a")

    after = _row(db_dsn, user_id)
    assert after["plan_type"] == before["plan_type"] == "basic"


def test_unique_constraint_rolls_back_user_update(db_dsn, user_id, monkeypatch):
    with connect(db_dsn) as conn:
        apply_verified_payment(
            conn, user_id=user_id, plan_type="basic", period="monthly", payment_id="pay_b", now=JAN_31
        )
    before = _row(db_dsn, user_id)

    # Another request recorded the payment between our check and our insert.
    monkeypatch.setattr(subscriptions, "is_payment_applied", lambda conn, payment_id: False)
    with pytest.raises(AlreadyProcessed):
        with connect(db_dsn) as conn:
            apply_verified_payment(conn, user_id=user_id, plan_type="pro", period="1year", payment_id="pay_b")

    after = _row(db_dsn, user_id)
    assert after["plan_type"] == "basic"
    assert after["subscription_duration"] == "monthly"
    assert after["renewal_date"] == before["renewal_date"]


def test_concurrent_applications_of_one_payment_succeed_once(db_dsn, user_id):
    results = []
    results_lock = threading.Lock()
    start = threading.Barrier(8)

    def worker():
        start.wait(5)
        try:
            with connect(db_dsn) as conn:
                apply_verified_payment(
                    conn, user_id=user_id, plan_type="pro", period="quarterly", payment_id="pay_race"
                )
            outcome = "ok"
        except AlreadyProcessed:
            outcome = "already_processed"
        except Exception as e:
            outcome = f"{type(e).__name__}: {e}"
        with results_lock:
            results.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(30)

    assert sorted(results) == ["already_processed"] * 7 + ["ok"]
    with connect(db_dsn) as conn:
        n = conn.execute("SELECT COUNT(*) AS n FROM payment_events WHERE payment_id='pay_race'").fetchone()["n"]
    assert n == 1


def test_set_account_status_validates(db_dsn, user_id):
    with connect(db_dsn) as conn:
        with pytest.raises(ValueError):
            set_account_status(conn, user_id=user_id, account_status="superuser")
        with pytest.raises(NotFound):
            set_account_status(conn, user_id=424242, account_status="active")
        state = set_account_status(conn, user_id=user_id, account_status="ACTIVE")
    assert state.account_status == "active"
