from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from subscription_platform.db import is_integrity_error
from subscription_platform.models import ACCOUNT_STATUSES, UserSubscriptionState
from subscription_platform.util.time import add_months, to_iso, utcnow

from .errors import AlreadyProcessed, NotFound, PaymentError, PersistenceError
from .pricing import PERIOD_MONTHS, normalize_period, validate_selection


PENDING_APPROVAL = "pending_approval"


def _debug(msg: str) -> None:
    print(f"[payments] {msg}")


def period_months(period: str) -> int:
    p = normalize_period(period)
    return PERIOD_MONTHS[p]


def compute_renewal_date(period: str, now: Optional[datetime] = None) -> datetime:
    """End of the subscription period that starts at `now` (calendar months, not day counts)."""
    start = now or utcnow()
    return add_months(start, period_months(period))


def is_payment_applied(conn: Any, payment_id: str) -> bool:
    row = conn.execute("SELECT 1 FROM payment_events WHERE payment_id=?", (payment_id,)).fetchone()
    return row is not None


def apply_verified_payment(
    conn: Any,
    *,
    user_id: int,
    plan_type: str,
    period: str,
    payment_id: str | None = None,
    order_id: str | None = None,
    amount: int | None = None,
    now: Optional[datetime] = None,
) -> UserSubscriptionState:
    """Move a user onto the paid plan, pending admin approval.

    The caller must already have verified the gateway signature; nothing is
    re-checked here. Status always becomes `pending_approval`, whatever it was
    before. When `payment_id` is given the payment is recorded in the same
    transaction and a second application raises AlreadyProcessed.
    """
    plan_type, period = validate_selection(plan_type, period)
    ts = now or utcnow()
    renewal = to_iso(compute_renewal_date(period, ts))
    applied_at = to_iso(ts)

    try:
        row = conn.execute("SELECT user_id FROM users WHERE user_id=?", (int(user_id),)).fetchone()
        if row is None:
            raise NotFound(f"user_not_found: {user_id}")

        if payment_id and is_payment_applied(conn, payment_id):
            raise AlreadyProcessed(f"payment_already_applied: {payment_id}")

        conn.execute(
            """
            UPDATE users
            SET plan_type=?, subscription_duration=?, renewal_date=?, account_status=?,
                subscription_updated_at=?, updated_at=?
            WHERE user_id=?
            """,
            (plan_type, period, renewal, PENDING_APPROVAL, applied_at, applied_at, int(user_id)),
        )

        if payment_id:
            conn.execute(
                """
                INSERT INTO payment_events
                    (payment_id, order_id, user_id, plan_type, period, amount, renewal_date, applied_at)
                VALUES (?,?,?,?,?,?,?,?)
                """,
                (payment_id, order_id or "", int(user_id), plan_type, period, amount, renewal, applied_at),
            )
    except PaymentError:
        raise
    except Exception as e:
        # A concurrent request applied the same payment first.
        if payment_id and is_integrity_error(e):
            raise AlreadyProcessed(f"payment_already_applied: {payment_id}") from e
        _debug(f"subscription update failed user_id={user_id}: {type(e).__name__}: {e}")
        raise PersistenceError(f"subscription_update_failed: {e}") from e

    _debug(
        f"applied payment user_id={user_id} plan={plan_type} period={period} "
        f"renewal={renewal} status={PENDING_APPROVAL}"
    )
    return UserSubscriptionState(
        plan_type=plan_type,
        billing_period=period,
        renewal_date=renewal,
        account_status=PENDING_APPROVAL,
    )


def set_account_status(conn: Any, *, user_id: int, account_status: str) -> UserSubscriptionState:
    """Admin-driven status change (e.g. approving a pending subscription)."""
    status = (account_status or "").strip().lower()
    if status not in ACCOUNT_STATUSES:
        raise ValueError("invalid_account_status")

    row = conn.execute("SELECT * FROM users WHERE user_id=?", (int(user_id),)).fetchone()
    if row is None:
        raise NotFound(f"user_not_found: {user_id}")

    now = to_iso(utcnow())
    conn.execute(
        "UPDATE users SET account_status=?, subscription_updated_at=?, updated_at=? WHERE user_id=?",
        (status, now, now, int(user_id)),
    )
    row = conn.execute("SELECT * FROM users WHERE user_id=?", (int(user_id),)).fetchone()
    return UserSubscriptionState.from_row(row)
