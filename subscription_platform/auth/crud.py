from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from subscription_platform.billing.errors import InvalidPlanSelection
from subscription_platform.billing.pricing import PLAN_TYPES, normalize_period
from subscription_platform.config import Config
from subscription_platform.db import connect
from subscription_platform.models import ACCOUNT_STATUSES
from subscription_platform.util.time import to_iso, utcnow_iso

from .security import check_password_policy, hash_password, verify_password


ROLES = ("admin", "user")


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def public_user(row: Any | Dict[str, Any]) -> Dict[str, Any]:
    d = dict(row)
    d.pop("password_hash", None)
    # Convenience flag used by the frontend for gating.
    d["is_approved"] = (d.get("account_status") or "") == "active"
    return d


def get_user_by_email(conn: Any, email: str) -> Optional[Any]:
    e = normalize_email(email)
    if not e:
        return None
    return conn.execute(
        "SELECT * FROM users WHERE email=?",
        (e,),
    ).fetchone()


def get_user_by_id(conn: Any, user_id: int) -> Optional[Any]:
    return conn.execute(
        "SELECT * FROM users WHERE user_id=?",
        (int(user_id),),
    ).fetchone()


def list_users(conn: Any) -> List[Dict[str, Any]]:
    rows = conn.execute("SELECT * FROM users ORDER BY created_at DESC, user_id DESC").fetchall()
    return [public_user(r) for r in rows]


def can_sign_in(row: Any) -> bool:
    if int(row["is_active"] or 0) != 1:
        return False
    return (row["account_status"] or "active") != "disabled"


def verify_user_credentials(conn: Any, email: str, password: str) -> Optional[Any]:
    row = get_user_by_email(conn, email)
    if row is None:
        return None
    if not can_sign_in(row):
        return None
    if not verify_password(password, str(row["password_hash"])):
        return None
    return row


def _check_subscription_fields(
    *,
    plan_type: str | None,
    subscription_duration: str | None,
    account_status: str | None,
    renewal_date: Any,
) -> Dict[str, Any]:
    """Validate admin-supplied subscription columns. Only non-None keys are returned."""
    out: Dict[str, Any] = {}
    if plan_type is not None:
        if plan_type not in PLAN_TYPES:
            raise ValueError("invalid_plan_type")
        out["plan_type"] = plan_type
    if subscription_duration is not None:
        try:
            out["subscription_duration"] = normalize_period(subscription_duration)
        except InvalidPlanSelection:
            raise ValueError("invalid_subscription_duration")
    if account_status is not None:
        status = str(account_status).strip().lower()
        if status not in ACCOUNT_STATUSES:
            raise ValueError("invalid_account_status")
        out["account_status"] = status
    if renewal_date is not None:
        out["renewal_date"] = _parse_renewal_date(renewal_date)
    return out


def _parse_renewal_date(value: Any) -> str:
    if isinstance(value, datetime):
        return to_iso(value)
    s = str(value or "").strip()
    if not s:
        raise ValueError("invalid_renewal_date")
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        raise ValueError("invalid_renewal_date")
    return to_iso(dt)


def create_user(
    conn: Any,
    *,
    email: str,
    password: str,
    name: str = "",
    mobile: str | None = None,
    role: str = "user",
    plan_type: str | None = "basic",
    subscription_duration: str | None = None,
    renewal_date: Any = None,
    account_status: str | None = None,
    is_active: bool = True,
) -> Dict[str, Any]:
    e = normalize_email(email)
    if not e or "@" not in e:
        raise ValueError("email_invalid")
    if role not in ROLES:
        raise ValueError("invalid_role")
    sub = _check_subscription_fields(
        plan_type=plan_type,
        subscription_duration=subscription_duration,
        account_status=account_status,
        renewal_date=renewal_date,
    )
    check_password_policy(password)

    existing = conn.execute("SELECT 1 FROM users WHERE email=?", (e,)).fetchone()
    if existing is not None:
        raise ValueError("email_exists")

    now = utcnow_iso()
    conn.execute(
        """
        INSERT INTO users
            (email, name, mobile, password_hash, role, is_active, plan_type, subscription_duration,
             renewal_date, account_status, created_at, updated_at)
        VALUES (?,?,?,?,?,?,?,?,?,?,?,?)
        """,
        (
            e,
            (name or "").strip(),
            (mobile or "").strip() or None,
            hash_password(password),
            role,
            1 if is_active else 0,
            sub.get("plan_type"),
            sub.get("subscription_duration"),
            sub.get("renewal_date"),
            sub.get("account_status", "active"),
            now,
            now,
        ),
    )
    row = get_user_by_email(conn, e)
    assert row is not None
    return public_user(row)


def update_user(
    conn: Any,
    user_id: int,
    *,
    email: str | None = None,
    name: str | None = None,
    mobile: str | None = None,
    role: str | None = None,
    password: str | None = None,
    plan_type: str | None = None,
    subscription_duration: str | None = None,
    renewal_date: Any = None,
    account_status: str | None = None,
) -> Optional[Dict[str, Any]]:
    """Admin edit of profile and subscription columns. None means "leave as is".

    Used to correct a subscription by hand, e.g. when a charge succeeded at the
    gateway but the local update did not. Returns None for an unknown user.
    """
    if get_user_by_id(conn, user_id) is None:
        return None

    changes: Dict[str, Any] = _check_subscription_fields(
        plan_type=plan_type,
        subscription_duration=subscription_duration,
        account_status=account_status,
        renewal_date=renewal_date,
    )
    if role is not None:
        if role not in ROLES:
            raise ValueError("invalid_role")
        changes["role"] = role
    if email is not None:
        e = normalize_email(email)
        if not e or "@" not in e:
            raise ValueError("email_invalid")
        other = conn.execute("SELECT user_id FROM users WHERE email=? AND user_id<>?", (e, int(user_id))).fetchone()
        if other is not None:
            raise ValueError("email_exists")
        changes["email"] = e
    if name is not None:
        changes["name"] = name.strip()
    if mobile is not None:
        changes["mobile"] = mobile.strip() or None
    if password is not None:
        changes["password_hash"] = hash_password(password)

    if changes:
        now = utcnow_iso()
        if {"plan_type", "subscription_duration", "renewal_date", "account_status"} & changes.keys():
            changes["subscription_updated_at"] = now
        changes["updated_at"] = now
        # Column names come from the fixed keys above, never from the request.
        assignments = ", ".join(f"{col}=?" for col in changes)
        conn.execute(f"UPDATE users SET {assignments} WHERE user_id=?", (*changes.values(), int(user_id)))

    return public_user(get_user_by_id(conn, user_id))


def touch_last_login(conn: Any, user_id: int) -> None:
    now = utcnow_iso()
    conn.execute(
        "UPDATE users SET last_login_at=?, updated_at=? WHERE user_id=?",
        (now, now, int(user_id)),
    )


def bootstrap_admin_if_needed(cfg: Config) -> Optional[Dict[str, Any]]:
    """Create the first admin user if the users table is empty.

    - AUTH_BOOTSTRAP_ADMIN_EMAIL (default: admin@example.com)
    - AUTH_BOOTSTRAP_ADMIN_PASSWORD (default: admin123456)
    """

    with connect(cfg.DB_DSN) as conn:
        n = conn.execute("SELECT COUNT(*) AS n FROM users").fetchone()["n"]
        if int(n) > 0:
            return None

        email = normalize_email(getattr(cfg, "AUTH_BOOTSTRAP_ADMIN_EMAIL", "") or "")
        password = getattr(cfg, "AUTH_BOOTSTRAP_ADMIN_PASSWORD", None) or ""

        # If env explicitly clears these, don't create anything.
        if not email or not password:
            return None

        return create_user(conn, email=email, password=password, name="Admin", role="admin", plan_type="pro")
