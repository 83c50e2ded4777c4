"""Database schema for the subscription platform.

SQLite is the default engine; Postgres is supported as well.

We intentionally keep timestamps as ISO-8601 TEXT (UTC, with 'Z') for portability and to
avoid timezone surprises across engines. ISO strings sort lexicographically in time order.

NOTE: The Postgres schema is generated from the SQLite schema with a small set of
transformations (types + autoincrement).
"""

from __future__ import annotations

import re


SCHEMA_SQLITE = r"""
PRAGMA foreign_keys = ON;

-- Users / Auth
-- Email is the login identifier. We use JWTs for stateless auth and store only password hashes.
CREATE TABLE IF NOT EXISTS users (
    user_id INTEGER PRIMARY KEY AUTOINCREMENT,
    email TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL DEFAULT '',
    mobile TEXT,
    password_hash TEXT NOT NULL,
    role TEXT NOT NULL CHECK (role IN ('admin','user')),
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    last_login_at TEXT,

    -- Subscription state (embedded, one per user)
    plan_type TEXT CHECK (plan_type IN ('basic','pro')),
    subscription_duration TEXT CHECK (subscription_duration IN ('monthly','quarterly','6months','1year')),
    renewal_date TEXT,
    account_status TEXT NOT NULL DEFAULT 'active'
        CHECK (account_status IN ('active','pending_approval','disabled')),
    subscription_updated_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_users_role_active ON users (role, is_active);
CREATE INDEX IF NOT EXISTS idx_users_account_status ON users (account_status, is_active);

-- Applied gateway payments (at-most-once application per payment id)
CREATE TABLE IF NOT EXISTS payment_events (
    payment_id TEXT PRIMARY KEY,
    order_id TEXT NOT NULL,
    user_id INTEGER NOT NULL,
    plan_type TEXT NOT NULL,
    period TEXT NOT NULL,
    amount INTEGER,
    renewal_date TEXT NOT NULL,
    applied_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(user_id)
);
CREATE INDEX IF NOT EXISTS idx_payment_events_user ON payment_events (user_id, applied_at);
"""


def _sqlite_to_postgres(sql: str) -> str:
    out = sql

    # Remove SQLite PRAGMAs
    out = re.sub(r"^\s*PRAGMA[^;]*;\s*$", "", out, flags=re.MULTILINE | re.IGNORECASE)

    # AUTOINCREMENT primary keys
    out = re.sub(
        r"INTEGER\s+PRIMARY\s+KEY\s+AUTOINCREMENT",
        "BIGSERIAL PRIMARY KEY",
        out,
        flags=re.IGNORECASE,
    )
    out = re.sub(r"\bAUTOINCREMENT\b", "", out, flags=re.IGNORECASE)

    return out


SCHEMA_POSTGRES = _sqlite_to_postgres(SCHEMA_SQLITE)


def get_schema_sql(dialect: str) -> str:
    d = (dialect or "").lower()
    if d.startswith("post"):
        return SCHEMA_POSTGRES
    return SCHEMA_SQLITE
