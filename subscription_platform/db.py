from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Sequence
from urllib.parse import urlparse

from subscription_platform.schema import get_schema_sql


def _debug(msg: str) -> None:
    print(f"[db] {msg}")


_SCHEMA_LOCK_KEY = 2147483646

_SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=NORMAL;",
    "PRAGMA busy_timeout=5000;",
    "PRAGMA foreign_keys=ON;",
)

# Columns added after the first release; (name, DDL fragment).
_USER_COLUMN_MIGRATIONS = (
    ("mobile", "TEXT"),
    ("plan_type", "TEXT"),
    ("subscription_duration", "TEXT"),
    ("renewal_date", "TEXT"),
    ("account_status", "TEXT NOT NULL DEFAULT 'active'"),
    ("subscription_updated_at", "TEXT"),
)


def _detect_dialect(dsn: str) -> str:
    """Return 'postgres' or 'sqlite'."""
    s = (dsn or "").strip()
    if not s:
        return "sqlite"
    try:
        scheme = urlparse(s).scheme.lower()
    except Exception:
        scheme = ""
    if scheme in ("postgres", "postgresql"):
        return "postgres"
    return "sqlite"


def _qmark_to_pct(sql: str) -> str:
    """Convert SQLite qmark placeholders (?) to psycopg2 placeholders (%s).

    Skips '?' inside single/double-quoted literals. Not a full SQL parser, but
    sufficient for the statements in this codebase.
    """
    out: List[str] = []
    in_single = False
    in_double = False
    for ch in sql:
        if ch == "'" and not in_double:
            in_single = not in_single
        elif ch == '"' and not in_single:
            in_double = not in_double
        elif ch == "?" and not in_single and not in_double:
            out.append("%s")
            continue
        out.append(ch)
    return "".join(out)


class PGCursor:
    def __init__(self, cur: Any):
        self._cur = cur

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> "PGCursor":
        self._cur.execute(_qmark_to_pct(sql), tuple(params or ()))
        return self

    def fetchone(self) -> Any:
        return self._cur.fetchone()

    def fetchall(self) -> Any:
        return self._cur.fetchall()

    @property
    def rowcount(self) -> int:
        try:
            return int(self._cur.rowcount or 0)
        except Exception:
            return 0

    def close(self) -> None:
        try:
            self._cur.close()
        except Exception:
            pass


class PGConnection:
    """A tiny adapter that makes psycopg2 connections look like sqlite3 connections."""

    dialect = "postgres"

    def __init__(self, conn: Any):
        self._conn = conn

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> PGCursor:
        wrapper = PGCursor(self._conn.cursor())
        wrapper.execute(sql, params)
        return wrapper

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()


def is_integrity_error(exc: BaseException) -> bool:
    """True for unique/foreign-key violations on either engine."""
    if isinstance(exc, sqlite3.IntegrityError):
        return True
    # psycopg2.IntegrityError and its subclasses (UniqueViolation, ...)
    return any(cls.__name__ == "IntegrityError" for cls in type(exc).__mro__)


@contextmanager
def _transaction(conn: Any) -> Iterator[Any]:
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _open_postgres(dsn: str) -> PGConnection:
    try:
        import psycopg2
        import psycopg2.extras
    except ImportError as e:
        raise RuntimeError(
            "Postgres selected but psycopg2 is not installed. Install the 'postgres' extra and try again."
        ) from e
    # RealDictCursor: rows support row["col"] like sqlite3.Row.
    return PGConnection(psycopg2.connect(dsn, cursor_factory=psycopg2.extras.RealDictCursor))


def _open_sqlite(dsn: str) -> sqlite3.Connection:
    if dsn.lower().startswith("sqlite:///"):
        dsn = dsn[len("sqlite:///") :]
    Path(dsn).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(dsn, timeout=30, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    for pragma in _SQLITE_PRAGMAS:
        conn.execute(pragma)
    return conn


@contextmanager
def connect(db_dsn: str) -> Iterator[Any]:
    """One unit of work against SQLite or Postgres.

    Commits when the block exits cleanly, rolls back on any exception, and always
    closes. A subscription update and its payment event therefore land together
    or not at all.
    """
    dsn = (db_dsn or "").strip()
    conn = _open_postgres(dsn) if _detect_dialect(dsn) == "postgres" else _open_sqlite(dsn)
    with _transaction(conn) as c:
        yield c


def init_db(db_dsn: str) -> None:
    """Create all tables and run lightweight migrations."""
    dialect = _detect_dialect(db_dsn)
    _debug(f"Initializing DB ({dialect}) at {db_dsn}")
    with connect(db_dsn) as conn:
        schema_sql = get_schema_sql(dialect)
        # Ensure only one process runs schema DDL at a time.
        if dialect == "postgres":
            conn.execute("SELECT pg_advisory_lock(?);", (_SCHEMA_LOCK_KEY,))
            try:
                _exec_schema(conn, schema_sql, dialect=dialect)
            finally:
                conn.execute("SELECT pg_advisory_unlock(?);", (_SCHEMA_LOCK_KEY,))
        else:
            _exec_schema(conn, schema_sql, dialect=dialect)

        _migrate(conn, dialect=dialect)


def _exec_schema(conn: Any, ddl: str, *, dialect: str) -> None:
    if dialect == "postgres":
        # Naive split is OK for our schema (no semicolons inside literals).
        statements = [s.strip() for s in ddl.split(";") if s.strip()]
        for stmt in statements:
            conn.execute(stmt)
        return

    conn.executescript(ddl)


def _has_column(conn: Any, table: str, col: str, *, dialect: str) -> bool:
    if dialect == "postgres":
        r = conn.execute(
            """
            SELECT 1
            FROM information_schema.columns
            WHERE table_schema='public'
              AND table_name=?
              AND column_name=?
            LIMIT 1
            """,
            (table, col),
        ).fetchone()
        return r is not None

    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return any((r["name"] if isinstance(r, sqlite3.Row) else r[1]) == col for r in rows)


def _migrate(conn: Any, *, dialect: str) -> None:
    """Forward-only: add subscription columns missing from databases created before billing."""
    for col, ddl in _USER_COLUMN_MIGRATIONS:
        if not _has_column(conn, "users", col, dialect=dialect):
            _debug(f"adding users.{col}")
            conn.execute(f"ALTER TABLE users ADD COLUMN {col} {ddl}")
