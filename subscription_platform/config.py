import os
from dataclasses import dataclass
from typing import Optional

# Optional: load a local .env file if present.
try:
    from dotenv import load_dotenv

    load_dotenv()
except Exception:
    # If python-dotenv isn't installed or .env isn't present, that's fine.
    pass


def _env_bool(name: str, default: Optional[bool] = None) -> Optional[bool]:
    """Parse a boolean environment variable.

    Returns:
      - True/False if the env var is set to a recognizable value
      - default if unset or unrecognized

    Accepted truthy: 1, true, yes, y, on
    Accepted falsy:  0, false, no, n, off
    """

    raw = os.environ.get(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in ("1", "true", "yes", "y", "on"):
        return True
    if v in ("0", "false", "no", "n", "off"):
        return False
    return default


@dataclass(frozen=True)
class Config:
    """Runtime configuration.

    IMPORTANT: Provide gateway keys and the JWT secret via environment variables
    or a .env file. Do not hardcode secrets in source code.
    """

    # -----------------
    # Core
    # -----------------
    # Preferred: set SUBSCRIPTION_DATABASE_URL (or DATABASE_URL) to use Postgres.
    # Fallback: SUBSCRIPTION_DB_PATH for SQLite.
    DB_DSN: str = (
        os.environ.get("SUBSCRIPTION_DATABASE_URL")
        or os.environ.get("DATABASE_URL")
        or os.environ.get("SUBSCRIPTION_DB_PATH", "./subscription_platform.sqlite")
    )

    # -----------------
    # Auth (JWT)
    # -----------------
    # NOTE: In dev, this defaults to a fixed string so you can get started.
    # In production, you MUST set AUTH_JWT_SECRET to a strong random value.
    AUTH_JWT_SECRET: str = os.environ.get("AUTH_JWT_SECRET", "dev_change_me")
    AUTH_TOKEN_EXPIRE_MINUTES: int = int(os.environ.get("AUTH_TOKEN_EXPIRE_MINUTES", "10080"))  # 7 days

    # Bootstrap first admin user if users table is empty
    AUTH_BOOTSTRAP_ADMIN_EMAIL: str = os.environ.get("AUTH_BOOTSTRAP_ADMIN_EMAIL", "admin@example.com")
    AUTH_BOOTSTRAP_ADMIN_PASSWORD: str = os.environ.get("AUTH_BOOTSTRAP_ADMIN_PASSWORD", "admin123456")

    # Cookie-based browser sessions
    # - The API sets an httpOnly cookie on /auth/login and /auth/register
    # - The API reads the token from either Authorization: Bearer ... OR the cookie
    AUTH_COOKIE_NAME: str = os.environ.get("AUTH_COOKIE_NAME", "sp_token")
    AUTH_COOKIE_DOMAIN: str | None = (os.environ.get("AUTH_COOKIE_DOMAIN") or "").strip() or None
    AUTH_COOKIE_PATH: str = os.environ.get("AUTH_COOKIE_PATH", "/")
    AUTH_COOKIE_SAMESITE: str = os.environ.get("AUTH_COOKIE_SAMESITE", "lax")  # lax|strict|none

    # If AUTH_COOKIE_SECURE is unset, we default to secure cookies when PUBLIC_APP_URL is https.
    # NOTE: Browsers require Secure when SameSite=None.
    PUBLIC_APP_URL: str = os.environ.get("PUBLIC_APP_URL", "http://localhost:5173")
    AUTH_COOKIE_SECURE: bool = (
        _env_bool("AUTH_COOKIE_SECURE", None)
        if _env_bool("AUTH_COOKIE_SECURE", None) is not None
        else PUBLIC_APP_URL.lower().startswith("https://")
    )

    # -----------------
    # CORS (development)
    # -----------------
    CORS_ALLOW_ORIGINS: str = os.environ.get(
        "CORS_ALLOW_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000",
    )

    # -----------------
    # Billing (Razorpay)
    # -----------------
    # The key id is public (the checkout widget needs it). The secret signs
    # payment callbacks and must never leave the server.
    RAZORPAY_KEY_ID: str | None = os.environ.get("RAZORPAY_KEY_ID")
    RAZORPAY_KEY_SECRET: str | None = os.environ.get("RAZORPAY_KEY_SECRET")
    RAZORPAY_CURRENCY: str = os.environ.get("RAZORPAY_CURRENCY", "INR")
    RAZORPAY_CHECKOUT_URL: str = os.environ.get(
        "RAZORPAY_CHECKOUT_URL",
        "https://checkout.razorpay.com/v1/checkout.js",
    )
    CHECKOUT_BRAND_NAME: str = os.environ.get("CHECKOUT_BRAND_NAME", "PaintOS")

    # Plan assigned to newly registered users (before any payment).
    DEFAULT_PLAN_TYPE: str = os.environ.get("DEFAULT_PLAN_TYPE", "basic")


def load_config() -> Config:
    return Config()
