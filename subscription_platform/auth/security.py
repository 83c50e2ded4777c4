from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt
from passlib.context import CryptContext


PASSWORD_MIN_LENGTH = 6
TOKEN_ISSUER = "subscription-platform"

_pwd = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
_JWT_ALG = "HS256"


def check_password_policy(password: str) -> None:
    if not password or not password.strip():
        raise ValueError("password_blank")
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValueError("password_too_short")


def hash_password(password: str) -> str:
    check_password_policy(password)
    return _pwd.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """True when `password` matches. Malformed or legacy hashes count as a mismatch."""
    if not password or not password_hash:
        return False
    try:
        return _pwd.verify(password, password_hash)
    except (ValueError, TypeError):
        return False


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    email: str
    role: str
    expires_at: datetime

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def create_access_token(
    *,
    secret: str,
    user_id: int,
    email: str,
    role: str,
    expires_minutes: int,
) -> str:
    if not secret:
        raise ValueError("jwt_secret_blank")

    issued = datetime.now(timezone.utc)
    payload: Dict[str, Any] = {
        "iss": TOKEN_ISSUER,
        "sub": str(int(user_id)),
        "email": email,
        "role": role,
        "iat": issued,
        "exp": issued + timedelta(minutes=max(1, int(expires_minutes))),
    }
    return jwt.encode(payload, secret, algorithm=_JWT_ALG)


def decode_access_token(*, token: str, secret: str) -> TokenClaims:
    """Validate signature, expiry and issuer.

    Raises the PyJWT errors (`ExpiredSignatureError`, `InvalidTokenError`) so the
    HTTP layer can map them to 401 details.
    """
    if not token:
        raise jwt.InvalidTokenError("token_blank")
    if not secret:
        raise ValueError("jwt_secret_blank")

    payload = jwt.decode(
        token,
        secret,
        algorithms=[_JWT_ALG],
        issuer=TOKEN_ISSUER,
        options={"require": ["exp", "sub", "iss"]},
    )
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError) as e:
        raise jwt.InvalidTokenError("token_subject_invalid") from e

    return TokenClaims(
        user_id=user_id,
        email=str(payload.get("email") or ""),
        role=str(payload.get("role") or "user"),
        expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
    )
