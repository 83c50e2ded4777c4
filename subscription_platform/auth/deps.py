from __future__ import annotations

from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from subscription_platform.config import Config
from subscription_platform.db import connect

from .crud import can_sign_in, get_user_by_id, public_user
from .security import TokenClaims, decode_access_token


_bearer = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


def _request_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials], cfg: Config) -> str | None:
    # An explicit Authorization header wins over the session cookie.
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(str(cfg.AUTH_COOKIE_NAME or "sp_token"))


def _claims(token: str, cfg: Config) -> TokenClaims:
    try:
        return decode_access_token(token=token, secret=cfg.AUTH_JWT_SECRET)
    except jwt.ExpiredSignatureError:
        raise _unauthorized("token_expired")
    except jwt.InvalidTokenError:
        raise _unauthorized("token_invalid")


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Dict[str, Any]:
    """Resolve the caller from a Bearer token or the httpOnly session cookie.

    Role and account status are read from the database, not from the token, so a
    disabled account is locked out even while its token is still unexpired.
    """
    cfg: Config | None = getattr(request.app.state, "cfg", None)
    if cfg is None:
        raise HTTPException(status_code=500, detail="server_config_missing")

    token = _request_token(request, credentials, cfg)
    if not token:
        raise _unauthorized("missing_token")

    claims = _claims(token, cfg)

    with connect(cfg.DB_DSN) as conn:
        row = get_user_by_id(conn, claims.user_id)
    if row is None:
        raise _unauthorized("user_not_found")
    if not can_sign_in(row):
        raise _unauthorized("user_inactive")

    user = public_user(row)
    user["is_admin"] = user.get("role") == "admin"
    return user


def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if not user.get("is_admin"):
        raise HTTPException(status_code=403, detail="admin_required")
    return user
