from __future__ import annotations

import csv
import io
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from subscription_platform.auth import get_current_user, require_admin
from subscription_platform.auth.crud import (
    bootstrap_admin_if_needed,
    create_user,
    get_user_by_id,
    list_users,
    public_user,
    touch_last_login,
    update_user,
    verify_user_credentials,
)
from subscription_platform.auth.security import create_access_token
from subscription_platform.billing.errors import NotFound, PaymentError
from subscription_platform.billing.pricing import catalog_as_dict
from subscription_platform.billing.razorpay_billing import create_order, process_payment_callback
from subscription_platform.billing.subscriptions import set_account_status
from subscription_platform.config import Config, load_config
from subscription_platform.db import connect, init_db
from subscription_platform.models import PaymentCallback


def _debug(msg: str) -> None:
    print(f"[api] {msg}")


app = FastAPI(title="Subscription Platform", version="0.1.0")
cfg: Config = load_config()

# CORS is only needed when the frontend is served from another origin (local dev).
_cors_origins = [o.strip() for o in (cfg.CORS_ALLOW_ORIGINS or "").split(",") if o.strip()]
if _cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.on_event("startup")
def _on_startup() -> None:
    # Make config available to auth deps.
    app.state.cfg = cfg

    init_db(cfg.DB_DSN)

    boot = bootstrap_admin_if_needed(cfg)
    if boot:
        _debug(f"Bootstrapped initial admin user: email={boot.get('email')} role={boot.get('role')}")


@app.exception_handler(PaymentError)
async def _payment_error_handler(_request: Request, exc: PaymentError) -> JSONResponse:
    # Only the public message crosses the trust boundary; the detail stays in logs.
    _debug(f"payment error {type(exc).__name__}: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.public_message},
    )


def _gateway_client() -> Any | None:
    """An injected gateway client (tests, sandboxes); None means build one from config."""
    return getattr(app.state, "gateway_client", None)


# -----------------------------
# Health
# -----------------------------


@app.get("/health")
def health() -> Dict[str, Any]:
    return {"status": "ok"}


# -----------------------------
# Auth
# -----------------------------


def _cookie_secure(cfg: Config) -> bool:
    samesite = str(getattr(cfg, "AUTH_COOKIE_SAMESITE", "lax") or "lax").lower()
    # Browsers require Secure when SameSite=None
    if samesite == "none":
        return True
    return bool(getattr(cfg, "AUTH_COOKIE_SECURE", False))


def _set_auth_cookie(response: Response, *, token: str, cfg: Config) -> None:
    response.set_cookie(
        key=str(cfg.AUTH_COOKIE_NAME or "sp_token"),
        value=str(token),
        httponly=True,
        samesite=str(cfg.AUTH_COOKIE_SAMESITE or "lax").lower(),
        secure=_cookie_secure(cfg),
        max_age=int(cfg.AUTH_TOKEN_EXPIRE_MINUTES) * 60,
        path=str(cfg.AUTH_COOKIE_PATH or "/"),
        domain=cfg.AUTH_COOKIE_DOMAIN,
    )


def _issue_token(user: Dict[str, Any]) -> str:
    return create_access_token(
        secret=cfg.AUTH_JWT_SECRET,
        user_id=int(user["user_id"]),
        email=str(user["email"]),
        role=str(user["role"]),
        expires_minutes=int(cfg.AUTH_TOKEN_EXPIRE_MINUTES),
    )


class LoginRequest(BaseModel):
    email: str
    password: str


class RegisterRequest(BaseModel):
    email: str
    password: str
    name: str = ""
    mobile: Optional[str] = None


class CreateUserRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: str
    password: str
    name: str = ""
    mobile: Optional[str] = None
    role: str = "user"  # admin|user
    plan_type: Optional[str] = Field(default=None, alias="planType")
    subscription_duration: Optional[str] = Field(default=None, alias="subscriptionDuration")
    renewal_date: Optional[str] = Field(default=None, alias="renewalDate")
    account_status: Optional[str] = Field(default=None, alias="accountStatus")


class UpdateUserRequest(BaseModel):
    """Every field optional; omitted fields are left unchanged."""

    model_config = ConfigDict(populate_by_name=True)

    email: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None
    mobile: Optional[str] = None
    role: Optional[str] = None
    plan_type: Optional[str] = Field(default=None, alias="planType")
    subscription_duration: Optional[str] = Field(default=None, alias="subscriptionDuration")
    renewal_date: Optional[str] = Field(default=None, alias="renewalDate")
    account_status: Optional[str] = Field(default=None, alias="accountStatus")


@app.post("/auth/login")
def auth_login(payload: LoginRequest, response: Response) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        user_row = verify_user_credentials(conn, payload.email, payload.password)
        if user_row is None:
            raise HTTPException(status_code=401, detail="invalid_credentials")

        touch_last_login(conn, int(user_row["user_id"]))
        u = public_user(user_row)

    u["is_admin"] = (u.get("role") == "admin")
    token = _issue_token(u)
    _set_auth_cookie(response, token=token, cfg=cfg)
    return {"access_token": token, "token_type": "bearer", "user": u}


@app.post("/auth/register", status_code=201)
def auth_register(payload: RegisterRequest, response: Response) -> Dict[str, Any]:
    """Self-serve registration. New accounts start on the default plan with no paid period."""
    with connect(cfg.DB_DSN) as conn:
        try:
            u = create_user(
                conn,
                email=payload.email,
                password=payload.password,
                name=payload.name,
                mobile=payload.mobile,
                role="user",
                plan_type=cfg.DEFAULT_PLAN_TYPE,
            )
        except ValueError as e:
            detail = str(e)
            if detail == "email_exists":
                raise HTTPException(status_code=409, detail=detail)
            raise HTTPException(status_code=400, detail=detail)

    u["is_admin"] = False
    token = _issue_token(u)
    _set_auth_cookie(response, token=token, cfg=cfg)
    return {"access_token": token, "token_type": "bearer", "user": u}


@app.post("/auth/logout")
def auth_logout(response: Response) -> Dict[str, Any]:
    """Clear the browser session cookie."""
    response.delete_cookie(
        key=str(cfg.AUTH_COOKIE_NAME or "sp_token"),
        path=str(cfg.AUTH_COOKIE_PATH or "/"),
        domain=cfg.AUTH_COOKIE_DOMAIN,
    )
    return {"ok": True}


@app.get("/auth/me")
def auth_me(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    return {"user": user}


# -----------------------------
# Payments (Razorpay)
# -----------------------------


class CreateOrderRequest(BaseModel):
    # Plain strings: unknown plans must surface as our 400, not a 422.
    model_config = ConfigDict(populate_by_name=True)

    plan_type: str = Field(default="", alias="planType")
    period: str = ""


class VerifyPaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    razorpay_order_id: str = Field(default="", alias="razorpayOrderId")
    razorpay_payment_id: str = Field(default="", alias="razorpayPaymentId")
    razorpay_signature: str = Field(default="", alias="razorpaySignature")
    plan_type: Optional[str] = Field(default=None, alias="planType")
    period: Optional[str] = None


@app.get("/payments/pricing")
def payments_pricing() -> Dict[str, Any]:
    """The plan catalog, so the frontend renders exactly what the server charges."""
    return {
        "currency": cfg.RAZORPAY_CURRENCY,
        "plans": catalog_as_dict(),
        "checkout": {"scriptUrl": cfg.RAZORPAY_CHECKOUT_URL, "brandName": cfg.CHECKOUT_BRAND_NAME},
    }


@app.post("/payments/create-order")
def payments_create_order(
    payload: CreateOrderRequest,
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    order = create_order(
        cfg,
        user_id=int(user["user_id"]),
        plan_type=payload.plan_type,
        period=payload.period,
        client=_gateway_client(),
    )
    return order.to_public()


@app.post("/payments/verify-payment")
def payments_verify_payment(
    payload: VerifyPaymentRequest,
    user: Dict[str, Any] = Depends(get_current_user),
) -> Any:
    order_id = (payload.razorpay_order_id or "").strip()
    payment_id = (payload.razorpay_payment_id or "").strip()
    signature = (payload.razorpay_signature or "").strip()
    if not order_id or not payment_id or not signature:
        return JSONResponse(status_code=400, content={"success": False, "message": "Missing details"})

    callback = PaymentCallback(
        order_id=order_id,
        payment_id=payment_id,
        signature=signature,
        plan_type=(payload.plan_type or "").strip() or None,
        period=(payload.period or "").strip() or None,
    )
    state = process_payment_callback(
        cfg,
        user_id=int(user["user_id"]),
        callback=callback,
        client=_gateway_client(),
    )
    return {
        "success": True,
        "message": "Payment verified successfully",
        "subscription": state.to_public(),
    }


# -----------------------------
# Admin
# -----------------------------


class AccountStatusRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    account_status: str = Field(alias="accountStatus")


@app.get("/admin/users")
def admin_list_users(_admin: Dict[str, Any] = Depends(require_admin)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return {"users": list_users(conn)}


@app.post("/admin/users", status_code=201)
def admin_create_user(
    payload: CreateUserRequest,
    _admin: Dict[str, Any] = Depends(require_admin),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        try:
            u = create_user(
                conn,
                email=payload.email,
                password=payload.password,
                name=payload.name,
                mobile=payload.mobile,
                role=payload.role,
                plan_type=payload.plan_type or cfg.DEFAULT_PLAN_TYPE,
                subscription_duration=payload.subscription_duration,
                renewal_date=payload.renewal_date,
                account_status=payload.account_status,
            )
        except ValueError as e:
            detail = str(e)
            if detail == "email_exists":
                raise HTTPException(status_code=409, detail=detail)
            raise HTTPException(status_code=400, detail=detail)
    return {"user": u}


@app.put("/admin/users/{user_id}")
def admin_update_user(
    user_id: int,
    payload: UpdateUserRequest,
    admin: Dict[str, Any] = Depends(require_admin),
) -> Dict[str, Any]:
    """Edit profile and subscription fields, e.g. to record a payment that failed to apply."""
    with connect(cfg.DB_DSN) as conn:
        try:
            u = update_user(
                conn,
                user_id,
                email=payload.email,
                name=payload.name,
                mobile=payload.mobile,
                role=payload.role,
                password=payload.password,
                plan_type=payload.plan_type,
                subscription_duration=payload.subscription_duration,
                renewal_date=payload.renewal_date,
                account_status=payload.account_status,
            )
        except ValueError as e:
            detail = str(e)
            if detail == "email_exists":
                raise HTTPException(status_code=409, detail=detail)
            raise HTTPException(status_code=400, detail=detail)
    if u is None:
        raise HTTPException(status_code=404, detail="user_not_found")

    _debug(f"user updated user_id={user_id} by admin_id={admin.get('user_id')}")
    return {"user": u}


@app.patch("/admin/users/{user_id}/status")
def admin_set_account_status(
    user_id: int,
    payload: AccountStatusRequest,
    admin: Dict[str, Any] = Depends(require_admin),
) -> Dict[str, Any]:
    """Approve (`active`), park (`pending_approval`) or disable an account."""
    with connect(cfg.DB_DSN) as conn:
        try:
            state = set_account_status(conn, user_id=user_id, account_status=payload.account_status)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except NotFound:
            raise HTTPException(status_code=404, detail="user_not_found")
        row = get_user_by_id(conn, user_id)
        u = public_user(row)

    _debug(f"account status user_id={user_id} -> {state.account_status} by admin_id={admin.get('user_id')}")
    return {"user": u, "subscription": state.to_public()}


_CSV_COLUMNS = [
    ("id", "user_id"),
    ("name", "name"),
    ("email", "email"),
    ("role", "role"),
    ("planType", "plan_type"),
    ("subscriptionDuration", "subscription_duration"),
    ("accountStatus", "account_status"),
    ("renewalDate", "renewal_date"),
    ("createdAt", "created_at"),
]


_CSV_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


def _csv_cell(value: Any) -> Any:
    if value is None:
        return ""
    # Spreadsheet apps evaluate cells starting with these as formulas.
    if isinstance(value, str) and value.startswith(_CSV_FORMULA_PREFIXES):
        return "'" + value
    return value


@app.get("/admin/users/export/csv")
def admin_export_users_csv(_admin: Dict[str, Any] = Depends(require_admin)) -> Response:
    with connect(cfg.DB_DSN) as conn:
        users = list_users(conn)

    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow([header for header, _ in _CSV_COLUMNS])
    for u in users:
        writer.writerow([_csv_cell(u.get(key)) for _, key in _CSV_COLUMNS])

    return Response(
        content=buf.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="users.csv"'},
    )
