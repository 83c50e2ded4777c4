from __future__ import annotations

import hashlib
import hmac
import time
from typing import Any, Dict, Optional, Tuple

from subscription_platform.config import Config
from subscription_platform.db import connect
from subscription_platform.models import PaymentCallback, PaymentOrder, UserSubscriptionState

from .errors import GatewayError, PaymentError, PersistenceError, SignatureMismatch, ValidationError
from .pricing import price_of, validate_selection
from .subscriptions import apply_verified_payment


def _debug(msg: str) -> None:
    print(f"[payments] {msg}")


def _get_razorpay_client(cfg: Config) -> Any:
    try:
        import razorpay  # type: ignore
    except Exception as e:
        raise GatewayError(
            "Razorpay selected but the 'razorpay' package is not installed. Install razorpay and try again."
        ) from e

    if not cfg.RAZORPAY_KEY_ID or not cfg.RAZORPAY_KEY_SECRET:
        raise GatewayError("razorpay_keys_missing")

    return razorpay.Client(auth=(cfg.RAZORPAY_KEY_ID, cfg.RAZORPAY_KEY_SECRET))


def create_order(
    cfg: Config,
    *,
    user_id: int,
    plan_type: str,
    period: str,
    client: Any | None = None,
) -> PaymentOrder:
    """Create a gateway order for (plan_type, period).

    The selection is validated before the gateway client is even built, and the
    amount always comes from the pricing table. The order is not stored locally:
    the gateway's notes carry plan, period and user id for reconciliation.
    """
    plan_type, period = validate_selection(plan_type, period)
    price = price_of(plan_type, period)

    if client is None:
        client = _get_razorpay_client(cfg)

    data: Dict[str, Any] = {
        "amount": price.amount,
        "currency": cfg.RAZORPAY_CURRENCY,
        "receipt": f"receipt_{int(user_id)}_{int(time.time() * 1000)}",
        "notes": {
            "planType": plan_type,
            "period": period,
            "userId": str(int(user_id)),
        },
    }

    try:
        order = client.order.create(data=data)
    except Exception as e:
        _debug(f"order create failed user_id={user_id}: {type(e).__name__}: {e}")
        raise GatewayError(f"order_create_failed: {e}") from e

    order_id = (order or {}).get("id")
    if not order_id:
        raise GatewayError("order_id_missing")

    try:
        amount = int(order.get("amount"))
    except (TypeError, ValueError):
        amount = price.amount
    if amount != price.amount:
        raise GatewayError(f"order_amount_mismatch: expected={price.amount} got={amount}")

    _debug(f"order created user_id={user_id} order_id={order_id} plan={plan_type} period={period} amount={amount}")
    return PaymentOrder(
        order_id=str(order_id),
        amount=amount,
        currency=str(order.get("currency") or cfg.RAZORPAY_CURRENCY),
        key_id=str(cfg.RAZORPAY_KEY_ID or ""),
    )


def expected_signature(secret: str, order_id: str, payment_id: str) -> str:
    payload = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_signature(secret: str, order_id: str, payment_id: str, signature: str) -> bool:
    """Check a checkout callback signature in constant time. Never raises."""
    if not secret or not order_id or not payment_id or not signature:
        return False
    expected = expected_signature(secret, order_id, payment_id)
    try:
        return hmac.compare_digest(expected.encode("ascii"), signature.encode("ascii"))
    except (UnicodeEncodeError, AttributeError):
        return False


def fetch_order(cfg: Config, order_id: str, *, client: Any | None = None) -> Dict[str, Any]:
    if client is None:
        client = _get_razorpay_client(cfg)
    try:
        order = client.order.fetch(order_id)
    except Exception as e:
        _debug(f"order fetch failed order_id={order_id}: {type(e).__name__}: {e}")
        raise GatewayError(f"order_fetch_failed: {e}") from e
    if not isinstance(order, dict):
        raise GatewayError("order_fetch_malformed")
    return order


def resolve_selection(
    cfg: Config,
    *,
    user_id: int,
    callback: PaymentCallback,
    client: Any | None = None,
) -> Tuple[str, str, Optional[int]]:
    """Work out which plan a verified payment pays for.

    The gateway order's notes are authoritative. Client-supplied planType/period
    are optional; when given they must agree with the notes.
    """
    order = fetch_order(cfg, callback.order_id, client=client)
    notes = order.get("notes") or {}

    owner = str(notes.get("userId") or "").strip()
    if owner and owner != str(int(user_id)):
        _debug(f"order owner mismatch order_id={callback.order_id} caller={user_id} owner={owner}")
        raise ValidationError(
            f"order_user_mismatch: caller={user_id} owner={owner}",
            public_message="Order does not belong to this account",
        )

    if notes.get("planType") and notes.get("period"):
        plan_type, period = validate_selection(notes.get("planType"), notes.get("period"))
    elif callback.plan_type and callback.period:
        plan_type, period = validate_selection(callback.plan_type, callback.period)
    else:
        raise ValidationError("plan_selection_missing")

    if callback.plan_type or callback.period:
        claimed = validate_selection(callback.plan_type or plan_type, callback.period or period)
        if claimed != (plan_type, period):
            _debug(
                f"plan claim mismatch order_id={callback.order_id} claimed={claimed} "
                f"order={(plan_type, period)}"
            )
            raise ValidationError(
                f"plan_mismatch: claimed={claimed} order={(plan_type, period)}",
                public_message="Plan does not match order",
            )

    amount: Optional[int]
    try:
        amount = int(order.get("amount"))
    except (TypeError, ValueError):
        amount = None
    return plan_type, period, amount


def process_payment_callback(
    cfg: Config,
    *,
    user_id: int,
    callback: PaymentCallback,
    client: Any | None = None,
) -> UserSubscriptionState:
    """Verify + apply a checkout callback.

    Order: signature (local, no I/O) -> plan resolution against the gateway
    order -> one transaction updating the user and recording the payment id.
    """
    if not verify_signature(cfg.RAZORPAY_KEY_SECRET or "", callback.order_id, callback.payment_id, callback.signature):
        # Potential tampering: log identifiers only, never the signature or secret.
        _debug(
            f"SIGNATURE MISMATCH user_id={user_id} order_id={callback.order_id} "
            f"payment_id={callback.payment_id}"
        )
        raise SignatureMismatch("signature_mismatch")

    try:
        plan_type, period, amount = resolve_selection(cfg, user_id=user_id, callback=callback, client=client)
    except GatewayError as e:
        # Signature is valid, so the charge happened; the order lookup did not.
        _debug(
            f"RECONCILE payment_id={callback.payment_id} order_id={callback.order_id} "
            f"user_id={user_id} plan={callback.plan_type} period={callback.period}: order lookup failed: {e}"
        )
        raise

    try:
        with connect(cfg.DB_DSN) as conn:
            return apply_verified_payment(
                conn,
                user_id=user_id,
                plan_type=plan_type,
                period=period,
                payment_id=callback.payment_id,
                order_id=callback.order_id,
                amount=amount,
            )
    except PaymentError:
        raise
    except Exception as e:
        # Gateway has the money but the local state did not change; needs manual reconciliation.
        _debug(
            f"RECONCILE payment_id={callback.payment_id} order_id={callback.order_id} "
            f"user_id={user_id}: {type(e).__name__}: {e}"
        )
        raise PersistenceError(f"subscription_commit_failed: {e}") from e
