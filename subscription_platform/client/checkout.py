"""Client-side checkout flow.

The orchestrator drives one checkout at a time:

    IDLE -> SCRIPT_LOADING -> SCRIPT_READY -> ORDER_REQUESTED -> GATEWAY_OPEN
         -> VERIFYING -> SUCCEEDED | FAILED

The gateway widget calls back asynchronously (completion or dismissal). A
completion callback is only a hint: the subscription changes only once the
server has verified the signature.
"""

from __future__ import annotations

import threading
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol

from subscription_platform.billing.pricing import PlanPrice, price_of, validate_selection
from subscription_platform.models import PaymentOrder

from .api_client import CheckoutError, PaymentsApiClient
from .script_loader import GatewayScriptLoader, ScriptLoadError


SCRIPT_LOAD_FAILED = "Could not load the payment gateway. Please retry."
PAYMENT_CANCELLED = "Payment cancelled"
PAYMENT_INCOMPLETE = "Payment response was incomplete. Please try again."


def _debug(msg: str) -> None:
    print(f"[checkout] {msg}")


class CheckoutState(str, Enum):
    IDLE = "idle"
    SCRIPT_LOADING = "script_loading"
    SCRIPT_READY = "script_ready"
    ORDER_REQUESTED = "order_requested"
    GATEWAY_OPEN = "gateway_open"
    VERIFYING = "verifying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_BUSY = (CheckoutState.SCRIPT_LOADING, CheckoutState.ORDER_REQUESTED, CheckoutState.GATEWAY_OPEN, CheckoutState.VERIFYING)
_PAYABLE = (CheckoutState.SCRIPT_READY, CheckoutState.FAILED, CheckoutState.SUCCEEDED)


class GatewayWidget(Protocol):
    """The gateway's embeddable checkout UI."""

    def open(
        self,
        options: Dict[str, Any],
        on_success: Callable[[Dict[str, Any]], None],
        on_dismiss: Callable[[], None],
    ) -> None:
        """Show the checkout; call exactly one of the callbacks later."""


class CheckoutOrchestrator:
    def __init__(
        self,
        api: PaymentsApiClient,
        widget: GatewayWidget,
        loader: GatewayScriptLoader,
        *,
        user: Optional[Dict[str, Any]] = None,
        brand_name: str = "PaintOS",
        dashboard_path: str = "/",
        on_change: Optional[Callable[["CheckoutOrchestrator"], None]] = None,
    ):
        self.api = api
        self.widget = widget
        self.loader = loader
        self.user = user or {}
        self.brand_name = brand_name
        self.dashboard_path = dashboard_path
        self.on_change = on_change

        self.plan_type = "basic"
        self.period = "monthly"
        self.state = CheckoutState.IDLE
        self.error: str | None = None
        self.order: PaymentOrder | None = None
        self.subscription: Dict[str, Any] | None = None

        self._lock = threading.RLock()
        self._session = 0

    # -----------------
    # Derived view state
    # -----------------

    @property
    def display_price(self) -> PlanPrice:
        return price_of(self.plan_type, self.period)

    @property
    def loading(self) -> bool:
        return self.state in (CheckoutState.ORDER_REQUESTED, CheckoutState.GATEWAY_OPEN, CheckoutState.VERIFYING)

    @property
    def can_pay(self) -> bool:
        return self.loader.loaded and self.state in _PAYABLE

    def _transition(self, state: CheckoutState, *, error: str | None = None) -> None:
        with self._lock:
            prev = self.state
            self.state = state
            self.error = error
        _debug(f"{prev.value} -> {state.value}" + (f" ({error})" if error else ""))
        if self.on_change is not None:
            self.on_change(self)

    # -----------------
    # Script
    # -----------------

    def mount(self) -> None:
        with self._lock:
            if self.state not in (CheckoutState.IDLE, CheckoutState.FAILED):
                return
            if self.loader.loaded:
                self._transition(CheckoutState.SCRIPT_READY)
                return
            self._transition(CheckoutState.SCRIPT_LOADING)

        try:
            self.loader.ensure_loaded()
        except ScriptLoadError as e:
            _debug(f"script load failed: {e}")
            self._transition(CheckoutState.FAILED, error=SCRIPT_LOAD_FAILED)
            return
        self._transition(CheckoutState.SCRIPT_READY)

    def retry(self) -> None:
        """Recover from FAILED: reload the script if needed, else back to SCRIPT_READY."""
        with self._lock:
            if self.state != CheckoutState.FAILED:
                return
            if self.loader.loaded:
                self._transition(CheckoutState.SCRIPT_READY)
                return
        self.mount()

    # -----------------
    # Selection + payment
    # -----------------

    def select(self, plan_type: str, period: str) -> PlanPrice:
        with self._lock:
            if self.state in _BUSY:
                raise RuntimeError("checkout_busy")
            self.plan_type, self.period = validate_selection(plan_type, period)
            return self.display_price

    def pay(self) -> bool:
        """Request an order and open the gateway. Returns False when paying isn't allowed now."""
        with self._lock:
            if not self.can_pay:
                return False
            plan_type, period = self.plan_type, self.period
            self.order = None
            self.subscription = None
            self._session += 1
            session = self._session
            self._transition(CheckoutState.ORDER_REQUESTED)

        try:
            order = self.api.create_order(plan_type=plan_type, period=period)
        except CheckoutError as e:
            self._transition(CheckoutState.FAILED, error=e.message)
            return False

        price = price_of(plan_type, period)
        options = {
            "key": order.key_id,
            "amount": order.amount,
            "currency": order.currency,
            "name": self.brand_name,
            "description": f"{plan_type.upper()} - {price.label}",
            "order_id": order.order_id,
            "prefill": {
                "name": self.user.get("name") or "",
                "email": self.user.get("email") or "",
                "contact": self.user.get("mobile") or "",
            },
        }

        with self._lock:
            self.order = order
            self._transition(CheckoutState.GATEWAY_OPEN)

        try:
            self.widget.open(
                options,
                lambda response: self._on_gateway_success(session, response),
                lambda: self._on_gateway_dismiss(session),
            )
        except Exception as e:
            _debug(f"gateway open failed: {type(e).__name__}: {e}")
            with self._lock:
                if self._session == session and self.state == CheckoutState.GATEWAY_OPEN:
                    self._transition(CheckoutState.FAILED, error=SCRIPT_LOAD_FAILED)
            return False
        return True

    # -----------------
    # Gateway callbacks
    # -----------------

    def _on_gateway_success(self, session: int, response: Dict[str, Any]) -> None:
        with self._lock:
            if session != self._session or self.state != CheckoutState.GATEWAY_OPEN:
                _debug("ignoring stale gateway completion")
                return
            self._transition(CheckoutState.VERIFYING)
            plan_type, period = self.plan_type, self.period

        try:
            order_id = str(response["razorpay_order_id"])
            payment_id = str(response["razorpay_payment_id"])
            signature = str(response["razorpay_signature"])
        except (KeyError, TypeError):
            self._transition(CheckoutState.FAILED, error=PAYMENT_INCOMPLETE)
            return

        try:
            result = self.api.verify_payment(
                order_id=order_id,
                payment_id=payment_id,
                signature=signature,
                plan_type=plan_type,
                period=period,
            )
        except CheckoutError as e:
            self._transition(CheckoutState.FAILED, error=e.message)
            return

        if not result.get("success"):
            self._transition(CheckoutState.FAILED, error=str(result.get("message") or PAYMENT_INCOMPLETE))
            return

        with self._lock:
            self.subscription = result.get("subscription")
            self._transition(CheckoutState.SUCCEEDED)

    def _on_gateway_dismiss(self, session: int) -> None:
        with self._lock:
            if session != self._session or self.state != CheckoutState.GATEWAY_OPEN:
                return
            self._transition(CheckoutState.FAILED, error=PAYMENT_CANCELLED)
