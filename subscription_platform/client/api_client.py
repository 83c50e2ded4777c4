from __future__ import annotations

from typing import Any, Dict, Optional

import requests

from subscription_platform.models import PaymentOrder


DEFAULT_ERROR = "Payment failed. Please try again."
_MAX_MESSAGE_LEN = 200


def _debug(msg: str) -> None:
    print(f"[checkout] {msg}")


class CheckoutError(RuntimeError):
    """A failure that is safe to show to the user as-is."""

    def __init__(self, message: str = DEFAULT_ERROR, *, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _public_message(data: Any) -> str:
    """Pick a short human-readable message out of an error body."""
    if isinstance(data, dict):
        for key in ("message", "detail"):
            v = data.get(key)
            if isinstance(v, str) and v.strip():
                return v.strip()[:_MAX_MESSAGE_LEN]
    return DEFAULT_ERROR


class PaymentsApiClient:
    """Thin HTTP client for the payment endpoints, authenticated with a bearer token.

    `timeout` bounds every call, including verification.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        h = {"Accept": "application/json"}
        if self.token:
            h["Authorization"] = f"Bearer {self.token}"
        return h

    def _request(self, method: str, path: str, body: Dict[str, Any] | None = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            r = self._session.request(method, url, json=body, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            _debug(f"{method} {path} failed: {type(e).__name__}: {e}")
            raise CheckoutError(DEFAULT_ERROR) from e

        try:
            data = r.json() if r.content else {}
        except ValueError:
            data = {}

        if r.status_code >= 400:
            _debug(f"{method} {path} -> {r.status_code}")
            raise CheckoutError(_public_message(data), status_code=r.status_code)
        if not isinstance(data, dict):
            raise CheckoutError(DEFAULT_ERROR, status_code=r.status_code)
        return data

    def get_pricing(self) -> Dict[str, Any]:
        return self._request("GET", "/payments/pricing")

    def create_order(self, *, plan_type: str, period: str) -> PaymentOrder:
        data = self._request("POST", "/payments/create-order", {"planType": plan_type, "period": period})
        try:
            return PaymentOrder(
                order_id=str(data["orderId"]),
                amount=int(data["amount"]),
                currency=str(data["currency"]),
                key_id=str(data["keyId"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CheckoutError(DEFAULT_ERROR) from e

    def verify_payment(
        self,
        *,
        order_id: str,
        payment_id: str,
        signature: str,
        plan_type: str | None = None,
        period: str | None = None,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "razorpayOrderId": order_id,
            "razorpayPaymentId": payment_id,
            "razorpaySignature": signature,
        }
        if plan_type:
            body["planType"] = plan_type
        if period:
            body["period"] = period
        return self._request("POST", "/payments/verify-payment", body)
