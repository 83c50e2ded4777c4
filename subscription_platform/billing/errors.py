from __future__ import annotations


class PaymentError(RuntimeError):
    """Base class for payment domain errors.

    `public_message` is the only text that may be shown to end users; the
    exception's own message is for logs.
    """

    status_code = 400
    public_message = "Payment failed. Please try again."

    def __init__(self, detail: str | None = None, *, public_message: str | None = None):
        super().__init__(detail or self.public_message)
        if public_message is not None:
            self.public_message = public_message


class ValidationError(PaymentError):
    """Raised when the requested plan tier or billing period is invalid."""

    public_message = "Invalid plan selection"


class InvalidPlanSelection(ValidationError):
    """Raised when a (plan, period) pair is not in the pricing table."""


class GatewayError(PaymentError):
    """Raised when the payment gateway is unreachable or rejects a request."""

    public_message = "Payment gateway error. Please try again."


class SignatureMismatch(PaymentError):
    """Raised when a payment callback fails signature verification."""

    public_message = "Invalid signature"


class NotFound(PaymentError):
    """Raised when the user referenced by a payment does not exist."""

    status_code = 404
    public_message = "User not found"


class AlreadyProcessed(PaymentError):
    """Raised when a gateway payment id has already been applied."""

    status_code = 409
    public_message = "Payment already processed"


class PersistenceError(PaymentError):
    """Raised when the subscription update could not be written."""

    status_code = 500
    public_message = "Failed to update subscription"
