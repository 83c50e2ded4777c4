"""Plan pricing, gateway orders, callback verification and subscription state."""

from .errors import (
    AlreadyProcessed,
    GatewayError,
    InvalidPlanSelection,
    NotFound,
    PaymentError,
    PersistenceError,
    SignatureMismatch,
    ValidationError,
)
from .pricing import PLAN_CATALOG, PlanPrice, price_of, validate_selection

__all__ = [
    "AlreadyProcessed",
    "GatewayError",
    "InvalidPlanSelection",
    "NotFound",
    "PaymentError",
    "PersistenceError",
    "SignatureMismatch",
    "ValidationError",
    "PLAN_CATALOG",
    "PlanPrice",
    "price_of",
    "validate_selection",
]
