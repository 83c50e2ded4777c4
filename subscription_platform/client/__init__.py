"""Checkout client: API calls, gateway script loading and the checkout state machine."""

from .api_client import CheckoutError, PaymentsApiClient
from .checkout import CheckoutOrchestrator, CheckoutState, GatewayWidget
from .script_loader import GatewayScriptLoader, ScriptLoadError, get_script_loader

__all__ = [
    "CheckoutError",
    "PaymentsApiClient",
    "CheckoutOrchestrator",
    "CheckoutState",
    "GatewayWidget",
    "GatewayScriptLoader",
    "ScriptLoadError",
    "get_script_loader",
]
