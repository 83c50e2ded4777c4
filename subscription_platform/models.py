from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


ACCOUNT_STATUSES = ("active", "pending_approval", "disabled")


@dataclass(frozen=True)
class PaymentOrder:
    """A gateway-side order for one checkout attempt. Never persisted locally."""

    order_id: str
    amount: int
    currency: str
    key_id: str

    def to_public(self) -> Dict[str, Any]:
        return {
            "orderId": self.order_id,
            "amount": self.amount,
            "currency": self.currency,
            "keyId": self.key_id,
        }


@dataclass(frozen=True)
class PaymentCallback:
    """Identifiers relayed by the client after gateway checkout. Untrusted until verified."""

    order_id: str
    payment_id: str
    signature: str
    plan_type: Optional[str] = None
    period: Optional[str] = None


@dataclass(frozen=True)
class UserSubscriptionState:
    plan_type: Optional[str]
    billing_period: Optional[str]
    renewal_date: Optional[str]
    account_status: str

    @classmethod
    def from_row(cls, row: Any) -> "UserSubscriptionState":
        return cls(
            plan_type=row["plan_type"],
            billing_period=row["subscription_duration"],
            renewal_date=row["renewal_date"],
            account_status=row["account_status"] or "active",
        )

    def to_public(self) -> Dict[str, Any]:
        return {
            "planType": self.plan_type,
            "subscriptionDuration": self.billing_period,
            "renewalDate": self.renewal_date,
            "accountStatus": self.account_status,
        }
