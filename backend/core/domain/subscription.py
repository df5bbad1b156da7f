"""Subscription domain values."""
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class PlanTier(str, Enum):
    """Plan tiers a user can hold."""
    FREE = "free"
    STARTER = "starter"
    PRO = "pro"


class Currency(str, Enum):
    """Currencies plans are sold in."""
    INR = "INR"
    USD = "USD"


class BillingCycle(str, Enum):
    """Billing cycle options.

    Terms are fixed offsets, not calendar months.
    """
    MONTHLY = "monthly"
    YEARLY = "yearly"

    @property
    def term(self) -> timedelta:
        return timedelta(days=365) if self is BillingCycle.YEARLY else timedelta(days=30)

    @property
    def total_count(self) -> int:
        """Number of billing cycles requested from the processor."""
        return 1 if self is BillingCycle.YEARLY else 12


class SubscriptionStatus(str, Enum):
    """Stored subscription states. EXPIRED is only ever derived at read time."""
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


def effective_status(status: str, end_date: Optional[datetime], now: datetime) -> SubscriptionStatus:
    """Read-time status: an active subscription past its end date is expired."""
    stored = SubscriptionStatus(status)
    if stored is SubscriptionStatus.ACTIVE and end_date is not None and end_date < now:
        return SubscriptionStatus.EXPIRED
    return stored


class LifecycleRejection(str, Enum):
    """Reasons a lifecycle request is refused."""
    CONFLICT = "conflict"
    NO_ACTIVE_SUBSCRIPTION = "no_active_subscription"
    UNKNOWN_PLAN = "unknown_plan"
    USER_NOT_FOUND = "user_not_found"


@dataclass(frozen=True)
class LifecycleResult:
    """Outcome of create/cancel/upgrade."""

    subscription: Optional[Any] = None
    rejection: Optional[LifecycleRejection] = None

    @property
    def ok(self) -> bool:
        return self.rejection is None

    @classmethod
    def success(cls, subscription: Any) -> "LifecycleResult":
        return cls(subscription=subscription)

    @classmethod
    def rejected(cls, reason: LifecycleRejection) -> "LifecycleResult":
        return cls(rejection=reason)


class WebhookOutcome(str, Enum):
    """What a webhook handler did with an event."""
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    UNKNOWN_SUBSCRIPTION = "unknown_subscription"


@dataclass(frozen=True)
class ChargedInvoice:
    """A charge reported by the payment processor."""

    external_invoice_id: str
    amount: Decimal
    period_end: datetime
    status: str = "paid"
    paid_at: Optional[datetime] = None
