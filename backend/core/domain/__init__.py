# Domain values
# Pure business objects with no persistence dependencies
from .billing_period import BillingPeriod
from .offer import DiscountType, OfferApplication, OfferRejection, OfferValidation
from .subscription import (
    BillingCycle,
    ChargedInvoice,
    Currency,
    LifecycleRejection,
    LifecycleResult,
    PlanTier,
    SubscriptionStatus,
    WebhookOutcome,
)
from .usage import QuotaStatus, UsageKind, UsageStats

__all__ = [
    "BillingPeriod",
    "BillingCycle",
    "ChargedInvoice",
    "Currency",
    "DiscountType",
    "LifecycleRejection",
    "LifecycleResult",
    "OfferApplication",
    "OfferRejection",
    "OfferValidation",
    "PlanTier",
    "QuotaStatus",
    "SubscriptionStatus",
    "UsageKind",
    "UsageStats",
    "WebhookOutcome",
]
