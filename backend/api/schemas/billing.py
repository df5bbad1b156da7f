"""
Billing, subscription and usage request/response schemas.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from core.domain.subscription import BillingCycle, Currency
from core.domain.usage import UsageKind


class PlanLimits(BaseModel):
    """Monthly usage limits for a plan."""

    posts_per_month: int = Field(..., description="Posts allowed per month")
    comments_per_month: int = Field(..., description="Comments allowed per month")


class PlanInfo(BaseModel):
    """Information about a subscription plan."""

    id: str = Field(..., description="Plan ID (free, starter, pro)")
    name: str = Field(..., description="Display name of the plan")
    prices: dict[str, dict[str, float]] = Field(
        ..., description="Prices by currency and billing cycle"
    )
    features: list[str] = Field(default_factory=list)
    limits: PlanLimits


class PricingResponse(BaseModel):
    plans: list[PlanInfo]


class InvoiceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    external_invoice_id: str
    amount: Decimal
    status: str
    paid_at: datetime | None = None


class SubscriptionResponse(BaseModel):
    """A subscription with its read-time status."""

    model_config = ConfigDict(from_attributes=True)

    external_subscription_id: str
    plan: str
    status: str = Field(..., description="active, paused, cancelled or expired")
    currency: str
    amount: Decimal
    billing_cycle: str
    start_date: datetime
    end_date: datetime
    next_billing_date: datetime | None = None
    cancelled_at: datetime | None = None
    invoices: list[InvoiceResponse] = Field(default_factory=list)


class SubscriptionStatusResponse(BaseModel):
    """Current plan and subscription for the caller."""

    plan: str = Field(..., description="Stored plan tier")
    entitlement_paused: bool
    subscription: SubscriptionResponse | None = None


class CreateSubscriptionRequest(BaseModel):
    plan: str = Field(..., description="Plan ID (starter, pro)")
    currency: Currency = Currency.INR
    billing_cycle: BillingCycle = BillingCycle.MONTHLY

    model_config = {
        "json_schema_extra": {
            "example": {"plan": "starter", "currency": "INR", "billing_cycle": "monthly"}
        }
    }


class SubscriptionCancelResponse(BaseModel):
    success: bool
    message: str
    subscription: SubscriptionResponse | None = None


class UsageStatsResponse(BaseModel):
    period: str = Field(..., description="Billing period key (YYYY-MM)")
    plan: str
    posts_generated: int
    comments_generated: int
    total_tokens_used: int
    limits: PlanLimits
    remaining: dict[str, int]
    growth: dict[str, int] = Field(..., description="Percent change against the previous period")


class UsageRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    period: str
    posts_generated: int
    comments_generated: int
    total_tokens_used: int


class UsageHistoryResponse(BaseModel):
    history: list[UsageRecordResponse]


class CheckActionRequest(BaseModel):
    kind: UsageKind


class QuotaDecisionResponse(BaseModel):
    allowed: bool
    kind: UsageKind
    plan: str | None = None
    reason: str | None = None
    current: int | None = None
    limit: int | None = None
    remaining: int = 0


class WebhookResponse(BaseModel):
    status: str
    event: str | None = None
    outcome: str | None = None
