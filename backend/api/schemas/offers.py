"""
Offer (coupon) request/response schemas.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from core.domain.offer import ALL_PLANS


class OfferCheckRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    amount: Decimal = Field(..., gt=0, description="Order amount before discount")
    plan: str = Field(ALL_PLANS, min_length=1, max_length=50, description="Plan being purchased")


class OfferRedeemRequest(OfferCheckRequest):
    payment_id: str = Field(
        ...,
        min_length=1,
        max_length=100,
        pattern=r"^[A-Za-z0-9_]+$",
        description="Captured processor payment for the order",
    )


class OfferSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    code: str
    name: str
    description: str | None = None
    discount_type: str
    discount_value: Decimal
    max_discount_amount: Decimal | None = None
    min_amount: Decimal
    applicable_plans: list[str]
    start_date: datetime
    end_date: datetime


class OfferValidationResponse(BaseModel):
    valid: bool
    code: str
    reason: str | None = None
    message: str
    discount: Decimal | None = None
    final_amount: Decimal | None = None
    offer: OfferSummary | None = None


class DiscountResponse(BaseModel):
    code: str
    original_amount: Decimal
    discount: Decimal
    final_amount: Decimal


class OfferRedeemResponse(BaseModel):
    applied: bool
    code: str
    reason: str | None = None
    used_count: int | None = None
    user_usage_count: int | None = None


class ActiveOffersResponse(BaseModel):
    offers: list[OfferSummary]


# ============================================================================
# Admin
# ============================================================================


class OfferCreateRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)
    discount_type: str = Field(..., pattern="^(percentage|flat)$")
    discount_value: Decimal = Field(..., ge=0)
    max_discount_amount: Decimal | None = Field(None, ge=0)
    min_amount: Decimal = Field(Decimal("0"), ge=0)
    applicable_plans: list[str] = Field(default_factory=lambda: [ALL_PLANS])
    start_date: datetime
    end_date: datetime
    usage_limit: int | None = Field(None, ge=1)
    per_user_limit: int = Field(1, ge=1)
    is_active: bool = True


class OfferUpdateRequest(BaseModel):
    """Only the fields present in the request are changed."""

    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)
    discount_type: str | None = Field(None, pattern="^(percentage|flat)$")
    discount_value: Decimal | None = Field(None, ge=0)
    max_discount_amount: Decimal | None = Field(None, ge=0)
    min_amount: Decimal | None = Field(None, ge=0)
    applicable_plans: list[str] | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    usage_limit: int | None = Field(None, ge=1)
    per_user_limit: int | None = Field(None, ge=1)
    is_active: bool | None = None


class OfferAdminResponse(OfferSummary):
    id: str
    is_active: bool
    usage_limit: int | None = None
    used_count: int
    per_user_limit: int
    created_at: datetime
    updated_at: datetime


class OfferListResponse(BaseModel):
    offers: list[OfferAdminResponse]
    total: int
