"""Offer (coupon) rules.

The checks here are pure: they take an offer record, the caller's context
and the number of times the caller already redeemed the offer, and return
either a rejection reason or ``None``. Persistence lives in
``services.offer_engine``.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Iterable, Optional

from core.clock import as_utc

ALL_PLANS = "all"
_CENTS = Decimal("0.01")


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FLAT = "flat"


class OfferRejection(str, Enum):
    """Why an offer cannot be used, in the order the checks run."""
    INVALID_CODE = "invalid_code"
    EXPIRED = "expired"
    USAGE_LIMIT_EXCEEDED = "usage_limit_exceeded"
    MIN_AMOUNT_NOT_MET = "min_amount_not_met"
    PLAN_NOT_APPLICABLE = "plan_not_applicable"
    PER_USER_LIMIT_REACHED = "per_user_limit_reached"
    PAYMENT_ALREADY_REDEEMED = "payment_already_redeemed"

    @property
    def message(self) -> str:
        return _REJECTION_MESSAGES[self]


_REJECTION_MESSAGES = {
    OfferRejection.INVALID_CODE: "Invalid or inactive offer code",
    OfferRejection.EXPIRED: "Offer has expired or is not yet active",
    OfferRejection.USAGE_LIMIT_EXCEEDED: "Offer usage limit exceeded",
    OfferRejection.MIN_AMOUNT_NOT_MET: "Order amount is below the offer minimum",
    OfferRejection.PLAN_NOT_APPLICABLE: "Offer not applicable to this plan",
    OfferRejection.PER_USER_LIMIT_REACHED: "You have already used this offer the maximum number of times",
    OfferRejection.PAYMENT_ALREADY_REDEEMED: "This payment has already redeemed an offer",
}


def normalize_code(code: str) -> str:
    """Offer codes are stored trimmed and upper-cased."""
    return (code or "").strip().upper()


def to_money(value: Any) -> Decimal:
    """Round to currency minor units (2 dp, half up)."""
    return Decimal(str(value)).quantize(_CENTS, rounding=ROUND_HALF_UP)


def plan_applies(applicable_plans: Optional[Iterable[str]], plan: Optional[str]) -> bool:
    plans = set(applicable_plans or ())
    return not plans or ALL_PLANS in plans or plan in plans


def check_offer(
    offer: Any,
    *,
    amount: Optional[Decimal],
    plan: Optional[str],
    user_usage_count: int,
    now: datetime,
) -> Optional[OfferRejection]:
    """Run the offer checks in order; the first failure wins.

    An order with no plan only matches offers open to all plans. A ``None``
    amount skips the minimum-amount check.
    """
    if offer is None or not offer.is_active:
        return OfferRejection.INVALID_CODE
    if not (as_utc(offer.start_date) <= now <= as_utc(offer.end_date)):
        return OfferRejection.EXPIRED
    if offer.usage_limit is not None and offer.used_count >= offer.usage_limit:
        return OfferRejection.USAGE_LIMIT_EXCEEDED
    if amount is not None and Decimal(amount) < Decimal(offer.min_amount or 0):
        return OfferRejection.MIN_AMOUNT_NOT_MET
    if not plan_applies(offer.applicable_plans, plan or ALL_PLANS):
        return OfferRejection.PLAN_NOT_APPLICABLE
    if user_usage_count >= offer.per_user_limit:
        return OfferRejection.PER_USER_LIMIT_REACHED
    return None


def compute_discount(
    discount_type: str,
    discount_value: Decimal,
    amount: Decimal,
    max_discount_amount: Optional[Decimal] = None,
) -> Decimal:
    """Discount for ``amount``, never more than the amount itself."""
    amount = Decimal(amount)
    if DiscountType(discount_type) is DiscountType.PERCENTAGE:
        discount = amount * Decimal(discount_value) / Decimal(100)
        if max_discount_amount is not None:
            discount = min(discount, Decimal(max_discount_amount))
    else:
        discount = Decimal(discount_value)
    return to_money(max(Decimal(0), min(discount, amount)))


@dataclass(frozen=True)
class OfferValidation:
    """Outcome of validating an offer against an order."""

    code: str
    rejection: Optional[OfferRejection] = None
    discount: Decimal = Decimal("0.00")
    final_amount: Optional[Decimal] = None
    offer: Optional[Any] = None

    @property
    def valid(self) -> bool:
        return self.rejection is None

    @property
    def message(self) -> str:
        return self.rejection.message if self.rejection else "Offer is valid"


@dataclass(frozen=True)
class OfferApplication:
    """Outcome of redeeming an offer."""

    code: str
    rejection: Optional[OfferRejection] = None
    used_count: Optional[int] = None
    user_usage_count: Optional[int] = None

    @property
    def applied(self) -> bool:
        return self.rejection is None
