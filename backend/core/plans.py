"""
Plan configuration for subscription tiers.

This module is the single source of truth for plan limits and prices.
It lives in core/ so both service and API layers can import from it
without creating circular dependencies.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from core.domain.usage import UsageKind

DEFAULT_PLAN = "free"

# Plan configuration with prices and monthly limits
PLANS = {
    "free": {
        "name": "Free",
        "prices": {
            "INR": {"monthly": 0, "yearly": 0},
            "USD": {"monthly": 0, "yearly": 0},
        },
        "features": [
            "5 posts per month",
            "10 comments per month",
        ],
        "limits": {
            "posts_per_month": 5,
            "comments_per_month": 10,
        },
    },
    "starter": {
        "name": "Starter",
        "prices": {
            "INR": {"monthly": 299, "yearly": 2499},
            "USD": {"monthly": 9, "yearly": 89},
        },
        "features": [
            "300 posts per month",
            "300 comments per month",
            "All post formats",
        ],
        "limits": {
            "posts_per_month": 300,
            "comments_per_month": 300,
        },
    },
    "pro": {
        "name": "Pro",
        "prices": {
            "INR": {"monthly": 799, "yearly": 6499},
            "USD": {"monthly": 18, "yearly": 159},
        },
        "features": [
            "2000 posts per month",
            "2000 comments per month",
            "All post formats",
            "Priority support",
        ],
        "limits": {
            "posts_per_month": 2000,
            "comments_per_month": 2000,
        },
    },
}


class UnknownPlanError(KeyError):
    """Raised when a price is requested for a plan the catalog does not sell."""


@dataclass(frozen=True)
class PlanLimits:
    """Monthly caps for one plan."""

    posts_per_month: int
    comments_per_month: int

    def for_kind(self, kind: UsageKind) -> int:
        if kind is UsageKind.POST:
            return self.posts_per_month
        return self.comments_per_month


class PlanCatalog:
    """Lookup over a plan table; unknown plans resolve to the default tier."""

    def __init__(self, plans: Optional[dict] = None, default_plan: str = DEFAULT_PLAN):
        self._plans = plans if plans is not None else PLANS
        if default_plan not in self._plans:
            raise ValueError(f"Default plan {default_plan!r} is not in the catalog")
        self._default_plan = default_plan

    @property
    def default_plan(self) -> str:
        return self._default_plan

    def resolve(self, plan: Optional[str]) -> str:
        """Plan name whose configuration applies to ``plan``."""
        return plan if plan in self._plans else self._default_plan

    def limits_for(self, plan: Optional[str]) -> PlanLimits:
        limits = self._plans[self.resolve(plan)]["limits"]
        return PlanLimits(
            posts_per_month=int(limits["posts_per_month"]),
            comments_per_month=int(limits["comments_per_month"]),
        )

    def is_paid(self, plan: Optional[str]) -> bool:
        """Whether ``plan`` is a known plan sold through the payment processor."""
        if plan not in self._plans or plan == self._default_plan:
            return False
        prices = self._plans[plan].get("prices", {})
        return any(amount > 0 for cycles in prices.values() for amount in cycles.values())

    def price_for(self, plan: str, currency: str, billing_cycle: str) -> Decimal:
        try:
            return Decimal(str(self._plans[plan]["prices"][currency][billing_cycle]))
        except KeyError:
            raise UnknownPlanError(f"No price for {plan}/{currency}/{billing_cycle}") from None

    def describe(self) -> list[dict]:
        """Plan table for the pricing endpoint."""
        return [
            {
                "id": plan_id,
                "name": plan["name"],
                "prices": plan.get("prices", {}),
                "features": plan.get("features", []),
                "limits": plan["limits"],
            }
            for plan_id, plan in self._plans.items()
        ]
