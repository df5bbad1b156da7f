"""Usage metering domain values."""
import math
from dataclasses import dataclass, field
from enum import Enum
from fractions import Fraction

from .billing_period import BillingPeriod


class UsageKind(str, Enum):
    """Metered generation actions."""
    POST = "post"
    COMMENT = "comment"

    @property
    def counter(self) -> str:
        """Name of the usage record counter this kind increments."""
        return "posts_generated" if self is UsageKind.POST else "comments_generated"


@dataclass(frozen=True)
class QuotaStatus:
    """Result of comparing a usage counter with its limit."""

    exceeded: bool
    current: int
    limit: int
    remaining: int

    @classmethod
    def evaluate(cls, current: int, limit: int) -> "QuotaStatus":
        return cls(
            exceeded=current >= limit,
            current=current,
            limit=limit,
            remaining=max(0, limit - current),
        )

    def to_dict(self) -> dict:
        return {
            "exceeded": self.exceeded,
            "current": self.current,
            "limit": self.limit,
            "remaining": self.remaining,
        }


def growth_percent(current: int, previous: int) -> int:
    """Period-over-period growth, rounded half up.

    The denominator is floored at 1 so a zero previous period does not
    divide by zero.
    """
    ratio = Fraction(100 * (current - previous), max(previous, 1))
    return math.floor(ratio + Fraction(1, 2))


@dataclass
class UsageStats:
    """Current-period usage alongside plan limits and growth."""

    period: BillingPeriod
    plan: str
    posts_generated: int
    comments_generated: int
    total_tokens_used: int
    posts_limit: int
    comments_limit: int
    previous_posts: int = 0
    previous_comments: int = 0
    growth: dict[str, int] = field(default_factory=dict)

    def __post_init__(self):
        if not self.growth:
            self.growth = {
                "posts": growth_percent(self.posts_generated, self.previous_posts),
                "comments": growth_percent(self.comments_generated, self.previous_comments),
            }

    @property
    def remaining(self) -> dict[str, int]:
        return {
            "posts": max(0, self.posts_limit - self.posts_generated),
            "comments": max(0, self.comments_limit - self.comments_generated),
        }
