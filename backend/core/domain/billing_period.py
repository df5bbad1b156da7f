"""Billing period value type."""
import re
from dataclasses import dataclass
from datetime import datetime

_KEY_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")


@dataclass(frozen=True, order=True)
class BillingPeriod:
    """A calendar month used as the key for usage accounting.

    Ordering follows (year, month), so ``max()`` and sorting behave
    chronologically. The storage form is the ``"YYYY-MM"`` key.
    """

    year: int
    month: int

    def __post_init__(self):
        if not 1 <= self.month <= 12:
            raise ValueError(f"month must be in 1..12, got {self.month}")
        if not 1 <= self.year <= 9999:
            raise ValueError(f"year must be in 1..9999, got {self.year}")

    @classmethod
    def containing(cls, moment: datetime) -> "BillingPeriod":
        """Period that contains ``moment``."""
        return cls(moment.year, moment.month)

    @classmethod
    def from_key(cls, key: str) -> "BillingPeriod":
        """Parse a ``"YYYY-MM"`` key."""
        match = _KEY_PATTERN.match(key or "")
        if not match:
            raise ValueError(f"Invalid billing period key: {key!r}")
        return cls(int(match.group(1)), int(match.group(2)))

    @property
    def key(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    def previous(self) -> "BillingPeriod":
        if self.month == 1:
            return BillingPeriod(self.year - 1, 12)
        return BillingPeriod(self.year, self.month - 1)

    def next(self) -> "BillingPeriod":
        if self.month == 12:
            return BillingPeriod(self.year + 1, 1)
        return BillingPeriod(self.year, self.month + 1)

    def __str__(self) -> str:
        return self.key
