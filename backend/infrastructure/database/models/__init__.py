"""
SQLAlchemy database models.
"""

from .base import Base, TimestampMixin
from .offer import Offer, OfferOrder, OfferRedemption
from .subscription import Subscription, SubscriptionInvoice
from .usage import UsageRecord
from .user import User

__all__ = [
    "Base",
    "TimestampMixin",
    "Offer",
    "OfferOrder",
    "OfferRedemption",
    "Subscription",
    "SubscriptionInvoice",
    "UsageRecord",
    "User",
]
