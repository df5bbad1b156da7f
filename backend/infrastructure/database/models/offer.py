"""
Offer (coupon) and redemption database models.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from core.domain.offer import ALL_PLANS

from .base import Base, TimestampMixin


class Offer(Base, TimestampMixin):
    """A time- and usage-bounded discount rule, keyed by upper-case code."""

    __tablename__ = "offers"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    discount_type: Mapped[str] = mapped_column(String(20), nullable=False)
    discount_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    max_discount_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    min_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    applicable_plans: Mapped[list] = mapped_column(
        JSON, default=lambda: [ALL_PLANS], nullable=False
    )

    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # NULL means unlimited
    usage_limit: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    used_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    per_user_limit: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("discount_value >= 0", name="ck_offers_discount_non_negative"),
        CheckConstraint(
            "usage_limit IS NULL OR used_count <= usage_limit",
            name="ck_offers_used_within_limit",
        ),
    )

    def __repr__(self) -> str:
        return f"<Offer(code={self.code}, type={self.discount_type}, used={self.used_count})>"


class OfferRedemption(Base):
    """How many times one user has redeemed one offer."""

    __tablename__ = "offer_redemptions"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    offer_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("offers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    usage_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    used_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    payment_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    __table_args__ = (
        UniqueConstraint("offer_id", "user_id", name="uq_offer_redemptions_offer_user"),
    )

    def __repr__(self) -> str:
        return f"<OfferRedemption(offer_id={self.offer_id}, user_id={self.user_id}, count={self.usage_count})>"


class OfferOrder(Base):
    """A completed order that redeemed an offer; one row per processor payment."""

    __tablename__ = "offer_orders"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    offer_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("offers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    payment_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    redeemed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<OfferOrder(offer_id={self.offer_id}, payment_id={self.payment_id})>"
