"""
Subscription and invoice database models.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.clock import as_utc
from core.domain.subscription import SubscriptionStatus, effective_status

from .base import Base, TimestampMixin


class Subscription(Base, TimestampMixin):
    """A user's paid subscription, keyed by the processor's subscription id.

    Rows are never deleted. At most one row per user may be ``active``;
    the partial unique index enforces it under concurrent creates.
    """

    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    external_subscription_id: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
    )
    external_plan_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    plan: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=SubscriptionStatus.ACTIVE.value,
        nullable=False,
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    billing_cycle: Mapped[str] = mapped_column(String(20), nullable=False)

    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    next_billing_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    paused_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    invoices: Mapped[list["SubscriptionInvoice"]] = relationship(
        back_populates="subscription",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="SubscriptionInvoice.position",
    )

    __table_args__ = (
        Index(
            "uq_subscriptions_one_active_per_user",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    def effective_status(self, now: datetime) -> SubscriptionStatus:
        return effective_status(self.status, as_utc(self.end_date), now)

    def has_invoice(self, external_invoice_id: str) -> bool:
        return any(inv.external_invoice_id == external_invoice_id for inv in self.invoices)

    def __repr__(self) -> str:
        return (
            f"<Subscription(external_id={self.external_subscription_id}, "
            f"user_id={self.user_id}, plan={self.plan}, status={self.status})>"
        )


class SubscriptionInvoice(Base):
    """One charge against a subscription, in the order it was received."""

    __tablename__ = "subscription_invoices"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    subscription_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    external_invoice_id: Mapped[str] = mapped_column(String(150), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="paid", nullable=False)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    period_end: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    subscription: Mapped[Subscription] = relationship(back_populates="invoices")

    __table_args__ = (
        UniqueConstraint(
            "subscription_id",
            "external_invoice_id",
            name="uq_subscription_invoices_external_id",
        ),
    )

    def __repr__(self) -> str:
        return f"<SubscriptionInvoice(external_id={self.external_invoice_id}, amount={self.amount})>"
