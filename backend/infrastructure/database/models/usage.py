"""
Per-user, per-month usage counters.
"""

from uuid import uuid4

from sqlalchemy import CheckConstraint, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from core.domain.billing_period import BillingPeriod

from .base import Base, TimestampMixin


class UsageRecord(Base, TimestampMixin):
    """Generation counters for one user in one billing period.

    Rows are created lazily, never deleted, and only ever incremented.
    """

    __tablename__ = "usage_records"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # "YYYY-MM"
    period: Mapped[str] = mapped_column(String(7), nullable=False)

    posts_generated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    comments_generated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_tokens_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "period", name="uq_usage_records_user_period"),
        CheckConstraint("posts_generated >= 0", name="ck_usage_records_posts_non_negative"),
        CheckConstraint("comments_generated >= 0", name="ck_usage_records_comments_non_negative"),
        CheckConstraint("total_tokens_used >= 0", name="ck_usage_records_tokens_non_negative"),
    )

    @property
    def billing_period(self) -> BillingPeriod:
        return BillingPeriod.from_key(self.period)

    def __repr__(self) -> str:
        return (
            f"<UsageRecord(user_id={self.user_id}, period={self.period}, "
            f"posts={self.posts_generated}, comments={self.comments_generated})>"
        )
