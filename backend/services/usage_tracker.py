"""
Usage tracking service.

Keeps per-user, per-month generation counters. Every write is a single
INSERT ... ON CONFLICT statement, so concurrent requests from the same
user never lose an increment and first-touch creation never races.
"""

import logging
from typing import Iterable, Optional
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.clock import Clock, utcnow
from core.domain.billing_period import BillingPeriod
from core.domain.usage import QuotaStatus, UsageKind, UsageStats
from core.plans import PlanLimits
from infrastructure.database.models.usage import UsageRecord
from infrastructure.database.models.user import User
from infrastructure.database.upsert import insert_for

logger = logging.getLogger(__name__)

_COUNTERS = ("posts_generated", "comments_generated", "total_tokens_used")


class UsageTracker:
    """Reads and increments usage records."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utcnow,
    ):
        self._session_factory = session_factory
        self._clock = clock

    def current_period(self) -> BillingPeriod:
        return BillingPeriod.containing(self._clock())

    @staticmethod
    def _zero_row(user_id: str, period: BillingPeriod) -> dict:
        return {
            "id": str(uuid4()),
            "user_id": user_id,
            "period": period.key,
            "posts_generated": 0,
            "comments_generated": 0,
            "total_tokens_used": 0,
        }

    async def _ensure(self, session: AsyncSession, user_id: str, period: BillingPeriod) -> int:
        stmt = insert_for(session, UsageRecord).values(**self._zero_row(user_id, period))
        stmt = stmt.on_conflict_do_nothing(index_elements=["user_id", "period"])
        result = await session.execute(stmt)
        return result.rowcount or 0

    @staticmethod
    async def _fetch(session: AsyncSession, user_id: str, period: BillingPeriod) -> Optional[UsageRecord]:
        return await session.scalar(
            select(UsageRecord)
            .where(UsageRecord.user_id == user_id, UsageRecord.period == period.key)
            .execution_options(populate_existing=True)
        )

    async def get_or_create(self, user_id: str, period: Optional[BillingPeriod] = None) -> UsageRecord:
        """Return the user's record for ``period`` (default: current), creating a zeroed one."""
        period = period or self.current_period()
        async with self._session_factory() as session:
            await self._ensure(session, user_id, period)
            record = await self._fetch(session, user_id, period)
            await session.commit()
            return record

    async def increment(self, user_id: str, kind: UsageKind, tokens: int = 0) -> UsageRecord:
        """
        Count one generation of ``kind`` and its tokens in the current period.

        Args:
            user_id: User who generated the content
            kind: Post or comment
            tokens: Tokens consumed by the generation

        Returns:
            The updated record
        """
        if tokens < 0:
            raise ValueError("tokens must be non-negative")
        kind = UsageKind(kind)
        period = self.current_period()

        async with self._session_factory() as session:
            row = self._zero_row(user_id, period)
            row[kind.counter] = 1
            row["total_tokens_used"] = int(tokens)

            stmt = insert_for(session, UsageRecord).values(**row)
            stmt = stmt.on_conflict_do_update(
                index_elements=["user_id", "period"],
                set_={
                    **{
                        name: getattr(UsageRecord, name) + stmt.excluded[name]
                        for name in _COUNTERS
                    },
                    "updated_at": func.now(),
                },
            )
            await session.execute(stmt)
            record = await self._fetch(session, user_id, period)
            await session.commit()

        logger.info(
            "Usage incremented: user=%s period=%s kind=%s tokens=%d",
            user_id, period.key, kind.value, tokens,
            extra={"user_id": user_id},
        )
        return record

    async def check_quota(self, user_id: str, kind: UsageKind, limit: int) -> QuotaStatus:
        """Compare the current-period counter for ``kind`` with ``limit``. Read-only."""
        kind = UsageKind(kind)
        period = self.current_period()
        async with self._session_factory() as session:
            current = await session.scalar(
                select(getattr(UsageRecord, kind.counter)).where(
                    UsageRecord.user_id == user_id,
                    UsageRecord.period == period.key,
                )
            )
        return QuotaStatus.evaluate(int(current or 0), int(limit))

    async def history(self, user_id: str, max_periods: int = 12) -> list[UsageRecord]:
        """Most recent periods first, at most ``max_periods`` records."""
        if max_periods <= 0:
            return []
        async with self._session_factory() as session:
            result = await session.scalars(
                select(UsageRecord)
                .where(UsageRecord.user_id == user_id)
                .order_by(UsageRecord.period.desc())
                .limit(max_periods)
            )
            return list(result.all())

    async def stats(self, user_id: str, limits: PlanLimits, plan: str = "") -> UsageStats:
        """Current usage with limits, remaining allowance and growth over the previous period."""
        period = self.current_period()
        async with self._session_factory() as session:
            await self._ensure(session, user_id, period)
            current = await self._fetch(session, user_id, period)
            previous = await self._fetch(session, user_id, period.previous())
            await session.commit()

        return UsageStats(
            period=period,
            plan=plan,
            posts_generated=current.posts_generated,
            comments_generated=current.comments_generated,
            total_tokens_used=current.total_tokens_used,
            posts_limit=limits.posts_per_month,
            comments_limit=limits.comments_per_month,
            previous_posts=previous.posts_generated if previous else 0,
            previous_comments=previous.comments_generated if previous else 0,
        )

    async def ensure_period_records(self, user_ids: Optional[Iterable[str]] = None) -> int:
        """
        Make sure every user (or each of ``user_ids``) has a current-period record.

        Idempotent; safe to run from a scheduler at any frequency.

        Returns:
            Number of records created by this call
        """
        period = self.current_period()
        created = 0
        async with self._session_factory() as session:
            if user_ids is None:
                user_ids = (await session.scalars(select(User.id))).all()
            for user_id in user_ids:
                created += await self._ensure(session, user_id, period)
            await session.commit()

        logger.info("Ensured usage records for %s: %d created", period.key, created)
        return created
