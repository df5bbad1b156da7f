"""
Quota guard.

Decides whether a user may start a metered generation. It never calls
the AI provider and never increments usage; the caller does both, in
that order, and only increments after the provider delivered.

Two concurrent requests can both be allowed before either increments,
so a user may overshoot a quota by the number of requests in flight.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.clock import Clock, as_utc, utcnow
from core.domain.subscription import SubscriptionStatus
from core.domain.usage import QuotaStatus, UsageKind
from core.plans import PlanCatalog
from infrastructure.database.models.subscription import Subscription
from infrastructure.database.models.user import User
from services.usage_tracker import UsageTracker

logger = logging.getLogger(__name__)


class DenyReason(str, Enum):
    QUOTA_EXCEEDED = "quota_exceeded"
    USER_NOT_FOUND = "user_not_found"
    STORE_UNAVAILABLE = "store_unavailable"


@dataclass(frozen=True)
class QuotaDecision:
    """Allow, or deny with a reason. Carries the quota snapshot when one was read."""

    allowed: bool
    kind: UsageKind
    plan: Optional[str] = None
    reason: Optional[DenyReason] = None
    quota: Optional[QuotaStatus] = None

    @property
    def current(self) -> Optional[int]:
        return self.quota.current if self.quota else None

    @property
    def remaining(self) -> int:
        return self.quota.remaining if self.quota else 0

    @property
    def limit(self) -> Optional[int]:
        return self.quota.limit if self.quota else None


class QuotaGuard:
    """Gates generation requests on plan limits and current usage."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        usage_tracker: UsageTracker,
        plan_catalog: PlanCatalog,
        clock: Clock = utcnow,
    ):
        self._session_factory = session_factory
        self._usage = usage_tracker
        self._catalog = plan_catalog
        self._clock = clock

    async def effective_plan(self, user_id: str) -> Optional[str]:
        """
        Plan whose limits apply to the user right now.

        Paused entitlement and an active subscription past its end date
        both fall back to the default tier; the stored plan is untouched.

        Returns:
            Plan name, or None when the user does not exist
        """
        async with self._session_factory() as session:
            user = await session.get(User, user_id)
            if user is None:
                return None
            if user.entitlement_paused:
                return self._catalog.default_plan

            active = await session.scalar(
                select(Subscription).where(
                    Subscription.user_id == user_id,
                    Subscription.status == SubscriptionStatus.ACTIVE.value,
                )
            )
            if active is not None and as_utc(active.end_date) < self._clock():
                return self._catalog.default_plan
            return self._catalog.resolve(user.plan)

    async def authorize(self, user_id: str, kind: UsageKind) -> QuotaDecision:
        """
        Decide whether ``user_id`` may generate one more ``kind``.

        Store failures deny with STORE_UNAVAILABLE rather than allowing
        unmetered usage.
        """
        kind = UsageKind(kind)
        try:
            plan = await self.effective_plan(user_id)
            if plan is None:
                logger.warning("Quota check for unknown user %s", user_id)
                return QuotaDecision(allowed=False, kind=kind, reason=DenyReason.USER_NOT_FOUND)

            limit = self._catalog.limits_for(plan).for_kind(kind)
            quota = await self._usage.check_quota(user_id, kind, limit)
        except (SQLAlchemyError, OSError) as e:
            logger.error(
                "Usage store unavailable during quota check for user %s: %s",
                user_id, e,
                extra={"user_id": user_id},
            )
            return QuotaDecision(allowed=False, kind=kind, reason=DenyReason.STORE_UNAVAILABLE)

        if quota.exceeded:
            logger.info(
                "Quota exceeded: user=%s plan=%s kind=%s current=%d limit=%d",
                user_id, plan, kind.value, quota.current, quota.limit,
                extra={"user_id": user_id},
            )
            return QuotaDecision(
                allowed=False,
                kind=kind,
                plan=plan,
                reason=DenyReason.QUOTA_EXCEEDED,
                quota=quota,
            )

        return QuotaDecision(allowed=True, kind=kind, plan=plan, quota=quota)
