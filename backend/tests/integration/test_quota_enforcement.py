"""
Integration tests for quota decisions against stored plans, subscriptions and usage.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from core.domain.usage import UsageKind
from core.plans import PLANS, PlanCatalog
from infrastructure.database.models import Subscription
from services.quota_guard import DenyReason, QuotaGuard
from services.usage_tracker import UsageTracker

pytestmark = pytest.mark.asyncio


@pytest.fixture
def small_catalog() -> PlanCatalog:
    """Catalog with a starter limit small enough to exhaust in a test."""
    plans = {name: dict(plan) for name, plan in PLANS.items()}
    plans["starter"]["limits"] = {"posts_per_month": 10, "comments_per_month": 10}
    return PlanCatalog(plans=plans)


@pytest.fixture
def tracker(session_factory, clock) -> UsageTracker:
    return UsageTracker(session_factory, clock=clock)


@pytest.fixture
def guard(session_factory, tracker, small_catalog, clock) -> QuotaGuard:
    return QuotaGuard(session_factory, tracker, small_catalog, clock=clock)


async def _add_subscription(session_factory, user, clock, status="active", days_left=30):
    subscription = Subscription(
        external_subscription_id=f"sub_{user.id[:8]}_{status}",
        user_id=user.id,
        plan=user.plan,
        status=status,
        currency="INR",
        amount=Decimal("299.00"),
        billing_cycle="monthly",
        start_date=clock() - timedelta(days=30 - days_left),
        end_date=clock() + timedelta(days=days_left),
        invoices=[],
    )
    async with session_factory() as session:
        session.add(subscription)
        await session.commit()
    return subscription


class TestQuotaScenario:
    async def test_eleventh_post_denied_on_starter(self, guard, tracker, make_user):
        user = await make_user(plan="starter")

        for _ in range(10):
            decision = await guard.authorize(user.id, UsageKind.POST)
            assert decision.allowed is True
            await tracker.increment(user.id, UsageKind.POST, tokens=100)

        decision = await guard.authorize(user.id, UsageKind.POST)

        assert decision.allowed is False
        assert decision.reason is DenyReason.QUOTA_EXCEEDED
        assert decision.current == 10
        assert decision.limit == 10
        assert decision.remaining == 0

    async def test_comments_unaffected_by_post_quota(self, guard, tracker, make_user):
        user = await make_user(plan="starter")
        for _ in range(10):
            await tracker.increment(user.id, UsageKind.POST)

        decision = await guard.authorize(user.id, UsageKind.COMMENT)

        assert decision.allowed is True
        assert decision.remaining == 10

    async def test_unknown_user(self, guard):
        decision = await guard.authorize("no-such-user", UsageKind.POST)

        assert decision.allowed is False
        assert decision.reason is DenyReason.USER_NOT_FOUND


class TestEffectivePlan:
    async def test_stored_plan_applies(self, guard, make_user):
        user = await make_user(plan="pro")

        assert await guard.effective_plan(user.id) == "pro"

    async def test_unknown_stored_plan_uses_default(self, guard, make_user):
        user = await make_user(plan="enterprise")

        assert await guard.effective_plan(user.id) == "free"

    async def test_paused_entitlement_uses_default(self, guard, make_user):
        user = await make_user(plan="pro", entitlement_paused=True)

        assert await guard.effective_plan(user.id) == "free"

    async def test_expired_subscription_uses_default(self, guard, make_user, session_factory, clock):
        user = await make_user(plan="starter")
        await _add_subscription(session_factory, user, clock, days_left=-1)

        assert await guard.effective_plan(user.id) == "free"

    async def test_current_subscription_keeps_plan(self, guard, make_user, session_factory, clock):
        user = await make_user(plan="starter")
        await _add_subscription(session_factory, user, clock, days_left=10)

        assert await guard.effective_plan(user.id) == "starter"

    async def test_expired_user_limited_to_default_quota(self, guard, tracker, make_user, session_factory, clock):
        user = await make_user(plan="starter")
        await _add_subscription(session_factory, user, clock, days_left=-1)
        for _ in range(5):
            await tracker.increment(user.id, UsageKind.POST)

        decision = await guard.authorize(user.id, UsageKind.POST)

        assert decision.allowed is False
        assert decision.plan == "free"
        assert decision.limit == 5
