"""
Integration tests for SubscriptionLifecycle.

The payment processor is a fake that records calls; the store is a real
SQLite database.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from adapters.payments.razorpay_adapter import RazorpayAPIError
from core.domain.subscription import (
    ChargedInvoice,
    LifecycleRejection,
    SubscriptionStatus,
    WebhookOutcome,
)
from infrastructure.database.models import Subscription, User

pytestmark = pytest.mark.asyncio


async def _active_count(session_factory, user_id: str) -> int:
    async with session_factory() as session:
        return await session.scalar(
            select(func.count())
            .select_from(Subscription)
            .where(Subscription.user_id == user_id, Subscription.status == "active")
        )


async def _load_user(session_factory, user_id: str) -> User:
    async with session_factory() as session:
        return await session.get(User, user_id)


async def _load_subscription(session_factory, external_id: str) -> Subscription:
    async with session_factory() as session:
        return await session.scalar(
            select(Subscription).where(Subscription.external_subscription_id == external_id)
        )


class TestCreate:
    async def test_create_stores_active_subscription(
        self, services, test_user, payment_processor, session_factory, clock
    ):
        result = await services.subscriptions.create(test_user.id, "starter", "INR", "monthly")

        assert result.ok
        subscription = result.subscription
        assert subscription.external_subscription_id == payment_processor.created[0]
        assert subscription.status == "active"
        assert subscription.amount == Decimal("299")
        assert subscription.start_date == clock()
        assert subscription.end_date == clock() + timedelta(days=30)
        assert subscription.next_billing_date == subscription.end_date

        user = await _load_user(session_factory, test_user.id)
        assert user.plan == "starter"

    async def test_yearly_term(self, services, test_user, clock):
        result = await services.subscriptions.create(test_user.id, "pro", "USD", "yearly")

        assert result.subscription.end_date == clock() + timedelta(days=365)
        assert result.subscription.amount == Decimal("159")

    async def test_second_create_conflicts(self, services, test_user, payment_processor):
        await services.subscriptions.create(test_user.id, "starter", "INR", "monthly")

        result = await services.subscriptions.create(test_user.id, "pro", "INR", "monthly")

        assert result.rejection is LifecycleRejection.CONFLICT
        assert len(payment_processor.created) == 1

    async def test_concurrent_creates_leave_one_active(
        self, services, test_user, payment_processor, session_factory
    ):
        results = await asyncio.gather(
            services.subscriptions.create(test_user.id, "starter", "INR", "monthly"),
            services.subscriptions.create(test_user.id, "starter", "INR", "monthly"),
        )

        assert sum(1 for r in results if r.ok) == 1
        assert [r.rejection for r in results if not r.ok] == [LifecycleRejection.CONFLICT]
        assert await _active_count(session_factory, test_user.id) == 1
        # A remote subscription created by the losing request is cancelled again
        assert len(payment_processor.created) - len(payment_processor.cancelled) == 1

    @pytest.mark.parametrize(
        "plan,currency,cycle",
        [
            ("free", "INR", "monthly"),
            ("enterprise", "INR", "monthly"),
            ("starter", "EUR", "monthly"),
            ("starter", "INR", "weekly"),
        ],
    )
    async def test_unknown_plan_rejected(self, services, test_user, payment_processor, plan, currency, cycle):
        result = await services.subscriptions.create(test_user.id, plan, currency, cycle)

        assert result.rejection is LifecycleRejection.UNKNOWN_PLAN
        assert payment_processor.created == []

    async def test_unknown_user_rejected(self, services, payment_processor):
        result = await services.subscriptions.create("missing-user", "starter", "INR", "monthly")

        assert result.rejection is LifecycleRejection.USER_NOT_FOUND
        assert payment_processor.created == []

    async def test_processor_failure_stores_nothing(
        self, services, test_user, payment_processor, session_factory
    ):
        payment_processor.fail_create = RazorpayAPIError("gateway timeout")

        with pytest.raises(RazorpayAPIError):
            await services.subscriptions.create(test_user.id, "starter", "INR", "monthly")

        assert await _active_count(session_factory, test_user.id) == 0
        user = await _load_user(session_factory, test_user.id)
        assert user.plan == "free"


class TestCancel:
    async def test_cancel_downgrades_to_default(
        self, services, test_user, payment_processor, session_factory, clock
    ):
        created = await services.subscriptions.create(test_user.id, "pro", "INR", "monthly")

        result = await services.subscriptions.cancel(test_user.id)

        assert result.ok
        assert result.subscription.status == "cancelled"
        assert result.subscription.cancelled_at == clock()
        assert payment_processor.cancelled == [created.subscription.external_subscription_id]
        user = await _load_user(session_factory, test_user.id)
        assert user.plan == "free"

    async def test_cancel_without_subscription(self, services, test_user, payment_processor):
        result = await services.subscriptions.cancel(test_user.id)

        assert result.rejection is LifecycleRejection.NO_ACTIVE_SUBSCRIPTION
        assert payment_processor.cancelled == []

    async def test_remote_failure_keeps_subscription_active(
        self, services, test_user, payment_processor, session_factory
    ):
        created = await services.subscriptions.create(test_user.id, "starter", "INR", "monthly")
        payment_processor.fail_cancel = RazorpayAPIError("processor unavailable")

        with pytest.raises(RazorpayAPIError):
            await services.subscriptions.cancel(test_user.id)

        stored = await _load_subscription(
            session_factory, created.subscription.external_subscription_id
        )
        assert stored.status == "active"
        user = await _load_user(session_factory, test_user.id)
        assert user.plan == "starter"


class TestUpgrade:
    async def test_upgrade_replaces_subscription(
        self, services, test_user, payment_processor, session_factory
    ):
        old = await services.subscriptions.create(test_user.id, "starter", "INR", "monthly")

        result = await services.subscriptions.upgrade(test_user.id, "pro", "INR", "yearly")

        assert result.ok
        assert result.subscription.plan == "pro"
        assert payment_processor.cancelled == [old.subscription.external_subscription_id]
        assert await _active_count(session_factory, test_user.id) == 1
        user = await _load_user(session_factory, test_user.id)
        assert user.plan == "pro"

    async def test_upgrade_without_subscription(self, services, test_user):
        result = await services.subscriptions.upgrade(test_user.id, "pro", "INR", "monthly")

        assert result.rejection is LifecycleRejection.NO_ACTIVE_SUBSCRIPTION

    async def test_upgrade_to_free_rejected(self, services, test_user, payment_processor):
        await services.subscriptions.create(test_user.id, "starter", "INR", "monthly")

        result = await services.subscriptions.upgrade(test_user.id, "free", "INR", "monthly")

        assert result.rejection is LifecycleRejection.UNKNOWN_PLAN
        assert payment_processor.cancelled == []

    async def test_create_failure_after_cancel_leaves_no_subscription(
        self, services, test_user, payment_processor, session_factory
    ):
        await services.subscriptions.create(test_user.id, "starter", "INR", "monthly")
        payment_processor.fail_create = RazorpayAPIError("create failed")

        with pytest.raises(RazorpayAPIError):
            await services.subscriptions.upgrade(test_user.id, "pro", "INR", "monthly")

        assert await _active_count(session_factory, test_user.id) == 0
        user = await _load_user(session_factory, test_user.id)
        assert user.plan == "free"


class TestProcessorEvents:
    async def _subscribe(self, services, user, plan="starter"):
        result = await services.subscriptions.create(user.id, plan, "INR", "monthly")
        return result.subscription.external_subscription_id

    async def test_charge_extends_subscription(self, services, test_user, session_factory, clock):
        external_id = await self._subscribe(services, test_user)
        period_end = clock() + timedelta(days=60)

        outcome = await services.subscriptions.on_webhook_charged(
            external_id,
            ChargedInvoice(external_invoice_id="inv_1", amount=Decimal("299.00"), period_end=period_end),
        )

        assert outcome is WebhookOutcome.APPLIED
        stored = await _load_subscription(session_factory, external_id)
        assert len(stored.invoices) == 1
        assert stored.invoices[0].external_invoice_id == "inv_1"
        assert services.subscriptions.effective_status(stored) is SubscriptionStatus.ACTIVE
        clock.advance(days=45)
        assert services.subscriptions.effective_status(stored) is SubscriptionStatus.ACTIVE

    async def test_replayed_charge_is_noop(self, services, test_user, session_factory, clock):
        external_id = await self._subscribe(services, test_user)
        invoice = ChargedInvoice(
            external_invoice_id="inv_1",
            amount=Decimal("299.00"),
            period_end=clock() + timedelta(days=30),
        )

        first = await services.subscriptions.on_webhook_charged(external_id, invoice)
        second = await services.subscriptions.on_webhook_charged(external_id, invoice)

        assert first is WebhookOutcome.APPLIED
        assert second is WebhookOutcome.DUPLICATE
        stored = await _load_subscription(session_factory, external_id)
        assert len(stored.invoices) == 1

    async def test_concurrent_replays_record_one_invoice(self, services, test_user, session_factory, clock):
        external_id = await self._subscribe(services, test_user)
        invoice = ChargedInvoice(
            external_invoice_id="inv_race",
            amount=Decimal("299.00"),
            period_end=clock() + timedelta(days=30),
        )

        outcomes = await asyncio.gather(
            *[services.subscriptions.on_webhook_charged(external_id, invoice) for _ in range(3)]
        )

        assert outcomes.count(WebhookOutcome.APPLIED) == 1
        assert outcomes.count(WebhookOutcome.DUPLICATE) == 2
        stored = await _load_subscription(session_factory, external_id)
        assert len(stored.invoices) == 1

    async def test_charge_for_unknown_subscription(self, services):
        outcome = await services.subscriptions.on_webhook_charged(
            "sub_unknown",
            ChargedInvoice(
                external_invoice_id="inv_1",
                amount=Decimal("1.00"),
                period_end=services.clock() + timedelta(days=30),
            ),
        )

        assert outcome is WebhookOutcome.UNKNOWN_SUBSCRIPTION

    async def test_pause_then_charge_restores_entitlement(self, services, test_user, session_factory, clock):
        external_id = await self._subscribe(services, test_user, plan="pro")

        assert await services.subscriptions.on_webhook_paused(external_id) is WebhookOutcome.APPLIED
        assert await services.quota_guard.effective_plan(test_user.id) == "free"
        assert await services.subscriptions.on_webhook_paused(external_id) is WebhookOutcome.DUPLICATE

        outcome = await services.subscriptions.on_webhook_charged(
            external_id,
            ChargedInvoice(
                external_invoice_id="inv_2",
                amount=Decimal("799.00"),
                period_end=clock() + timedelta(days=30),
            ),
        )

        assert outcome is WebhookOutcome.APPLIED
        stored = await _load_subscription(session_factory, external_id)
        assert stored.status == "active"
        assert stored.paused_at is None
        assert await services.quota_guard.effective_plan(test_user.id) == "pro"

    async def test_cancel_event_is_idempotent(self, services, test_user, session_factory):
        external_id = await self._subscribe(services, test_user)

        first = await services.subscriptions.on_webhook_cancelled(external_id)
        second = await services.subscriptions.on_webhook_cancelled(external_id)

        assert first is WebhookOutcome.APPLIED
        assert second is WebhookOutcome.DUPLICATE
        user = await _load_user(session_factory, test_user.id)
        assert user.plan == "free"

    async def test_pause_after_cancel_ignored(self, services, test_user):
        external_id = await self._subscribe(services, test_user)
        await services.subscriptions.on_webhook_cancelled(external_id)

        assert await services.subscriptions.on_webhook_paused(external_id) is WebhookOutcome.IGNORED

    async def test_charge_on_old_subscription_keeps_newer_active(
        self, services, test_user, session_factory, clock
    ):
        old_id = await self._subscribe(services, test_user)
        await services.subscriptions.upgrade(test_user.id, "pro", "INR", "monthly")

        outcome = await services.subscriptions.on_webhook_charged(
            old_id,
            ChargedInvoice(
                external_invoice_id="inv_late",
                amount=Decimal("299.00"),
                period_end=clock() + timedelta(days=30),
            ),
        )

        assert outcome is WebhookOutcome.APPLIED
        old = await _load_subscription(session_factory, old_id)
        assert old.status == "cancelled"
        assert await _active_count(session_factory, test_user.id) == 1
        user = await _load_user(session_factory, test_user.id)
        assert user.plan == "pro"
