"""
Subscription lifecycle service.

State machine over a user's subscription: none -> active -> paused /
cancelled. ``expired`` is never stored; it is derived at read time from
an active subscription whose end date has passed.

Local state follows the payment processor: a subscription is stored as
active only after the processor created it, and stored as cancelled only
after the processor confirmed the cancellation. Webhook handlers are
idempotent because the processor delivers at least once.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.clock import Clock, as_utc, utcnow
from core.domain.subscription import (
    BillingCycle,
    ChargedInvoice,
    Currency,
    LifecycleRejection,
    LifecycleResult,
    SubscriptionStatus,
    WebhookOutcome,
)
from core.interfaces.services import PaymentProcessor, PaymentProcessorError
from core.plans import PlanCatalog, UnknownPlanError
from infrastructure.database.models.subscription import Subscription, SubscriptionInvoice
from infrastructure.database.models.user import User

logger = logging.getLogger(__name__)

ACTIVE = SubscriptionStatus.ACTIVE.value
PAUSED = SubscriptionStatus.PAUSED.value
CANCELLED = SubscriptionStatus.CANCELLED.value


class SubscriptionLifecycle:
    """Creates, cancels and upgrades subscriptions and applies processor events."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        payment_processor: PaymentProcessor,
        plan_catalog: PlanCatalog,
        clock: Clock = utcnow,
    ):
        self._session_factory = session_factory
        self._processor = payment_processor
        self._catalog = plan_catalog
        self._clock = clock

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    async def _active_for(
        session: AsyncSession,
        user_id: str,
        exclude_id: Optional[str] = None,
    ) -> Optional[Subscription]:
        stmt = select(Subscription).where(
            Subscription.user_id == user_id,
            Subscription.status == ACTIVE,
        )
        if exclude_id is not None:
            stmt = stmt.where(Subscription.id != exclude_id)
        return await session.scalar(stmt)

    @staticmethod
    async def _by_external_id(session: AsyncSession, external_id: str) -> Optional[Subscription]:
        return await session.scalar(
            select(Subscription).where(Subscription.external_subscription_id == external_id)
        )

    async def current(self, user_id: str) -> Optional[Subscription]:
        """The user's active subscription, else the most recently started one."""
        async with self._session_factory() as session:
            active = await self._active_for(session, user_id)
            if active is not None:
                return active
            return await session.scalar(
                select(Subscription)
                .where(Subscription.user_id == user_id)
                .order_by(Subscription.start_date.desc())
                .limit(1)
            )

    def effective_status(self, subscription: Subscription) -> SubscriptionStatus:
        return subscription.effective_status(self._clock())

    # ------------------------------------------------------------------
    # User-initiated transitions
    # ------------------------------------------------------------------

    async def _compensate(self, external_id: str) -> None:
        """Cancel a remote subscription that could not be stored locally."""
        try:
            await self._processor.cancel_subscription(external_id)
            logger.warning("Cancelled orphaned remote subscription %s", external_id)
        except PaymentProcessorError as e:
            logger.error(
                "Remote subscription %s is active but not stored locally; cancel failed: %s",
                external_id, e,
                extra={"subscription_id": external_id},
            )

    async def create(
        self,
        user_id: str,
        plan: str,
        currency: str,
        billing_cycle: str,
    ) -> LifecycleResult:
        """
        Start a paid subscription.

        Returns:
            Success with the stored subscription, or a rejection: CONFLICT when
            the user already has an active subscription (including a concurrent
            create that won the race), UNKNOWN_PLAN, USER_NOT_FOUND

        Raises:
            PaymentProcessorError: The processor refused to create the subscription
        """
        try:
            currency = Currency(currency)
            cycle = BillingCycle(billing_cycle)
            if not self._catalog.is_paid(plan):
                raise UnknownPlanError(plan)
            amount = self._catalog.price_for(plan, currency.value, cycle.value)
        except (ValueError, UnknownPlanError):
            return LifecycleResult.rejected(LifecycleRejection.UNKNOWN_PLAN)

        async with self._session_factory() as session:
            if await session.get(User, user_id) is None:
                return LifecycleResult.rejected(LifecycleRejection.USER_NOT_FOUND)
            if await self._active_for(session, user_id) is not None:
                return LifecycleResult.rejected(LifecycleRejection.CONFLICT)

        remote = await self._processor.create_subscription(
            user_id=user_id,
            plan=plan,
            currency=currency.value,
            billing_cycle=cycle.value,
        )

        now = self._clock()
        end = now + cycle.term
        subscription = Subscription(
            external_subscription_id=remote.id,
            external_plan_id=remote.plan_id,
            user_id=user_id,
            plan=plan,
            status=ACTIVE,
            currency=currency.value,
            amount=amount,
            billing_cycle=cycle.value,
            start_date=now,
            end_date=end,
            next_billing_date=end,
            invoices=[],
        )
        try:
            async with self._session_factory() as session:
                session.add(subscription)
                user = await session.get(User, user_id)
                user.plan = plan
                user.entitlement_paused = False
                await session.commit()
        except IntegrityError:
            logger.warning(
                "Concurrent subscription create for user %s lost the race", user_id,
                extra={"user_id": user_id},
            )
            await self._compensate(remote.id)
            return LifecycleResult.rejected(LifecycleRejection.CONFLICT)
        except SQLAlchemyError:
            await self._compensate(remote.id)
            raise

        logger.info(
            "Subscription %s created: user=%s plan=%s cycle=%s",
            remote.id, user_id, plan, cycle.value,
            extra={"user_id": user_id, "subscription_id": remote.id},
        )
        return LifecycleResult.success(subscription)

    async def cancel(self, user_id: str) -> LifecycleResult:
        """
        Cancel the user's active subscription and downgrade their plan.

        The processor is asked first; local state changes only after it confirms.

        Raises:
            PaymentProcessorError: The processor did not cancel; nothing changed locally
        """
        async with self._session_factory() as session:
            active = await self._active_for(session, user_id)
        if active is None:
            return LifecycleResult.rejected(LifecycleRejection.NO_ACTIVE_SUBSCRIPTION)

        await self._processor.cancel_subscription(active.external_subscription_id)

        async with self._session_factory() as session:
            subscription = await session.get(Subscription, active.id, populate_existing=True)
            if subscription.status != CANCELLED:
                subscription.status = CANCELLED
                subscription.cancelled_at = self._clock()
            await self._downgrade_user(session, subscription)
            await session.commit()

        logger.info(
            "Subscription %s cancelled by user %s",
            subscription.external_subscription_id, user_id,
            extra={"user_id": user_id, "subscription_id": subscription.external_subscription_id},
        )
        return LifecycleResult.success(subscription)

    async def upgrade(
        self,
        user_id: str,
        new_plan: str,
        currency: str,
        billing_cycle: str,
    ) -> LifecycleResult:
        """
        Move to another plan: cancel the current subscription, then create one.

        If the create fails after the cancel succeeded the user is left with
        no active subscription; this is not retried.
        """
        if not self._catalog.is_paid(new_plan):
            return LifecycleResult.rejected(LifecycleRejection.UNKNOWN_PLAN)

        cancelled = await self.cancel(user_id)
        if not cancelled.ok:
            return cancelled

        try:
            created = await self.create(user_id, new_plan, currency, billing_cycle)
        except PaymentProcessorError:
            logger.error(
                "Upgrade for user %s cancelled the old subscription but create failed",
                user_id, extra={"user_id": user_id},
            )
            raise
        if not created.ok:
            logger.error(
                "Upgrade for user %s cancelled the old subscription but create was rejected: %s",
                user_id, created.rejection.value, extra={"user_id": user_id},
            )
        return created

    # ------------------------------------------------------------------
    # Processor events
    # ------------------------------------------------------------------

    async def _downgrade_user(self, session: AsyncSession, subscription: Subscription) -> None:
        """Drop the user to the default tier unless another subscription is still active."""
        if await self._active_for(session, subscription.user_id, exclude_id=subscription.id):
            return
        user = await session.get(User, subscription.user_id)
        if user is not None:
            user.plan = self._catalog.default_plan
            user.entitlement_paused = False

    async def on_webhook_charged(self, external_id: str, invoice: ChargedInvoice) -> WebhookOutcome:
        """
        Record a charge. Replays of the same invoice id are no-ops.

        Appends the invoice, moves next_billing_date to the charged period's
        end, extends end_date, and makes the subscription active again.
        """
        try:
            async with self._session_factory() as session:
                subscription = await self._by_external_id(session, external_id)
                if subscription is None:
                    logger.warning(
                        "Charge for unknown subscription %s ignored", external_id,
                        extra={"subscription_id": external_id},
                    )
                    return WebhookOutcome.UNKNOWN_SUBSCRIPTION

                if subscription.has_invoice(invoice.external_invoice_id):
                    logger.info(
                        "Duplicate charge %s for subscription %s ignored",
                        invoice.external_invoice_id, external_id,
                        extra={"subscription_id": external_id},
                    )
                    return WebhookOutcome.DUPLICATE

                subscription.invoices.append(
                    SubscriptionInvoice(
                        external_invoice_id=invoice.external_invoice_id,
                        position=len(subscription.invoices),
                        amount=invoice.amount,
                        status=invoice.status,
                        paid_at=invoice.paid_at,
                        period_end=invoice.period_end,
                    )
                )
                subscription.next_billing_date = invoice.period_end
                if as_utc(subscription.end_date) < invoice.period_end:
                    subscription.end_date = invoice.period_end

                await self._reactivate(session, subscription)
                await session.commit()
        except IntegrityError:
            async with self._session_factory() as session:
                subscription = await self._by_external_id(session, external_id)
                if subscription is not None and subscription.has_invoice(invoice.external_invoice_id):
                    logger.info(
                        "Concurrent duplicate charge %s for subscription %s ignored",
                        invoice.external_invoice_id, external_id,
                    )
                    return WebhookOutcome.DUPLICATE
            raise

        logger.info(
            "Charge %s recorded for subscription %s, next billing %s",
            invoice.external_invoice_id, external_id, invoice.period_end.isoformat(),
            extra={"subscription_id": external_id},
        )
        return WebhookOutcome.APPLIED

    async def _reactivate(self, session: AsyncSession, subscription: Subscription) -> None:
        user = await session.get(User, subscription.user_id)
        if subscription.status == ACTIVE:
            if user is not None:
                user.entitlement_paused = False
            return

        if await self._active_for(session, subscription.user_id, exclude_id=subscription.id):
            logger.warning(
                "Charge on %s subscription %s recorded; user has another active subscription",
                subscription.status, subscription.external_subscription_id,
            )
            return

        subscription.status = ACTIVE
        subscription.paused_at = None
        if user is not None:
            user.plan = subscription.plan
            user.entitlement_paused = False

    async def on_webhook_cancelled(self, external_id: str) -> WebhookOutcome:
        """Mark the subscription cancelled and downgrade the user. Idempotent."""
        async with self._session_factory() as session:
            subscription = await self._by_external_id(session, external_id)
            if subscription is None:
                logger.warning(
                    "Cancellation for unknown subscription %s ignored", external_id,
                    extra={"subscription_id": external_id},
                )
                return WebhookOutcome.UNKNOWN_SUBSCRIPTION
            if subscription.status == CANCELLED:
                return WebhookOutcome.DUPLICATE

            subscription.status = CANCELLED
            subscription.cancelled_at = self._clock()
            await self._downgrade_user(session, subscription)
            await session.commit()

        logger.info(
            "Subscription %s cancelled by processor", external_id,
            extra={"subscription_id": external_id},
        )
        return WebhookOutcome.APPLIED

    async def on_webhook_paused(self, external_id: str) -> WebhookOutcome:
        """Pause the subscription; the user keeps their stored plan but loses premium limits."""
        async with self._session_factory() as session:
            subscription = await self._by_external_id(session, external_id)
            if subscription is None:
                logger.warning(
                    "Pause for unknown subscription %s ignored", external_id,
                    extra={"subscription_id": external_id},
                )
                return WebhookOutcome.UNKNOWN_SUBSCRIPTION
            if subscription.status == PAUSED:
                return WebhookOutcome.DUPLICATE
            if subscription.status == CANCELLED:
                logger.info("Pause for cancelled subscription %s ignored", external_id)
                return WebhookOutcome.IGNORED

            subscription.status = PAUSED
            subscription.paused_at = self._clock()
            user = await session.get(User, subscription.user_id)
            if user is not None:
                user.entitlement_paused = True
            await session.commit()

        logger.info(
            "Subscription %s paused", external_id,
            extra={"subscription_id": external_id},
        )
        return WebhookOutcome.APPLIED
