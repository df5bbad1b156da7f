"""
Service layer for business logic.

Services are built once at startup by ``build_services`` and passed
around explicitly; nothing here is a module-level singleton.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.clock import Clock, utcnow
from core.interfaces.services import ContentProvider, PaymentProcessor
from core.plans import PlanCatalog
from infrastructure.config.settings import Settings
from services.generation_service import GenerationService
from services.offer_engine import OfferEngine
from services.quota_guard import QuotaGuard
from services.subscription_lifecycle import SubscriptionLifecycle
from services.usage_tracker import UsageTracker
from services.webhook_ingester import WebhookIngester


@dataclass
class Services:
    """Everything the API layer needs, wired together."""

    session_factory: async_sessionmaker[AsyncSession]
    plan_catalog: PlanCatalog
    usage_tracker: UsageTracker
    quota_guard: QuotaGuard
    subscriptions: SubscriptionLifecycle
    offers: OfferEngine
    generation: GenerationService
    payments: PaymentProcessor
    webhooks: Optional[WebhookIngester]
    clock: Clock = utcnow
    usage_history_months: int = 12


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    *,
    payment_processor: Optional[PaymentProcessor] = None,
    content_provider: Optional[ContentProvider] = None,
    plan_catalog: Optional[PlanCatalog] = None,
    clock: Clock = utcnow,
) -> Services:
    """
    Construct the service graph.

    Args:
        session_factory: Store handle
        settings: Application settings
        payment_processor: Defaults to the Razorpay adapter
        content_provider: Defaults to the Anthropic provider
        plan_catalog: Defaults to the built-in plan table
        clock: Source of "now"

    Returns:
        Services container; ``webhooks`` is None when no webhook secret is configured
    """
    if payment_processor is None:
        from adapters.payments.razorpay_adapter import create_razorpay_adapter

        payment_processor = create_razorpay_adapter()
    if content_provider is None:
        from adapters.ai.anthropic_adapter import AnthropicContentProvider

        content_provider = AnthropicContentProvider()

    catalog = plan_catalog or PlanCatalog(default_plan=settings.default_plan)
    usage = UsageTracker(session_factory, clock=clock)
    guard = QuotaGuard(session_factory, usage, catalog, clock=clock)
    lifecycle = SubscriptionLifecycle(session_factory, payment_processor, catalog, clock=clock)
    webhooks = (
        WebhookIngester(lifecycle, settings.razorpay_webhook_secret)
        if settings.razorpay_webhook_secret
        else None
    )

    return Services(
        session_factory=session_factory,
        plan_catalog=catalog,
        usage_tracker=usage,
        quota_guard=guard,
        subscriptions=lifecycle,
        offers=OfferEngine(session_factory, clock=clock),
        generation=GenerationService(guard, usage, content_provider),
        payments=payment_processor,
        webhooks=webhooks,
        clock=clock,
        usage_history_months=settings.usage_history_months,
    )
