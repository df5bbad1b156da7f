"""
Billing, subscription and usage API routes.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Header, HTTPException, Query, Request, status

from adapters.payments.razorpay_adapter import SIGNATURE_HEADER
from api.dependencies import CurrentUser, ServicesDep
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.billing import (
    CheckActionRequest,
    CreateSubscriptionRequest,
    InvoiceResponse,
    PlanInfo,
    PricingResponse,
    QuotaDecisionResponse,
    SubscriptionCancelResponse,
    SubscriptionResponse,
    SubscriptionStatusResponse,
    UsageHistoryResponse,
    UsageRecordResponse,
    UsageStatsResponse,
    WebhookResponse,
)
from core.domain.subscription import LifecycleRejection, LifecycleResult
from core.interfaces.services import PaymentProcessorError
from infrastructure.database.models.subscription import Subscription
from services import Services
from services.webhook_ingester import RejectionReason

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])

_REJECTION_STATUS = {
    LifecycleRejection.CONFLICT: (status.HTTP_409_CONFLICT, "An active subscription already exists"),
    LifecycleRejection.UNKNOWN_PLAN: (status.HTTP_400_BAD_REQUEST, "Unknown plan, currency or billing cycle"),
    LifecycleRejection.NO_ACTIVE_SUBSCRIPTION: (status.HTTP_404_NOT_FOUND, "No active subscription"),
    LifecycleRejection.USER_NOT_FOUND: (status.HTTP_404_NOT_FOUND, "User not found"),
}


def _subscription_response(services: Services, subscription: Subscription) -> SubscriptionResponse:
    return SubscriptionResponse(
        external_subscription_id=subscription.external_subscription_id,
        plan=subscription.plan,
        status=services.subscriptions.effective_status(subscription).value,
        currency=subscription.currency,
        amount=subscription.amount,
        billing_cycle=subscription.billing_cycle,
        start_date=subscription.start_date,
        end_date=subscription.end_date,
        next_billing_date=subscription.next_billing_date,
        cancelled_at=subscription.cancelled_at,
        invoices=[InvoiceResponse.model_validate(inv) for inv in subscription.invoices],
    )


def _raise_for_rejection(result: LifecycleResult) -> None:
    if result.ok:
        return
    status_code, detail = _REJECTION_STATUS[result.rejection]
    raise HTTPException(status_code=status_code, detail={"reason": result.rejection.value, "message": detail})


def _processor_unavailable(e: PaymentProcessorError) -> HTTPException:
    logger.error("Payment processor call failed: %s", e)
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail="Payment processor unavailable, please try again",
    )


@router.get("/pricing", response_model=PricingResponse)
async def get_pricing(services: ServicesDep):
    """Available plans with prices and monthly limits."""
    return PricingResponse(plans=[PlanInfo(**plan) for plan in services.plan_catalog.describe()])


@router.get("/subscription", response_model=SubscriptionStatusResponse)
async def get_subscription_status(current_user: CurrentUser, services: ServicesDep):
    """Current plan and the caller's active (or latest) subscription."""
    subscription = await services.subscriptions.current(current_user.id)
    return SubscriptionStatusResponse(
        plan=current_user.plan,
        entitlement_paused=current_user.entitlement_paused,
        subscription=_subscription_response(services, subscription) if subscription else None,
    )


@router.post(
    "/subscription",
    response_model=SubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(get_rate_limit("subscription"))
async def create_subscription(
    request: Request,
    body: CreateSubscriptionRequest,
    current_user: CurrentUser,
    services: ServicesDep,
):
    """Start a paid subscription for the caller."""
    try:
        result = await services.subscriptions.create(
            current_user.id, body.plan, body.currency.value, body.billing_cycle.value
        )
    except PaymentProcessorError as e:
        raise _processor_unavailable(e) from e
    _raise_for_rejection(result)
    return _subscription_response(services, result.subscription)


@router.post("/subscription/upgrade", response_model=SubscriptionResponse)
@limiter.limit(get_rate_limit("subscription"))
async def upgrade_subscription(
    request: Request,
    body: CreateSubscriptionRequest,
    current_user: CurrentUser,
    services: ServicesDep,
):
    """Cancel the current subscription and start one on another plan."""
    try:
        result = await services.subscriptions.upgrade(
            current_user.id, body.plan, body.currency.value, body.billing_cycle.value
        )
    except PaymentProcessorError as e:
        raise _processor_unavailable(e) from e
    _raise_for_rejection(result)
    return _subscription_response(services, result.subscription)


@router.post("/subscription/cancel", response_model=SubscriptionCancelResponse)
@limiter.limit(get_rate_limit("subscription"))
async def cancel_subscription(
    request: Request,
    current_user: CurrentUser,
    services: ServicesDep,
):
    """Cancel the caller's active subscription; the plan drops to the default tier."""
    try:
        result = await services.subscriptions.cancel(current_user.id)
    except PaymentProcessorError as e:
        raise _processor_unavailable(e) from e
    _raise_for_rejection(result)
    return SubscriptionCancelResponse(
        success=True,
        message="Subscription cancelled successfully",
        subscription=_subscription_response(services, result.subscription),
    )


@router.get("/usage", response_model=UsageStatsResponse)
async def get_usage(current_user: CurrentUser, services: ServicesDep):
    """This month's usage, limits, remaining allowance and growth."""
    plan = await services.quota_guard.effective_plan(current_user.id) or services.plan_catalog.default_plan
    limits = services.plan_catalog.limits_for(plan)
    stats = await services.usage_tracker.stats(current_user.id, limits, plan=plan)
    return UsageStatsResponse(
        period=stats.period.key,
        plan=stats.plan,
        posts_generated=stats.posts_generated,
        comments_generated=stats.comments_generated,
        total_tokens_used=stats.total_tokens_used,
        limits={
            "posts_per_month": stats.posts_limit,
            "comments_per_month": stats.comments_limit,
        },
        remaining=stats.remaining,
        growth=stats.growth,
    )


@router.get("/usage/history", response_model=UsageHistoryResponse)
async def get_usage_history(
    current_user: CurrentUser,
    services: ServicesDep,
    months: Annotated[int | None, Query(ge=1, le=36)] = None,
):
    """Usage by month, most recent first."""
    records = await services.usage_tracker.history(
        current_user.id, months or services.usage_history_months
    )
    return UsageHistoryResponse(history=[UsageRecordResponse.model_validate(r) for r in records])


@router.post("/check-action", response_model=QuotaDecisionResponse)
async def check_action(
    body: CheckActionRequest,
    current_user: CurrentUser,
    services: ServicesDep,
):
    """Whether the caller may generate one more post or comment right now."""
    decision = await services.quota_guard.authorize(current_user.id, body.kind)
    return QuotaDecisionResponse(
        allowed=decision.allowed,
        kind=decision.kind,
        plan=decision.plan,
        reason=decision.reason.value if decision.reason else None,
        current=decision.current,
        limit=decision.limit,
        remaining=decision.remaining,
    )


@router.post("/webhook", response_model=WebhookResponse)
@limiter.limit(get_rate_limit("webhook"))
async def handle_webhook(
    request: Request,
    services: ServicesDep,
    signature: Annotated[str | None, Header(alias=SIGNATURE_HEADER)] = None,
):
    """
    Handle Razorpay subscription webhooks.

    Recognised events: subscription.charged, subscription.cancelled,
    subscription.paused. Other events are acknowledged and ignored.
    Handler failures answer 500 so Razorpay redelivers.
    """
    if services.webhooks is None:
        # 403 rather than 503 so the processor does not retry aggressively
        logger.error("Webhook rejected: RAZORPAY_WEBHOOK_SECRET not configured")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Webhook verification not configured")

    body = await request.body()
    try:
        result = await services.webhooks.ingest(body, signature)
    except Exception as e:
        logger.exception("Webhook processing failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        ) from e

    if not result.accepted:
        if result.rejection is RejectionReason.INVALID_SIGNATURE:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook payload")

    return WebhookResponse(
        status="ok",
        event=result.event_name,
        outcome=result.outcome.value if result.outcome else None,
    )
