"""
Webhook ingestion for payment processor events.

The signature is checked over the raw body before anything is parsed.
Authentic events are routed to the subscription lifecycle; handler and
store errors propagate so the HTTP layer answers 5xx and the processor
redelivers. Replays are safe because the lifecycle handlers are
idempotent.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from adapters.payments.razorpay_adapter import (
    RazorpayWebhookError,
    WebhookEvent,
    verify_signature,
)
from core.domain.subscription import WebhookOutcome
from services.subscription_lifecycle import SubscriptionLifecycle

logger = logging.getLogger(__name__)

SUBSCRIPTION_CHARGED = "subscription.charged"
SUBSCRIPTION_CANCELLED = "subscription.cancelled"
SUBSCRIPTION_PAUSED = "subscription.paused"


class RejectionReason(str, Enum):
    INVALID_SIGNATURE = "invalid_signature"
    MALFORMED_PAYLOAD = "malformed_payload"


@dataclass(frozen=True)
class IngestResult:
    """Accepted (with what the handler did) or Rejected (with why)."""

    accepted: bool
    event_name: Optional[str] = None
    outcome: Optional[WebhookOutcome] = None
    rejection: Optional[RejectionReason] = None

    @classmethod
    def rejected(cls, reason: RejectionReason, event_name: Optional[str] = None) -> "IngestResult":
        return cls(accepted=False, event_name=event_name, rejection=reason)


class WebhookIngester:
    """Verifies and dispatches processor webhooks."""

    def __init__(self, lifecycle: SubscriptionLifecycle, webhook_secret: str):
        if not webhook_secret:
            raise ValueError("webhook_secret is required")
        self._lifecycle = lifecycle
        self._secret = webhook_secret
        self._handlers: dict[str, Callable[[WebhookEvent], Awaitable[WebhookOutcome]]] = {
            SUBSCRIPTION_CHARGED: self._charged,
            SUBSCRIPTION_CANCELLED: self._cancelled,
            SUBSCRIPTION_PAUSED: self._paused,
        }

    async def ingest(self, raw_body: bytes, signature: Optional[str]) -> IngestResult:
        """
        Verify, parse and route one delivery.

        Returns:
            IngestResult; rejections have caused no side effects

        Raises:
            Any error from the lifecycle handler or the store
        """
        if not verify_signature(raw_body, signature, self._secret):
            logger.warning("Webhook rejected: invalid signature")
            return IngestResult.rejected(RejectionReason.INVALID_SIGNATURE)

        try:
            event = WebhookEvent.from_webhook_payload(json.loads(raw_body))
        except (ValueError, RazorpayWebhookError) as e:
            logger.warning("Webhook rejected: malformed payload: %s", e)
            return IngestResult.rejected(RejectionReason.MALFORMED_PAYLOAD)

        handler = self._handlers.get(event.event_name)
        if handler is None:
            logger.info(
                "Unhandled webhook event %s ignored", event.event_name,
                extra={"event_name": event.event_name},
            )
            return IngestResult(accepted=True, event_name=event.event_name, outcome=WebhookOutcome.IGNORED)

        if not event.subscription_id:
            logger.warning("Webhook %s has no subscription id", event.event_name)
            return IngestResult.rejected(RejectionReason.MALFORMED_PAYLOAD, event.event_name)

        try:
            outcome = await handler(event)
        except RazorpayWebhookError as e:
            logger.warning("Webhook %s rejected: %s", event.event_name, e)
            return IngestResult.rejected(RejectionReason.MALFORMED_PAYLOAD, event.event_name)

        logger.info(
            "Webhook %s for %s: %s", event.event_name, event.subscription_id, outcome.value,
            extra={"event_name": event.event_name, "subscription_id": event.subscription_id},
        )
        return IngestResult(accepted=True, event_name=event.event_name, outcome=outcome)

    async def _charged(self, event: WebhookEvent) -> WebhookOutcome:
        invoice = event.charged_invoice()
        return await self._lifecycle.on_webhook_charged(event.subscription_id, invoice)

    async def _cancelled(self, event: WebhookEvent) -> WebhookOutcome:
        return await self._lifecycle.on_webhook_cancelled(event.subscription_id)

    async def _paused(self, event: WebhookEvent) -> WebhookOutcome:
        return await self._lifecycle.on_webhook_paused(event.subscription_id)
