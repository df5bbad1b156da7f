"""
Razorpay billing adapter for subscription management.

Provides integration with the Razorpay Subscriptions API for creating and
cancelling recurring subscriptions, plus webhook signature verification
and webhook payload parsing.
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from core.domain.subscription import BillingCycle, ChargedInvoice
from core.interfaces.services import (
    PaymentProcessor,
    PaymentProcessorError,
    ProcessorPayment,
    ProcessorSubscription,
)
from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Razorpay-Signature"


# Custom Exceptions
class RazorpayError(PaymentProcessorError):
    """Base exception for Razorpay adapter errors."""

    pass


class RazorpayAPIError(RazorpayError):
    """Raised when the Razorpay API returns an error."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RazorpayAuthError(RazorpayError):
    """Raised when API credentials are missing or rejected."""

    pass


class RazorpayWebhookError(RazorpayError):
    """Raised when a webhook cannot be verified or parsed."""

    pass


def _from_timestamp(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value), tz=UTC)


def _event_timestamp(value: Any, field: str) -> datetime | None:
    try:
        return _from_timestamp(value)
    except (TypeError, ValueError, OverflowError, OSError) as e:
        raise RazorpayWebhookError(f"Invalid {field}: {value!r}") from e


def _event_entity(body: dict[str, Any], name: str) -> dict[str, Any]:
    """``payload.<name>.entity`` of a webhook body; absent entities are empty."""
    wrapper = body.get(name) or {}
    if not isinstance(wrapper, dict):
        raise RazorpayWebhookError(f"payload.{name} must be an object")
    entity = wrapper.get("entity") or {}
    if not isinstance(entity, dict):
        raise RazorpayWebhookError(f"payload.{name}.entity must be an object")
    return entity


def verify_signature(payload: bytes, signature: str | None, secret: str) -> bool:
    """
    Check an HMAC-SHA256 hex signature over the raw request body.

    Args:
        payload: Raw webhook body, exactly as received
        signature: Value of the X-Razorpay-Signature header
        secret: Webhook secret configured in the Razorpay dashboard

    Returns:
        True if the signature matches
    """
    if not signature or not secret:
        return False
    expected = hmac.new(
        key=secret.encode("utf-8"),
        msg=payload,
        digestmod=hashlib.sha256,
    ).hexdigest()
    return hmac.compare_digest(expected, signature.strip())


# Dataclasses
@dataclass
class RazorpaySubscription(ProcessorSubscription):
    """Razorpay subscription information."""

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "RazorpaySubscription":
        """Create subscription from API response data."""
        return cls(
            id=data.get("id", ""),
            plan_id=data.get("plan_id", ""),
            status=data.get("status", ""),
            current_end=_from_timestamp(data.get("current_end")),
            short_url=data.get("short_url"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "plan_id": self.plan_id,
            "status": self.status,
            "current_end": self.current_end.isoformat() if self.current_end else None,
            "short_url": self.short_url,
        }


@dataclass
class RazorpayPayment(ProcessorPayment):
    """Razorpay payment information."""

    order_id: str | None = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "RazorpayPayment":
        """Create payment from API response data (amount in minor units)."""
        return cls(
            id=data.get("id", ""),
            amount=(Decimal(str(data.get("amount") or 0)) / 100).quantize(Decimal("0.01")),
            currency=data.get("currency", ""),
            status=data.get("status", ""),
            order_id=data.get("order_id"),
        )


@dataclass
class WebhookEvent:
    """Razorpay webhook event data."""

    event_name: str  # subscription.charged, subscription.cancelled, ...
    subscription_id: str | None
    subscription: dict[str, Any]
    payment: dict[str, Any]
    data: dict[str, Any]

    @classmethod
    def from_webhook_payload(cls, payload: dict[str, Any]) -> "WebhookEvent":
        """Create webhook event from a decoded payload."""
        if not isinstance(payload, dict):
            raise RazorpayWebhookError("Webhook payload must be a JSON object")

        body = payload.get("payload") or {}
        if not isinstance(body, dict):
            raise RazorpayWebhookError("payload must be an object")
        subscription = _event_entity(body, "subscription")
        payment = _event_entity(body, "payment")

        subscription_id = subscription.get("id")
        if subscription_id is not None and not isinstance(subscription_id, str):
            raise RazorpayWebhookError(f"Invalid subscription id: {subscription_id!r}")

        return cls(
            event_name=str(payload.get("event") or ""),
            subscription_id=subscription_id,
            subscription=subscription,
            payment=payment,
            data=payload,
        )

    def charged_invoice(self) -> ChargedInvoice:
        """
        Invoice described by a ``subscription.charged`` event.

        The invoice id comes from the payment entity; when the payment is
        absent the subscription id and period end identify the charge, so
        replays of the same event still map to the same invoice.

        Raises:
            RazorpayWebhookError: If the event lacks the period end or an amount
        """
        current_end = self.subscription.get("current_end")
        if current_end in (None, ""):
            raise RazorpayWebhookError("subscription.current_end missing from charged event")
        period_end = _event_timestamp(current_end, "current_end")

        invoice_id = (
            self.payment.get("invoice_id")
            or self.payment.get("id")
            or f"{self.subscription_id}:{current_end}"
        )

        plan_item = self.subscription.get("plan_item") or {}
        if not isinstance(plan_item, dict):
            raise RazorpayWebhookError("subscription.plan_item must be an object")
        minor_units = plan_item.get("amount")
        if minor_units is None:
            minor_units = self.payment.get("amount")
        if minor_units is None:
            raise RazorpayWebhookError("No amount in charged event")

        try:
            amount = (Decimal(str(minor_units)) / 100).quantize(Decimal("0.01"))
        except (InvalidOperation, ValueError, TypeError) as e:
            raise RazorpayWebhookError(f"Invalid amount in charged event: {minor_units!r}") from e
        if not amount.is_finite():
            raise RazorpayWebhookError(f"Invalid amount in charged event: {minor_units!r}")

        return ChargedInvoice(
            external_invoice_id=str(invoice_id),
            amount=amount,
            period_end=period_end,
            status=str(self.payment.get("status") or "paid"),
            paid_at=_event_timestamp(self.payment.get("created_at"), "payment.created_at") or period_end,
        )


class RazorpayAdapter(PaymentProcessor):
    """
    Razorpay API adapter for subscription billing.

    Creates and cancels subscriptions against the Razorpay REST API and
    verifies webhook deliveries.
    """

    API_BASE_URL = "https://api.razorpay.com/v1"

    def __init__(
        self,
        key_id: str | None = None,
        key_secret: str | None = None,
        webhook_secret: str | None = None,
        timeout: float = 30.0,
    ):
        """
        Initialize Razorpay adapter.

        Args:
            key_id: Razorpay key id (defaults to settings)
            key_secret: Razorpay key secret (defaults to settings)
            webhook_secret: Webhook signing secret (defaults to settings)
            timeout: Per-request timeout in seconds
        """
        self.key_id = key_id or settings.razorpay_key_id
        self.key_secret = key_secret or settings.razorpay_key_secret
        self.webhook_secret = webhook_secret or settings.razorpay_webhook_secret
        self.timeout = timeout

        if not self.key_id or not self.key_secret:
            logger.warning("Razorpay API keys not configured. Set razorpay_key_id/razorpay_key_secret.")

    def _get_auth(self) -> httpx.BasicAuth:
        if not self.key_id or not self.key_secret:
            raise RazorpayAuthError(
                "Razorpay API keys not configured. Set razorpay_key_id/razorpay_key_secret."
            )
        return httpx.BasicAuth(self.key_id, self.key_secret)

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Make HTTP request to the Razorpay API.

        Args:
            method: HTTP method (GET or POST)
            endpoint: API endpoint path
            data: JSON body for POST requests

        Returns:
            API response as dictionary

        Raises:
            RazorpayAuthError: If credentials are missing or rejected
            RazorpayAPIError: If the request fails
        """
        url = f"{self.API_BASE_URL}/{endpoint}"
        auth = self._get_auth()

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                logger.info("Making %s request to %s", method, endpoint)

                if method == "GET":
                    response = await client.get(url, auth=auth)
                elif method == "POST":
                    response = await client.post(url, auth=auth, json=data or {})
                else:
                    raise ValueError(f"Unsupported HTTP method: {method}")

                response.raise_for_status()
                if not response.content:
                    return {}
                return response.json()

        except httpx.HTTPStatusError as e:
            error_detail = str(e)
            try:
                error = e.response.json().get("error") or {}
                error_detail = error.get("description") or error_detail
            except ValueError:
                pass

            logger.error("Razorpay API error (%s): %s", e.response.status_code, error_detail)
            if e.response.status_code == 401:
                raise RazorpayAuthError(f"Authentication failed: {error_detail}") from e
            raise RazorpayAPIError(
                f"API request failed: {error_detail}",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            logger.error("HTTP request error: %s", e)
            raise RazorpayAPIError(f"Request failed: {e}") from e

    def plan_id_for(self, plan: str, currency: str, billing_cycle: str) -> str:
        plan_id = settings.razorpay_plan_id(plan, currency, billing_cycle)
        if not plan_id:
            raise RazorpayAPIError(f"No Razorpay plan configured for {plan}/{currency}/{billing_cycle}")
        return plan_id

    async def create_subscription(
        self,
        *,
        user_id: str,
        plan: str,
        currency: str,
        billing_cycle: str,
    ) -> RazorpaySubscription:
        """
        Create a subscription for a user.

        Returns:
            RazorpaySubscription as created by the processor

        Raises:
            RazorpayAPIError: If the API request fails
        """
        cycle = BillingCycle(billing_cycle)
        body = {
            "plan_id": self.plan_id_for(plan, currency, cycle.value),
            "customer_notify": 1,
            "quantity": 1,
            "total_count": cycle.total_count,
            "notes": {
                "userId": user_id,
                "plan": plan,
                "billingPeriod": cycle.value,
            },
        }
        logger.info("Creating %s/%s subscription for user %s", plan, cycle.value, user_id)
        response = await self._make_request("POST", "subscriptions", data=body)
        return RazorpaySubscription.from_api_response(response)

    async def get_subscription(self, subscription_id: str) -> RazorpaySubscription:
        response = await self._make_request("GET", f"subscriptions/{subscription_id}")
        return RazorpaySubscription.from_api_response(response)

    async def cancel_subscription(self, subscription_id: str) -> None:
        """
        Cancel a subscription immediately.

        Raises:
            RazorpayAPIError: If the API request fails
        """
        logger.info("Cancelling subscription %s", subscription_id)
        await self._make_request(
            "POST",
            f"subscriptions/{subscription_id}/cancel",
            data={"cancel_at_cycle_end": 0},
        )
        logger.info("Successfully cancelled subscription %s", subscription_id)

    async def fetch_payment(self, payment_id: str) -> RazorpayPayment | None:
        """
        Fetch a payment by id.

        Returns:
            RazorpayPayment, or None when Razorpay does not know the id

        Raises:
            RazorpayAPIError: If the API request fails for any other reason
        """
        try:
            response = await self._make_request("GET", f"payments/{payment_id}")
        except RazorpayAPIError as e:
            if e.status_code in (400, 404):
                logger.info("Payment %s not found on Razorpay", payment_id)
                return None
            raise
        return RazorpayPayment.from_api_response(response)

    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        """
        Verify webhook signature using HMAC SHA256.

        Raises:
            RazorpayWebhookError: If webhook secret not configured
        """
        if not self.webhook_secret:
            raise RazorpayWebhookError(
                "Webhook secret not configured. Set razorpay_webhook_secret in settings."
            )
        is_valid = verify_signature(payload, signature, self.webhook_secret)
        if not is_valid:
            logger.warning("Webhook signature verification failed")
        return is_valid

    def parse_webhook_event(self, payload: dict[str, Any]) -> WebhookEvent:
        return WebhookEvent.from_webhook_payload(payload)


# Factory function for easy instantiation
def create_razorpay_adapter(
    key_id: str | None = None,
    key_secret: str | None = None,
    webhook_secret: str | None = None,
) -> RazorpayAdapter:
    """Create a Razorpay adapter instance (credentials default to settings)."""
    return RazorpayAdapter(
        key_id=key_id,
        key_secret=key_secret,
        webhook_secret=webhook_secret,
    )
