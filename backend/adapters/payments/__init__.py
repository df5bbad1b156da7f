"""Payment adapters for billing and subscription management."""

from .razorpay_adapter import (
    SIGNATURE_HEADER,
    RazorpayAdapter,
    RazorpayAPIError,
    RazorpayAuthError,
    RazorpayError,
    RazorpayPayment,
    RazorpaySubscription,
    RazorpayWebhookError,
    WebhookEvent,
    create_razorpay_adapter,
    verify_signature,
)

__all__ = [
    "SIGNATURE_HEADER",
    "RazorpayAdapter",
    "RazorpaySubscription",
    "RazorpayPayment",
    "WebhookEvent",
    "RazorpayError",
    "RazorpayAPIError",
    "RazorpayWebhookError",
    "RazorpayAuthError",
    "create_razorpay_adapter",
    "verify_signature",
]
