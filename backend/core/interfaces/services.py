"""Service interfaces for external integrations."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional


class PaymentProcessorError(Exception):
    """A payment processor call failed."""


class ContentProviderError(Exception):
    """The AI provider could not produce content."""


@dataclass
class GeneratedContent:
    """Result of AI content generation."""

    text: str
    tokens_used: int
    model: str = ""


@dataclass
class ProcessorSubscription:
    """A subscription as created on the payment processor."""

    id: str
    plan_id: str
    status: str
    current_end: Optional[datetime] = None
    short_url: Optional[str] = None


@dataclass
class ProcessorPayment:
    """A one-off payment as recorded by the payment processor."""

    id: str
    amount: Decimal  # major units
    currency: str
    status: str

    @property
    def captured(self) -> bool:
        return self.status == "captured"


class ContentProvider(ABC):
    """Abstract AI provider for post and comment generation."""

    @abstractmethod
    async def generate(self, prompt: str, params: dict | None = None) -> GeneratedContent:
        """Generate text for ``prompt``.

        Raises:
            ContentProviderError: generation failed; no content was delivered.
        """
        ...


class PaymentProcessor(ABC):
    """Abstract payment processor for recurring subscriptions."""

    @abstractmethod
    async def create_subscription(
        self,
        *,
        user_id: str,
        plan: str,
        currency: str,
        billing_cycle: str,
    ) -> ProcessorSubscription:
        """Create a remote subscription.

        Raises:
            PaymentProcessorError: the processor rejected or failed the call.
        """
        ...

    @abstractmethod
    async def cancel_subscription(self, subscription_id: str) -> None:
        """Cancel a remote subscription immediately.

        Raises:
            PaymentProcessorError: the processor rejected or failed the call.
        """
        ...

    @abstractmethod
    async def fetch_payment(self, payment_id: str) -> Optional[ProcessorPayment]:
        """Look up a payment; None when the processor has no such payment.

        Raises:
            PaymentProcessorError: the processor could not be queried.
        """
        ...
