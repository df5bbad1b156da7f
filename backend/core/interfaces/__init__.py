# Interfaces (Abstract Contracts)
# Adapters implement these interfaces
from .services import (
    ContentProvider,
    ContentProviderError,
    GeneratedContent,
    PaymentProcessor,
    PaymentProcessorError,
    ProcessorPayment,
    ProcessorSubscription,
)

__all__ = [
    "ContentProvider",
    "ContentProviderError",
    "GeneratedContent",
    "PaymentProcessor",
    "PaymentProcessorError",
    "ProcessorPayment",
    "ProcessorSubscription",
]
