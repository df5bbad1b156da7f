"""
Anthropic Claude adapter for LinkedIn post and comment generation.
"""

import asyncio
import logging
import random
from typing import Any, Optional

import anthropic

from core.interfaces.services import ContentProvider, ContentProviderError, GeneratedContent
from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (
    anthropic.RateLimitError,
    anthropic.APIConnectionError,
    anthropic.InternalServerError,
)

DEFAULT_SYSTEM_PROMPT = (
    "You write LinkedIn posts and comments for professionals. "
    "Write in a natural first-person voice and return only the requested text."
)


async def _retry_with_backoff(coro_factory, max_retries=3, base_delay=1.0):
    """Retry an async operation with exponential backoff + jitter."""
    for attempt in range(max_retries + 1):
        try:
            return await coro_factory()
        except _TRANSIENT_ERRORS as e:
            if attempt == max_retries:
                raise
            delay = base_delay * (2 ** attempt) + random.uniform(0, 1)
            logger.warning(
                "Transient API error (attempt %d/%d), retrying in %.1fs: %s",
                attempt + 1, max_retries, delay, str(e),
            )
            await asyncio.sleep(delay)


class AnthropicContentProvider(ContentProvider):
    """Content provider backed by the Anthropic Messages API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        client: Any = None,
        base_delay: float = 1.0,
    ):
        api_key = api_key or settings.anthropic_api_key
        if client is not None:
            self._client = client
        elif api_key:
            self._client = anthropic.AsyncAnthropic(
                api_key=api_key,
                timeout=float(settings.anthropic_timeout),
            )
        else:
            self._client = None
        self._model = model or settings.anthropic_model
        self._max_tokens = max_tokens or settings.anthropic_max_tokens
        self._base_delay = base_delay

    @property
    def configured(self) -> bool:
        return self._client is not None

    async def generate(self, prompt: str, params: dict | None = None) -> GeneratedContent:
        """
        Generate text for a prompt.

        Recognised params: ``system``, ``max_tokens``, ``temperature``.
        Token usage is input plus output tokens as billed by the API.
        """
        if self._client is None:
            raise ContentProviderError("Anthropic API key not configured. Set anthropic_api_key in settings.")

        params = params or {}
        request = {
            "model": self._model,
            "max_tokens": int(params.get("max_tokens") or self._max_tokens),
            "system": params.get("system") or DEFAULT_SYSTEM_PROMPT,
            "messages": [{"role": "user", "content": prompt}],
        }
        if params.get("temperature") is not None:
            request["temperature"] = float(params["temperature"])

        try:
            message = await _retry_with_backoff(
                lambda: self._client.messages.create(**request),
                base_delay=self._base_delay,
            )
        except anthropic.APIError as e:
            logger.error("Anthropic generation failed: %s", e)
            raise ContentProviderError(f"Generation failed: {e}") from e

        text = "".join(
            block.text for block in message.content if getattr(block, "type", "text") == "text"
        ).strip()
        if not text:
            raise ContentProviderError("Provider returned no text")

        usage = message.usage
        return GeneratedContent(
            text=text,
            tokens_used=int(usage.input_tokens) + int(usage.output_tokens),
            model=getattr(message, "model", self._model),
        )
