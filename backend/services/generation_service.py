"""
Generation service.

Runs one metered generation: authorize against the quota, call the AI
provider, and count usage only when the provider delivered. A provider
failure raises and consumes no quota.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from core.domain.usage import UsageKind
from core.interfaces.services import ContentProvider, GeneratedContent
from infrastructure.database.models.usage import UsageRecord
from services.quota_guard import QuotaDecision, QuotaGuard
from services.usage_tracker import UsageTracker

logger = logging.getLogger(__name__)


@dataclass
class GenerationOutcome:
    decision: QuotaDecision
    content: Optional[GeneratedContent] = None
    usage: Optional[UsageRecord] = None

    @property
    def delivered(self) -> bool:
        return self.content is not None


class GenerationService:
    """Gates, performs and meters post and comment generation."""

    def __init__(
        self,
        quota_guard: QuotaGuard,
        usage_tracker: UsageTracker,
        content_provider: ContentProvider,
    ):
        self._guard = quota_guard
        self._usage = usage_tracker
        self._provider = content_provider

    async def generate(
        self,
        user_id: str,
        kind: UsageKind,
        prompt: str,
        params: Optional[dict] = None,
    ) -> GenerationOutcome:
        """
        Generate a post or comment for ``user_id``.

        Returns:
            GenerationOutcome; ``content`` is None when the quota guard denied

        Raises:
            ContentProviderError: The provider failed; usage was not counted
        """
        kind = UsageKind(kind)
        decision = await self._guard.authorize(user_id, kind)
        if not decision.allowed:
            return GenerationOutcome(decision=decision)

        start = time.perf_counter()
        content = await self._provider.generate(prompt, params or {})
        duration_ms = int((time.perf_counter() - start) * 1000)

        usage = await self._usage.increment(user_id, kind, content.tokens_used)
        logger.info(
            "Generated %s for user %s in %dms (%d tokens)",
            kind.value, user_id, duration_ms, content.tokens_used,
            extra={"user_id": user_id, "duration_ms": duration_ms},
        )
        return GenerationOutcome(decision=decision, content=content, usage=usage)
