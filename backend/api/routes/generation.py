"""
Metered post and comment generation routes.
"""

import logging

from fastapi import APIRouter, HTTPException, Request, status

from api.dependencies import CurrentUser, ServicesDep
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.generation import GenerationRequest, GenerationResponse
from core.domain.usage import UsageKind
from core.interfaces.services import ContentProviderError
from services.quota_guard import DenyReason

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/generation", tags=["generation"])


async def _generate(services, user_id: str, kind: UsageKind, body: GenerationRequest) -> GenerationResponse:
    params = body.model_dump(exclude={"prompt"}, exclude_none=True)
    try:
        outcome = await services.generation.generate(user_id, kind, body.prompt, params)
    except ContentProviderError as e:
        logger.error("Content generation failed for user %s: %s", user_id, e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Content generation failed, please try again",
        ) from e

    decision = outcome.decision
    if not outcome.delivered:
        if decision.reason is DenyReason.QUOTA_EXCEEDED:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={
                    "reason": decision.reason.value,
                    "message": f"Monthly {kind.value} limit reached for the {decision.plan} plan",
                    "current": decision.current,
                    "limit": decision.limit,
                    "remaining": decision.remaining,
                },
            )
        if decision.reason is DenyReason.STORE_UNAVAILABLE:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Usage tracking unavailable, please try again",
            )
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    used = getattr(outcome.usage, kind.counter)
    limit = decision.limit
    return GenerationResponse(
        kind=kind.value,
        text=outcome.content.text,
        tokens_used=outcome.content.tokens_used,
        model=outcome.content.model,
        used=used,
        limit=limit,
        remaining=max(0, limit - used) if limit is not None else None,
    )


@router.post("/posts", response_model=GenerationResponse)
@limiter.limit(get_rate_limit("generation"))
async def generate_post(
    request: Request,
    body: GenerationRequest,
    current_user: CurrentUser,
    services: ServicesDep,
):
    """Generate a LinkedIn post; counts against the monthly post quota."""
    return await _generate(services, current_user.id, UsageKind.POST, body)


@router.post("/comments", response_model=GenerationResponse)
@limiter.limit(get_rate_limit("generation"))
async def generate_comment(
    request: Request,
    body: GenerationRequest,
    current_user: CurrentUser,
    services: ServicesDep,
):
    """Generate a LinkedIn comment; counts against the monthly comment quota."""
    return await _generate(services, current_user.id, UsageKind.COMMENT, body)
