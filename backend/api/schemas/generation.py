"""
Schemas for post and comment generation.
"""

from typing import Optional

from pydantic import BaseModel, Field


class GenerationRequest(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=8000)
    temperature: Optional[float] = Field(None, ge=0.0, le=1.0)
    max_tokens: Optional[int] = Field(None, gt=0, le=4096)


class GenerationResponse(BaseModel):
    kind: str
    text: str
    tokens_used: int
    model: str
    used: int = Field(..., description="Generations of this kind counted this period")
    limit: Optional[int] = None
    remaining: Optional[int] = None
