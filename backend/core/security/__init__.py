"""
Security utilities for identifying API callers.
"""

from .tokens import TokenPayload, TokenService

__all__ = [
    "TokenService",
    "TokenPayload",
]
