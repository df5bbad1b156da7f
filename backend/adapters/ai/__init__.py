# AI Adapters
# Anthropic integration for post and comment generation

from .anthropic_adapter import AnthropicContentProvider

__all__ = [
    "AnthropicContentProvider",
]
