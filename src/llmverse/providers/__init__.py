"""Generation providers."""

from llmverse.providers.base import GenerationProvider
from llmverse.providers.openai_compat import OpenAICompatibleProvider

__all__ = ["GenerationProvider", "OpenAICompatibleProvider"]
