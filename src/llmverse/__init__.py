"""llmverse - one chat bot, many language models."""

__version__ = "0.1.0"
