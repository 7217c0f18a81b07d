"""Application runtime."""

from llmverse.app.runtime import AppRuntime

__all__ = ["AppRuntime"]
