"""Tool registry and built-in tools."""

from llmverse.tools.registry import ToolDescriptor, ToolRegistry

__all__ = ["ToolDescriptor", "ToolRegistry"]
