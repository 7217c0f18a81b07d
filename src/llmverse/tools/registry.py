"""Unified tool registry."""

from __future__ import annotations

import json
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from loguru import logger
from pydantic import BaseModel, ValidationError

from llmverse.errors import ToolArgumentsError, ToolError, ToolExecutionError

ToolHandler = Callable[[Any], Awaitable[str]]


def shorten_text(text: str, width: int = 30, placeholder: str = "...") -> str:
    """Shorten text to width characters, cutting in the middle of words if needed.

    Unlike textwrap.shorten, this function can cut in the middle of a word,
    ensuring long strings without spaces are still truncated properly.
    """
    if len(text) <= width:
        return text

    available = width - len(placeholder)
    if available <= 0:
        return placeholder

    return text[:available] + placeholder


@dataclass(frozen=True)
class ToolDescriptor:
    """Tool metadata and runtime handle."""

    name: str
    description: str
    input_model: type[BaseModel]
    handler: ToolHandler

    def schema(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_model.model_json_schema(),
            },
        }


class ToolRegistry:
    """Maps tool names to their implementations."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolDescriptor] = {}

    def register(self, descriptor: ToolDescriptor) -> None:
        if descriptor.name in self._tools:
            raise ValueError(f"Duplicate tool name: {descriptor.name}")
        self._tools[descriptor.name] = descriptor

    def has(self, name: str) -> bool:
        return name in self._tools

    def names(self) -> list[str]:
        return sorted(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def schemas(self) -> tuple[dict[str, Any], ...]:
        return tuple(self._tools[name].schema() for name in self.names())

    def parse_arguments(self, name: str, arguments: str) -> BaseModel:
        descriptor = self._tools.get(name)
        if descriptor is None:
            raise KeyError(name)
        try:
            raw = json.loads(arguments)
        except json.JSONDecodeError as exc:
            raise ToolArgumentsError(f"invalid arguments for {name}: {exc}") from exc
        try:
            return descriptor.input_model.model_validate(raw)
        except ValidationError as exc:
            raise ToolArgumentsError(f"invalid arguments for {name}: {exc.error_count()} validation error(s)") from exc

    async def execute(self, name: str, arguments: str) -> str:
        """Run one tool with JSON arguments and return its textual result."""
        descriptor = self._tools.get(name)
        if descriptor is None:
            raise KeyError(name)

        params = self.parse_arguments(name, arguments)
        self._log_tool_call(name, params.model_dump())
        start = time.monotonic()
        try:
            return await descriptor.handler(params)
        except ToolError:
            logger.exception("tool.call.error name={}", name)
            raise
        except Exception as exc:
            logger.exception("tool.call.error name={}", name)
            raise ToolExecutionError(f"{name} failed: {exc}") from exc
        finally:
            duration = time.monotonic() - start
            logger.info("tool.call.end name={} duration={:.3f}ms", name, duration * 1000)

    @staticmethod
    def _log_tool_call(name: str, kwargs: dict[str, Any]) -> None:
        params: list[str] = []
        for key, value in kwargs.items():
            try:
                rendered = json.dumps(value, ensure_ascii=False)
            except TypeError:
                rendered = repr(value)
            value = shorten_text(rendered, width=30, placeholder="...")
            if value.startswith('"') and not value.endswith('"'):
                value = value + '"'
            params.append(f"{key}={value}")
        logger.info("tool.call.start name={} {{ {} }}", name, ", ".join(params))
