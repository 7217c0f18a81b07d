"""Provider for OpenAI and OpenAI-compatible chat completion endpoints."""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx
import openai
from loguru import logger
from openai import AsyncAzureOpenAI, AsyncOpenAI

from llmverse.config import AZURE, ModelSettings
from llmverse.core.types import GenerateOptions, Generation, Role, StreamCallback, ToolCall, Turn
from llmverse.errors import ProviderError


@dataclass
class _PendingToolCall:
    id: str = ""
    name: str = ""
    arguments: list[str] = field(default_factory=list)

    def freeze(self) -> ToolCall:
        return ToolCall(id=self.id, name=self.name, arguments="".join(self.arguments))


def to_messages(content: Sequence[Turn]) -> list[dict[str, Any]]:
    """Convert conversation turns to chat completion messages."""
    messages: list[dict[str, Any]] = []
    for turn in content:
        if turn.role is Role.SYSTEM:
            messages.append({"role": "system", "content": turn.text})
        elif turn.role is Role.HUMAN:
            if turn.images:
                parts: list[dict[str, Any]] = [{"type": "text", "text": turn.text}]
                parts.extend({"type": "image_url", "image_url": {"url": image.url}} for image in turn.images)
                messages.append({"role": "user", "content": parts})
            else:
                messages.append({"role": "user", "content": turn.text})
        elif turn.role is Role.AI:
            message: dict[str, Any] = {"role": "assistant", "content": turn.text}
            if turn.tool_calls:
                message["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": call.arguments},
                    }
                    for call in turn.tool_calls
                ]
            messages.append(message)
        else:
            messages.append({"role": "tool", "tool_call_id": turn.tool_call_id, "content": turn.text})
    return messages


class OpenAICompatibleProvider:
    """Chat completions over the OpenAI SDK.

    Every provider except Azure is reached through `AsyncOpenAI` with a per-provider base URL.
    """

    def __init__(
        self,
        settings: ModelSettings,
        *,
        client: AsyncOpenAI | None = None,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.name = settings.name
        self._settings = settings
        self._client = client or self._build_client(settings, http)

    @staticmethod
    def _build_client(settings: ModelSettings, http: httpx.AsyncClient | None) -> AsyncOpenAI:
        if settings.name == AZURE:
            return AsyncAzureOpenAI(
                api_key=settings.api_key,
                api_version=settings.api_version,
                azure_endpoint=settings.base_url,
                http_client=http,
            )
        return AsyncOpenAI(api_key=settings.api_key, base_url=settings.base_url, http_client=http)

    async def generate(
        self,
        content: Sequence[Turn],
        options: GenerateOptions,
        on_chunk: StreamCallback | None = None,
    ) -> Generation:
        request: dict[str, Any] = {
            "model": self._settings.model,
            "messages": to_messages(content),
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
        }
        if options.tools:
            request["tools"] = list(options.tools)

        try:
            if on_chunk is not None and self._settings.has_streaming_support:
                return await self._stream(request, on_chunk)
            return await self._complete(request)
        except openai.APIError as exc:
            logger.warning("provider.call.error provider={} error={}", self.name, exc)
            raise ProviderError(f"{self.name}: {exc}") from exc

    async def _complete(self, request: dict[str, Any]) -> Generation:
        response = await self._client.chat.completions.create(**request)
        if not response.choices:
            return Generation(text="")
        message = response.choices[0].message
        calls = tuple(
            ToolCall(id=call.id, name=call.function.name, arguments=call.function.arguments)
            for call in message.tool_calls or ()
            if call.type == "function"
        )
        return Generation(text=message.content or "", tool_calls=calls)

    async def _stream(self, request: dict[str, Any], on_chunk: StreamCallback) -> Generation:
        stream = await self._client.chat.completions.create(**request, stream=True)
        text: list[str] = []
        pending: dict[int, _PendingToolCall] = {}
        async for chunk in stream:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta
            if delta.content:
                text.append(delta.content)
                await on_chunk(delta.content.encode("utf-8"))
            if delta.tool_calls:
                events: list[dict[str, Any]] = []
                for item in delta.tool_calls:
                    call = pending.setdefault(item.index, _PendingToolCall())
                    name = item.function.name if item.function and item.function.name else ""
                    arguments = item.function.arguments if item.function and item.function.arguments else ""
                    if item.id:
                        call.id = item.id
                    if name:
                        call.name = name
                    call.arguments.append(arguments)
                    events.append({
                        "id": item.id or "",
                        "type": "function",
                        "function": {"name": name, "arguments": arguments},
                    })
                await on_chunk(json.dumps(events).encode("utf-8"))
        calls = tuple(pending[index].freeze() for index in sorted(pending))
        return Generation(text="".join(text), tool_calls=calls)
