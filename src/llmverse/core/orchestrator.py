"""Tool-call round-trip orchestration."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from loguru import logger

from llmverse.core.stream import FragmentStream, stream_generate
from llmverse.core.transcoder import StreamEventTranscoder
from llmverse.core.types import GenerateOptions, ToolCall, ToolResult, Turn
from llmverse.providers.base import GenerationProvider
from llmverse.tools.registry import ToolRegistry, shorten_text

TOOL_RESULT_PREVIEW_CHARS = 200


@dataclass(frozen=True)
class ToolPhaseResult:
    """Outcome of one tool-enabled round-trip."""

    content: list[Turn]
    return_direct: bool
    streamed: bool

    @property
    def final_text(self) -> str:
        return self.content[-1].text if self.return_direct else ""


class ToolCallOrchestrator:
    """Runs one round-trip that may request tools and executes the requested tools.

    When the model answers without tool calls the answer is final (`return_direct`).
    Otherwise every known tool is executed in request order and the content is extended
    with the requesting AI turn followed by one tool turn per result; the caller then
    asks the model again for the natural-language answer.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        transcoder: StreamEventTranscoder | None = None,
        show_tool_results: bool = False,
    ) -> None:
        self._registry = registry
        self._transcoder = transcoder or StreamEventTranscoder()
        self._show_tool_results = show_tool_results

    async def execute(
        self,
        provider: GenerationProvider,
        options: GenerateOptions,
        content: Sequence[Turn],
        output: FragmentStream,
    ) -> ToolPhaseResult:
        async def _forward(chunk: bytes) -> None:
            await output.send(self._transcoder.transcode(chunk))

        generation, streamed = await stream_generate(provider, content, options, _forward)
        if not generation.tool_calls:
            if not streamed:
                await output.send(generation.text)
            return ToolPhaseResult([*content, Turn.ai(generation.text)], return_direct=True, streamed=streamed)

        requested: list[ToolCall] = []
        results: list[Turn] = []
        for call in generation.tool_calls:
            if not self._registry.has(call.name):
                logger.warning("tool.call.unknown name={} id={}", call.name, call.id)
                continue
            text = await self._registry.execute(call.name, call.arguments)
            requested.append(call)
            results.append(Turn.tool(ToolResult(id=call.id, name=call.name, content=text)))
            if self._show_tool_results and streamed:
                await output.send(f" => {shorten_text(text, width=TOOL_RESULT_PREVIEW_CHARS)}")

        if streamed:
            await output.send(self._transcoder.transcode(None, terminal=True))

        logger.info(
            "tool.phase.done requested={} executed={} streamed={}",
            len(generation.tool_calls),
            len(requested),
            streamed,
        )
        ai_turn = Turn.ai(generation.text, tool_calls=tuple(requested))
        return ToolPhaseResult([*content, ai_turn, *results], return_direct=False, streamed=streamed)
