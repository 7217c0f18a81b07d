"""One conversational turn, from user input to persisted history."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from enum import StrEnum

from loguru import logger

from llmverse.core.images import ImageFetcher
from llmverse.core.orchestrator import ToolCallOrchestrator
from llmverse.core.stream import FragmentStream, stream_generate
from llmverse.core.types import GenerateOptions, Turn, TurnRequest
from llmverse.errors import LlmverseError, ProviderError, UnknownModelError, VisionNotSupportedError
from llmverse.history.store import ConversationStore
from llmverse.logging_utils import bind_turn
from llmverse.providers.registry import ProviderEntry, ProviderRegistry

ERROR_PREFIX = "🤖 "


class TurnState(StrEnum):
    BUILDING_CONTENT = "building_content"
    TOOL_PHASE = "tool_phase"
    GENERATING = "generating"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class TurnOutcome:
    """Final state of one turn."""

    state: TurnState
    text: str = ""
    error: str | None = None
    persisted: bool = False


@dataclass(frozen=True)
class PipelineConfig:
    system_prompt: str = ""
    temperature: float = 0.7
    max_tokens: int = 4096
    timeout_seconds: float | None = 60.0
    show_tool_results: bool = False


class ConversationPipeline:
    """Runs one turn and writes its output fragments to a stream.

    States: building_content -> (tool_phase)? -> generating -> persisting -> done, with
    failed reachable from any state before persisting. Every path closes the output stream
    exactly once. Errors are reported as the last fragment; partial output stays visible.
    """

    def __init__(
        self,
        *,
        providers: ProviderRegistry,
        store: ConversationStore,
        images: ImageFetcher,
        config: PipelineConfig,
    ) -> None:
        self._providers = providers
        self._store = store
        self._images = images
        self._config = config

    async def run(self, request: TurnRequest, output: FragmentStream) -> TurnOutcome:
        bind_turn(str(request.key))
        outcome = TurnOutcome(TurnState.BUILDING_CONTENT)
        logger.info(
            "pipeline.turn.start user={} model={} images={}",
            request.user,
            request.model,
            len(request.image_urls),
        )
        try:
            async with self._store.lock(request.key):
                await self._run_locked(request, output, outcome)
        except asyncio.CancelledError:
            logger.info("pipeline.turn.cancelled state={}", outcome.state)
            raise
        finally:
            await output.close()
        logger.info("pipeline.turn.end state={} persisted={}", outcome.state, outcome.persisted)
        return outcome

    async def _run_locked(self, request: TurnRequest, output: FragmentStream, outcome: TurnOutcome) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.timeout_seconds if self._config.timeout_seconds else None
        try:
            async with asyncio.timeout_at(deadline):
                entry = self._resolve(request)
                content = await self._build_content(entry, request)
                outcome.text = await self._generate(entry, content, output, outcome)
        except TimeoutError:
            await self._fail(output, outcome, f"model_timeout: no response within {self._config.timeout_seconds}s")
            return
        except LlmverseError as exc:
            logger.warning("pipeline.turn.failed state={} error={}", outcome.state, exc)
            await self._fail(output, outcome, exc.render())
            return
        except Exception as exc:
            logger.exception("pipeline.turn.error state={}", outcome.state)
            await self._fail(output, outcome, f"model_call_error: {exc!s}")
            return

        await self._persist(request, outcome)

    def _resolve(self, request: TurnRequest) -> ProviderEntry:
        entry = self._providers.get(request.model)
        if entry is None:
            raise UnknownModelError(f"model {request.model} is not available")
        if request.image_urls and not entry.settings.has_vision_support:
            raise VisionNotSupportedError("vision of current model not enabled")
        return entry

    async def _build_content(self, entry: ProviderEntry, request: TurnRequest) -> list[Turn]:
        content: list[Turn] = []
        if self._config.system_prompt and entry.settings.has_system_support:
            content.append(Turn.system(self._config.system_prompt))
        content.extend(await self._store.load(request.key))
        images = await self._images.fetch(entry.settings, request.image_urls) if request.image_urls else ()
        content.append(Turn.human(request.text, images))
        logger.debug("pipeline.content turns={} images={}", len(content), len(images))
        return content

    async def _generate(
        self,
        entry: ProviderEntry,
        content: list[Turn],
        output: FragmentStream,
        outcome: TurnOutcome,
    ) -> str:
        options = GenerateOptions(temperature=self._config.temperature, max_tokens=self._config.max_tokens)

        if entry.settings.has_tool_support and len(entry.tools):
            outcome.state = TurnState.TOOL_PHASE
            orchestrator = ToolCallOrchestrator(entry.tools, show_tool_results=self._config.show_tool_results)
            phase = await orchestrator.execute(
                entry.provider,
                replace(options, tools=entry.tools.schemas()),
                content,
                output,
            )
            if phase.return_direct:
                return phase.final_text
            content = phase.content

        # The final round-trip offers no tools.
        outcome.state = TurnState.GENERATING

        async def _forward(chunk: bytes) -> None:
            await output.send(chunk.decode("utf-8", errors="replace"))

        generation, streamed = await stream_generate(entry.provider, content, options, _forward)
        if generation.tool_calls:
            logger.warning("pipeline.generate.ignored_tool_calls count={}", len(generation.tool_calls))
            if not generation.text:
                raise ProviderError(f"{entry.name} requested tools instead of answering")
        if not streamed:
            logger.warning("pipeline.generate.not_streaming model={}", entry.name)
            await output.send(generation.text)
        return generation.text

    async def _fail(self, output: FragmentStream, outcome: TurnOutcome, message: str) -> None:
        outcome.state = TurnState.FAILED
        outcome.error = message
        separator = "\n\n" if output.sent else ""
        await output.send(f"{separator}{ERROR_PREFIX}{message}")

    async def _persist(self, request: TurnRequest, outcome: TurnOutcome) -> None:
        outcome.state = TurnState.PERSISTING
        if outcome.text:
            try:
                await self._store.append(request.key, Turn.human(request.text), Turn.ai(outcome.text))
                outcome.persisted = True
            except Exception:
                logger.exception("pipeline.persist.error key={}", request.key)
        outcome.state = TurnState.DONE
