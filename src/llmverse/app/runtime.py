"""Application runtime wiring providers, history and delivery."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import httpx
from loguru import logger

from llmverse.config import Settings
from llmverse.core.images import ImageFetcher
from llmverse.core.pipeline import ConversationPipeline, PipelineConfig, TurnOutcome
from llmverse.core.stream import FragmentStream
from llmverse.core.types import TurnRequest
from llmverse.delivery.adapter import ChunkedDeliveryAdapter, DeliverySurface, DeliveryWindow
from llmverse.history.file import FileConversationStore
from llmverse.history.store import ConversationStore, InMemoryConversationStore
from llmverse.providers.registry import ProviderRegistry, build_provider_registry

MODEL_PREFIX_SEPARATOR = ":"
HTTP_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class TurnResult:
    outcome: TurnOutcome
    windows: list[DeliveryWindow]


def build_store(settings: Settings) -> ConversationStore:
    if settings.history_dir is not None:
        return FileConversationStore(settings.history_dir, max_tokens=settings.history_max_size)
    return InMemoryConversationStore(max_tokens=settings.history_max_size)


class AppRuntime:
    """Global runtime shared by every channel."""

    def __init__(
        self,
        settings: Settings,
        *,
        providers: ProviderRegistry | None = None,
        store: ConversationStore | None = None,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS, follow_redirects=True)
        self.providers = providers if providers is not None else build_provider_registry(settings, self.http)
        self.store = store or build_store(settings)
        self.pipeline = ConversationPipeline(
            providers=self.providers,
            store=self.store,
            images=ImageFetcher(self.http),
            config=PipelineConfig(
                system_prompt=settings.system_prompt,
                temperature=settings.temperature,
                max_tokens=settings.output_max_size,
                timeout_seconds=settings.turn_timeout_seconds,
                show_tool_results=settings.show_tool_results,
            ),
        )

    def available_models(self) -> list[str]:
        return self.providers.names()

    def parse_model_name(self, text: str) -> tuple[str | None, str]:
        """Split a `<model>: text` prefix off a message.

        Returns the model name (None when the prefix names no enabled model) and the
        remaining text.
        """
        head, separator, rest = text.partition(MODEL_PREFIX_SEPARATOR)
        name = head.strip().lower()
        if not separator or name not in self.providers:
            return None, text
        return name, rest.strip()

    async def clear_history(self, user: str) -> int:
        return await self.store.clear_user(user)

    async def run_turn(self, request: TurnRequest, surface: DeliverySurface, *, reserve: int = 0) -> TurnResult:
        """Run one turn: the pipeline produces fragments while the adapter renders them.

        `reserve` characters of every message are kept free for decoration the surface adds.
        """
        stream = FragmentStream()
        adapter = ChunkedDeliveryAdapter(
            surface,
            ceiling=max(1, self.settings.message_ceiling - reserve),
            interval=self.settings.pacing_interval_seconds,
            settle_delay=self.settings.settle_delay_seconds,
        )
        async with asyncio.TaskGroup() as group:
            producer = group.create_task(self.pipeline.run(request, stream))
            consumer = group.create_task(adapter.deliver(stream))
        result = TurnResult(outcome=producer.result(), windows=consumer.result())
        logger.info(
            "runtime.turn.done model={} state={} windows={}",
            request.model,
            result.outcome.state,
            len(result.windows),
        )
        return result

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()
