"""Enabled providers, keyed by model name."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

import httpx
from loguru import logger

from llmverse.config import ModelSettings, Settings
from llmverse.providers.base import GenerationProvider
from llmverse.providers.openai_compat import OpenAICompatibleProvider
from llmverse.tools.builtin import ToolContext, build_tool_registry
from llmverse.tools.registry import ToolRegistry

ProviderFactory = Callable[[ModelSettings, httpx.AsyncClient], GenerationProvider]


@dataclass(frozen=True)
class ProviderEntry:
    settings: ModelSettings
    provider: GenerationProvider
    tools: ToolRegistry

    @property
    def name(self) -> str:
        return self.settings.name


class ProviderRegistry:
    """Lookup of the providers a user can address."""

    def __init__(self, entries: list[ProviderEntry] | None = None) -> None:
        self._entries: dict[str, ProviderEntry] = {}
        for entry in entries or []:
            self.add(entry)

    def add(self, entry: ProviderEntry) -> None:
        if entry.name in self._entries:
            raise ValueError(f"Duplicate provider name: {entry.name}")
        self._entries[entry.name] = entry

    def get(self, name: str) -> ProviderEntry | None:
        return self._entries.get(name)

    def names(self) -> list[str]:
        return sorted(self._entries)

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)


def _openai_compatible(model: ModelSettings, http: httpx.AsyncClient) -> GenerationProvider:
    return OpenAICompatibleProvider(model, http=http)


def build_provider_registry(
    settings: Settings,
    http: httpx.AsyncClient,
    *,
    factory: ProviderFactory = _openai_compatible,
) -> ProviderRegistry:
    """Instantiate one provider and its tool set per enabled model."""
    registry = ProviderRegistry()
    for model in settings.enabled_models():
        tools = build_tool_registry(ToolContext(settings=settings, model=model, http=http))
        registry.add(ProviderEntry(settings=model, provider=factory(model, http), tools=tools))
        logger.info(
            "provider.enabled name={} model={} tools={}",
            model.name,
            model.model,
            ",".join(tools.names()) if model.has_tool_support else "-",
        )
    return registry
