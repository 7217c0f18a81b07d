"""Generation provider contract."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from llmverse.core.types import GenerateOptions, Generation, StreamCallback, Turn


@runtime_checkable
class GenerationProvider(Protocol):
    """A text-generation backend.

    `generate` may await `on_chunk` with raw bytes any number of times before returning
    the final generation. Plain text deltas are passed as UTF-8 text; tool-call deltas are
    passed as a JSON array of `{"id", "type", "function": {"name", "arguments"}}` objects.
    Failures are raised as `ProviderError`.
    """

    name: str

    async def generate(
        self,
        content: Sequence[Turn],
        options: GenerateOptions,
        on_chunk: StreamCallback | None = None,
    ) -> Generation: ...
