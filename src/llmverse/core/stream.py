"""Ordered fragment channel between one turn's producer and its consumer."""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from typing import TYPE_CHECKING

from llmverse.core.types import GenerateOptions, Generation, Turn
from llmverse.errors import StreamClosedError

if TYPE_CHECKING:
    from llmverse.providers.base import GenerationProvider


class FragmentStream:
    """Single-producer, single-consumer channel of text fragments.

    With the default capacity of one, a sender waits until the receiver has taken the
    previous fragment. Closing the stream is the end-of-stream signal: `receive` returns
    None once every buffered fragment has been consumed.
    """

    def __init__(self, capacity: int = 1) -> None:
        self._capacity = max(1, capacity)
        self._buffer: deque[str] = deque()
        self._closed = False
        self._changed = asyncio.Condition()
        self.sent = 0

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, fragment: str) -> None:
        if not fragment:
            return
        async with self._changed:
            await self._changed.wait_for(lambda: self._closed or len(self._buffer) < self._capacity)
            if self._closed:
                raise StreamClosedError("fragment stream is closed")
            self._buffer.append(fragment)
            self.sent += 1
            self._changed.notify_all()

    async def receive(self) -> str | None:
        async with self._changed:
            await self._changed.wait_for(lambda: self._closed or bool(self._buffer))
            if not self._buffer:
                return None
            fragment = self._buffer.popleft()
            self._changed.notify_all()
            return fragment

    async def close(self) -> None:
        async with self._changed:
            if self._closed:
                return
            self._closed = True
            self._changed.notify_all()

    async def __aiter__(self) -> AsyncIterator[str]:
        while (fragment := await self.receive()) is not None:
            yield fragment


class _StreamProbe:
    def __init__(self, forward: Callable[[bytes], Awaitable[None]]) -> None:
        self._forward = forward
        self.observed = False

    async def __call__(self, chunk: bytes) -> None:
        self.observed = True
        await self._forward(chunk)


async def stream_generate(
    provider: GenerationProvider,
    content: Sequence[Turn],
    options: GenerateOptions,
    forward: Callable[[bytes], Awaitable[None]],
) -> tuple[Generation, bool]:
    """Run one round-trip, forwarding streamed bytes.

    Returns the final generation and whether any streamed byte was observed.
    """
    probe = _StreamProbe(forward)
    generation = await provider.generate(content, options, probe)
    return generation, probe.observed
