"""Paced, size-bounded delivery of a fragment stream to a chat surface."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Protocol

from loguru import logger

from llmverse.core.stream import FragmentStream

DEFAULT_CEILING = 2000
DEFAULT_INTERVAL = 1.0
DEFAULT_SETTLE_DELAY = 1.0


class DeliverySurface(Protocol):
    """Where delivered text ends up, e.g. a Discord reply and its later edits."""

    async def create(self, text: str) -> Any: ...

    async def edit(self, handle: Any, text: str) -> None: ...


@dataclass
class DeliveryWindow:
    """One external message's worth of text.

    Only the newest window is mutated; once sealed its text never changes.
    """

    text: str = ""
    handle: Any = None
    rendered: str = ""
    sealed: bool = False

    @property
    def dirty(self) -> bool:
        return self.text != self.rendered


class ChunkedDeliveryAdapter:
    """Drains a fragment stream into a sequence of windows of at most `ceiling` characters.

    The open window is rendered on every `interval` tick while fragments keep coming.
    Overflowing text seals the open window at exactly `ceiling` characters and seeds a
    new window with the remainder. When the stream closes the adapter waits
    `settle_delay` seconds and flushes what is still unrendered. Surface errors propagate.
    """

    def __init__(
        self,
        surface: DeliverySurface,
        *,
        ceiling: int = DEFAULT_CEILING,
        interval: float = DEFAULT_INTERVAL,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
    ) -> None:
        if ceiling < 1:
            raise ValueError("ceiling must be positive")
        self._surface = surface
        self._ceiling = ceiling
        self._interval = interval
        self._settle_delay = settle_delay
        self._windows: list[DeliveryWindow] = []

    @property
    def windows(self) -> list[DeliveryWindow]:
        return list(self._windows)

    async def deliver(self, stream: FragmentStream) -> list[DeliveryWindow]:
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self._interval
        while True:
            try:
                async with asyncio.timeout_at(next_tick):
                    fragment = await stream.receive()
            except TimeoutError:
                await self._tick()
                next_tick = loop.time() + self._interval
                continue
            if fragment is None:
                break
            await self._append(fragment)
            if loop.time() >= next_tick:
                # Missed ticks are dropped, not queued.
                await self._tick()
                next_tick = loop.time() + self._interval

        await self._settle()
        logger.debug("delivery.done windows={}", len(self._windows))
        return self.windows

    async def _append(self, fragment: str) -> None:
        window = self._open_window()
        window.text += fragment
        while len(window.text) > self._ceiling:
            remainder = window.text[self._ceiling :]
            window.text = window.text[: self._ceiling]
            await self._seal(window)
            window = self._open_window()
            window.text = remainder

    def _open_window(self) -> DeliveryWindow:
        if not self._windows or self._windows[-1].sealed:
            self._windows.append(DeliveryWindow())
        return self._windows[-1]

    async def _seal(self, window: DeliveryWindow) -> None:
        window.sealed = True
        await self._render(window)
        logger.debug("delivery.window.sealed index={} size={}", len(self._windows) - 1, len(window.text))

    async def _tick(self) -> None:
        if self._windows and not self._windows[-1].sealed:
            await self._render(self._windows[-1])

    async def _settle(self) -> None:
        if not self._windows or not self._windows[-1].dirty:
            return
        if self._settle_delay > 0:
            await asyncio.sleep(self._settle_delay)
        await self._render(self._windows[-1])

    async def _render(self, window: DeliveryWindow) -> None:
        if not window.dirty or not window.text:
            return
        if window.handle is None:
            window.handle = await self._surface.create(window.text)
        else:
            await self._surface.edit(window.handle, window.text)
        window.rendered = window.text
