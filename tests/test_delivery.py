import asyncio

import pytest

from llmverse.core.stream import FragmentStream
from llmverse.delivery.adapter import ChunkedDeliveryAdapter, DeliveryWindow


class RecordingSurface:
    def __init__(self, *, fail_on_create: bool = False) -> None:
        self.messages: list[str] = []
        self.ops: list[tuple[str, int, str]] = []
        self.fail_on_create = fail_on_create

    async def create(self, text: str) -> int:
        if self.fail_on_create:
            raise RuntimeError("missing permissions")
        self.messages.append(text)
        handle = len(self.messages) - 1
        self.ops.append(("create", handle, text))
        return handle

    async def edit(self, handle: int, text: str) -> None:
        self.messages[handle] = text
        self.ops.append(("edit", handle, text))


async def _deliver(
    adapter: ChunkedDeliveryAdapter,
    fragments: list[str],
    *,
    pause: float = 0.0,
) -> list[DeliveryWindow]:
    stream = FragmentStream()

    async def _produce() -> None:
        for fragment in fragments:
            await stream.send(fragment)
            if pause:
                await asyncio.sleep(pause)
        await stream.close()

    windows, _ = await asyncio.gather(adapter.deliver(stream), _produce())
    return windows


@pytest.mark.asyncio
async def test_split_windows_reassemble_to_the_full_text() -> None:
    surface = RecordingSurface()
    fragments = ["abcdefg", "hijklmnop", "qrstuvwxyz0123", "4", "56789"]
    adapter = ChunkedDeliveryAdapter(surface, ceiling=10, interval=10.0, settle_delay=0)
    windows = await _deliver(adapter, fragments)

    assert all(len(message) <= 10 for message in surface.messages)
    assert "".join(surface.messages) == "".join(fragments)
    assert [window.text for window in windows] == surface.messages
    assert [window.sealed for window in windows] == [True, True, True, False]


@pytest.mark.asyncio
async def test_oversized_fragment_is_split_at_the_ceiling() -> None:
    surface = RecordingSurface()
    adapter = ChunkedDeliveryAdapter(surface, ceiling=10, interval=10.0, settle_delay=0)
    await _deliver(adapter, ["x" * 25])

    assert surface.messages == ["x" * 10, "x" * 10, "x" * 5]


@pytest.mark.asyncio
async def test_text_exactly_at_the_ceiling_stays_in_one_window() -> None:
    surface = RecordingSurface()
    adapter = ChunkedDeliveryAdapter(surface, ceiling=10, interval=10.0, settle_delay=0)
    windows = await _deliver(adapter, ["01234", "56789"])

    assert surface.messages == ["0123456789"]
    assert len(windows) == 1


@pytest.mark.asyncio
async def test_empty_stream_creates_no_window() -> None:
    surface = RecordingSurface()
    adapter = ChunkedDeliveryAdapter(surface, interval=10.0, settle_delay=0)
    windows = await _deliver(adapter, [])

    assert windows == []
    assert surface.ops == []


@pytest.mark.asyncio
async def test_single_fragment_is_one_window() -> None:
    surface = RecordingSurface()
    adapter = ChunkedDeliveryAdapter(surface, interval=10.0, settle_delay=0)
    await _deliver(adapter, ["whole answer"])

    assert surface.ops == [("create", 0, "whole answer")]


@pytest.mark.asyncio
async def test_ticks_render_progress_then_settle_flushes() -> None:
    surface = RecordingSurface()
    adapter = ChunkedDeliveryAdapter(surface, interval=0.01, settle_delay=0)
    await _deliver(adapter, ["a", "b"], pause=0.05)

    assert surface.ops[0] == ("create", 0, "a")
    assert surface.ops[-1] == ("edit", 0, "ab")
    assert surface.messages == ["ab"]
    # Unchanged text is never re-rendered.
    assert len(surface.ops) == 2


@pytest.mark.asyncio
async def test_sealed_windows_are_never_edited_again() -> None:
    surface = RecordingSurface()
    adapter = ChunkedDeliveryAdapter(surface, ceiling=5, interval=0.01, settle_delay=0)
    await _deliver(adapter, ["abc", "defgh", "ij"], pause=0.03)

    assert surface.messages == ["abcde", "fghij"]
    sealed_at = next(index for index, op in enumerate(surface.ops) if op[1:] == (0, "abcde"))
    assert all(handle != 0 for _, handle, _ in surface.ops[sealed_at + 1 :])


@pytest.mark.asyncio
async def test_settle_delay_precedes_final_flush(monkeypatch: pytest.MonkeyPatch) -> None:
    surface = RecordingSurface()
    sleeps: list[float] = []
    real_sleep = asyncio.sleep

    async def _sleep(delay: float) -> None:
        sleeps.append(delay)
        await real_sleep(0)

    monkeypatch.setattr("llmverse.delivery.adapter.asyncio.sleep", _sleep)
    adapter = ChunkedDeliveryAdapter(surface, interval=10.0, settle_delay=1.0)
    await _deliver(adapter, ["done"])

    assert sleeps == [1.0]
    assert surface.messages == ["done"]


@pytest.mark.asyncio
async def test_surface_errors_propagate() -> None:
    adapter = ChunkedDeliveryAdapter(RecordingSurface(fail_on_create=True), interval=10.0, settle_delay=0)
    stream = FragmentStream()
    await stream.send("text")
    await stream.close()
    with pytest.raises(RuntimeError, match="missing permissions"):
        await adapter.deliver(stream)


def test_ceiling_must_be_positive() -> None:
    with pytest.raises(ValueError):
        ChunkedDeliveryAdapter(RecordingSurface(), ceiling=0)
