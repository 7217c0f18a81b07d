import asyncio
from collections.abc import Sequence

import pytest

from llmverse.core.stream import FragmentStream, stream_generate
from llmverse.core.types import GenerateOptions, Generation, StreamCallback, Turn
from llmverse.errors import StreamClosedError


async def _collect(stream: FragmentStream) -> list[str]:
    return [fragment async for fragment in stream]


class _Provider:
    name = "fake"

    def __init__(self, chunks: list[bytes], text: str) -> None:
        self.chunks = chunks
        self.text = text

    async def generate(
        self,
        content: Sequence[Turn],
        options: GenerateOptions,
        on_chunk: StreamCallback | None = None,
    ) -> Generation:
        assert on_chunk is not None
        for chunk in self.chunks:
            await on_chunk(chunk)
        return Generation(text=self.text)


@pytest.mark.asyncio
async def test_fragments_arrive_in_order() -> None:
    stream = FragmentStream()
    consumer = asyncio.create_task(_collect(stream))
    for fragment in ["a", "b", "c"]:
        await stream.send(fragment)
    await stream.close()
    assert await consumer == ["a", "b", "c"]
    assert stream.sent == 3


@pytest.mark.asyncio
async def test_send_waits_for_receiver() -> None:
    stream = FragmentStream()
    await stream.send("first")
    pending = asyncio.create_task(stream.send("second"))
    await asyncio.sleep(0.01)
    assert not pending.done()

    assert await stream.receive() == "first"
    await pending
    assert await stream.receive() == "second"


@pytest.mark.asyncio
async def test_close_drains_buffer_then_ends() -> None:
    stream = FragmentStream()
    await stream.send("last")
    await stream.close()
    await stream.close()
    assert stream.closed
    assert await stream.receive() == "last"
    assert await stream.receive() is None


@pytest.mark.asyncio
async def test_empty_fragments_are_dropped() -> None:
    stream = FragmentStream()
    await stream.send("")
    await stream.close()
    assert await _collect(stream) == []
    assert stream.sent == 0


@pytest.mark.asyncio
async def test_send_after_close_raises() -> None:
    stream = FragmentStream()
    await stream.close()
    with pytest.raises(StreamClosedError):
        await stream.send("late")


@pytest.mark.asyncio
async def test_stream_generate_reports_observation() -> None:
    options = GenerateOptions(temperature=0.0, max_tokens=16)
    seen: list[bytes] = []

    async def _forward(chunk: bytes) -> None:
        seen.append(chunk)

    generation, streamed = await stream_generate(_Provider([b"he", b"y"], "hey"), [], options, _forward)
    assert (generation.text, streamed, seen) == ("hey", True, [b"he", b"y"])

    generation, streamed = await stream_generate(_Provider([], "hey"), [], options, _forward)
    assert (generation.text, streamed) == ("hey", False)
