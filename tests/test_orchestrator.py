import asyncio
import json
from collections.abc import Sequence

import pytest

from llmverse.core.orchestrator import ToolCallOrchestrator, ToolPhaseResult
from llmverse.core.stream import FragmentStream
from llmverse.core.transcoder import TOOL_ANNOUNCEMENT_CLOSE, TOOL_ANNOUNCEMENT_OPEN
from llmverse.core.types import GenerateOptions, Generation, Role, StreamCallback, ToolCall, Turn
from llmverse.errors import ToolArgumentsError
from llmverse.tools.builtin import ExchangeRateInput, WeatherInput
from llmverse.tools.registry import ToolDescriptor, ToolRegistry

OPTIONS = GenerateOptions(temperature=0.7, max_tokens=256)
WEATHER_ARGS = '{"location": "Paris,FR"}'
RATE_ARGS = '{"currency_from": "EUR"}'


class ScriptedProvider:
    name = "openai"

    def __init__(self, chunks: list[bytes], generation: Generation) -> None:
        self.chunks = chunks
        self.generation = generation
        self.calls = 0

    async def generate(
        self,
        content: Sequence[Turn],
        options: GenerateOptions,
        on_chunk: StreamCallback | None = None,
    ) -> Generation:
        self.calls += 1
        if on_chunk is not None:
            for chunk in self.chunks:
                await on_chunk(chunk)
        return self.generation


def _delta(call_id: str, name: str, arguments: str) -> bytes:
    return json.dumps([{"id": call_id, "type": "function", "function": {"name": name, "arguments": arguments}}]).encode()


def _registry(events: list[str]) -> ToolRegistry:
    async def _weather(params: WeatherInput) -> str:
        events.append("tool:getWeather")
        return f"sunny in {params.location}"

    async def _rate(params: ExchangeRateInput) -> str:
        events.append("tool:getExchangeRate")
        return f'{{"base": "{params.currency_from}", "rates": {{"USD": 1.1}}}}'

    registry = ToolRegistry()
    registry.register(ToolDescriptor("getWeather", "weather", WeatherInput, _weather))
    registry.register(ToolDescriptor("getExchangeRate", "rates", ExchangeRateInput, _rate))
    return registry


async def _execute(
    orchestrator: ToolCallOrchestrator,
    provider: ScriptedProvider,
    events: list[str] | None = None,
) -> tuple[ToolPhaseResult, list[str]]:
    output = FragmentStream()
    fragments: list[str] = []

    async def _drain() -> None:
        async for fragment in output:
            fragments.append(fragment)
            if events is not None:
                events.append(fragment)

    consumer = asyncio.create_task(_drain())
    result = await orchestrator.execute(provider, OPTIONS, [Turn.human("weather and rates?")], output)
    await output.close()
    await consumer
    return result, fragments


@pytest.mark.asyncio
async def test_answer_without_tool_calls_is_returned_directly() -> None:
    provider = ScriptedProvider([b"It is ", b"sunny."], Generation(text="It is sunny."))
    result, fragments = await _execute(ToolCallOrchestrator(_registry([])), provider)

    assert result.return_direct is True
    assert result.streamed is True
    assert result.final_text == "It is sunny."
    assert result.content[-1] == Turn.ai("It is sunny.")
    assert fragments == ["It is ", "sunny."]
    assert provider.calls == 1


@pytest.mark.asyncio
async def test_non_streaming_direct_answer_is_emitted_once() -> None:
    provider = ScriptedProvider([], Generation(text="It is sunny."))
    result, fragments = await _execute(ToolCallOrchestrator(_registry([])), provider)

    assert result.return_direct is True
    assert result.streamed is False
    assert fragments == ["It is sunny."]


@pytest.mark.asyncio
async def test_two_tool_calls_are_announced_and_closed_once() -> None:
    events: list[str] = []
    provider = ScriptedProvider(
        [
            _delta("call_1", "getWeather", ""),
            _delta("", "", WEATHER_ARGS),
            _delta("call_2", "getExchangeRate", ""),
            _delta("", "", RATE_ARGS),
        ],
        Generation(
            text="",
            tool_calls=(
                ToolCall("call_1", "getWeather", WEATHER_ARGS),
                ToolCall("call_2", "getExchangeRate", RATE_ARGS),
            ),
        ),
    )
    result, fragments = await _execute(ToolCallOrchestrator(_registry(events)), provider, events)

    assert fragments == [
        TOOL_ANNOUNCEMENT_OPEN.format(name="getWeather"),
        WEATHER_ARGS,
        TOOL_ANNOUNCEMENT_OPEN.format(name="getExchangeRate"),
        RATE_ARGS,
        TOOL_ANNOUNCEMENT_CLOSE,
    ]
    assert fragments.count(TOOL_ANNOUNCEMENT_CLOSE) == 1
    close_at = events.index(TOOL_ANNOUNCEMENT_CLOSE)
    assert events.index("tool:getWeather") < close_at
    assert events.index("tool:getExchangeRate") < close_at

    assert result.return_direct is False
    assert [turn.role for turn in result.content] == [Role.HUMAN, Role.AI, Role.TOOL, Role.TOOL]
    assert [call.name for call in result.content[1].tool_calls] == ["getWeather", "getExchangeRate"]
    assert result.content[2].tool_call_id == "call_1"
    assert result.content[2].text == "sunny in Paris,FR"
    assert result.content[3].tool_name == "getExchangeRate"


@pytest.mark.asyncio
async def test_unknown_tool_is_skipped() -> None:
    provider = ScriptedProvider(
        [],
        Generation(
            text="",
            tool_calls=(
                ToolCall("call_1", "getWeather", WEATHER_ARGS),
                ToolCall("call_2", "doSomethingUndefined", "{}"),
                ToolCall("call_3", "getExchangeRate", RATE_ARGS),
            ),
        ),
    )
    result, fragments = await _execute(ToolCallOrchestrator(_registry([])), provider)

    assert fragments == []
    tool_turns = [turn for turn in result.content if turn.role is Role.TOOL]
    assert [turn.tool_name for turn in tool_turns] == ["getWeather", "getExchangeRate"]
    assert [call.id for call in result.content[1].tool_calls] == ["call_1", "call_3"]
    assert all("doSomethingUndefined" not in turn.text for turn in result.content)


@pytest.mark.asyncio
async def test_invalid_tool_arguments_abort_the_phase() -> None:
    provider = ScriptedProvider([], Generation(text="", tool_calls=(ToolCall("call_1", "getWeather", "{not json"),)))
    output = FragmentStream()
    with pytest.raises(ToolArgumentsError):
        await ToolCallOrchestrator(_registry([])).execute(provider, OPTIONS, [Turn.human("hi")], output)


@pytest.mark.asyncio
async def test_tool_results_are_shown_inside_the_announcement() -> None:
    provider = ScriptedProvider(
        [_delta("call_1", "getWeather", WEATHER_ARGS)],
        Generation(text="", tool_calls=(ToolCall("call_1", "getWeather", WEATHER_ARGS),)),
    )
    orchestrator = ToolCallOrchestrator(_registry([]), show_tool_results=True)
    _, fragments = await _execute(orchestrator, provider)

    assert fragments[-2:] == [" => sunny in Paris,FR", TOOL_ANNOUNCEMENT_CLOSE]
