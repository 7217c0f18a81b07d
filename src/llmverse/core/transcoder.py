"""Turn raw provider stream chunks into displayable text."""

from __future__ import annotations

from loguru import logger
from pydantic import BaseModel, TypeAdapter, ValidationError

TOOL_ANNOUNCEMENT_OPEN = "||*** Running tool: [{name}] with arguments: *** `"
TOOL_ANNOUNCEMENT_CLOSE = "`||\n\n"


class ToolCallFunctionDelta(BaseModel):
    name: str = ""
    arguments: str = ""


class ToolCallDelta(BaseModel):
    """One element of a streamed tool-call chunk."""

    id: str = ""
    type: str = ""
    function: ToolCallFunctionDelta


_TOOL_CALL_DELTAS = TypeAdapter(list[ToolCallDelta])


class StreamEventTranscoder:
    """Converts streamed chunks into text or tool announcements.

    A chunk that is not a structured tool-call delta is returned verbatim. A delta that
    names a tool opens an announcement followed by whatever argument text it already
    carries; later deltas of the same call contribute only their argument text.
    """

    def transcode(self, chunk: bytes | None, *, terminal: bool = False) -> str:
        if terminal:
            return TOOL_ANNOUNCEMENT_CLOSE
        if not chunk:
            return ""

        text = chunk.decode("utf-8", errors="replace")
        try:
            deltas = _TOOL_CALL_DELTAS.validate_json(chunk)
        except ValidationError:
            return text
        if not deltas:
            return text

        logger.debug("transcoder.tool_delta count={} size={}", len(deltas), len(chunk))
        return "".join(self._render(delta) for delta in deltas)

    @staticmethod
    def _render(delta: ToolCallDelta) -> str:
        function = delta.function
        if function.name:
            return TOOL_ANNOUNCEMENT_OPEN.format(name=function.name) + function.arguments
        return function.arguments
