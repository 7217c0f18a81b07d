"""Conversation data model."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class Role(StrEnum):
    SYSTEM = "system"
    HUMAN = "human"
    AI = "ai"
    TOOL = "tool"


@dataclass(frozen=True)
class ImagePart:
    """One image attached to a human turn, as a URL or a data URL."""

    url: str


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the model."""

    id: str
    name: str
    arguments: str


@dataclass(frozen=True)
class ToolResult:
    """Textual result of one tool invocation."""

    id: str
    name: str
    content: str


@dataclass(frozen=True)
class Turn:
    """One role-tagged message unit in a conversation."""

    role: Role
    text: str = ""
    images: tuple[ImagePart, ...] = ()
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: str | None = None
    tool_name: str | None = None

    @classmethod
    def system(cls, text: str) -> Turn:
        return cls(Role.SYSTEM, text)

    @classmethod
    def human(cls, text: str, images: tuple[ImagePart, ...] = ()) -> Turn:
        return cls(Role.HUMAN, text, images=images)

    @classmethod
    def ai(cls, text: str, tool_calls: tuple[ToolCall, ...] = ()) -> Turn:
        return cls(Role.AI, text, tool_calls=tool_calls)

    @classmethod
    def tool(cls, result: ToolResult) -> Turn:
        return cls(Role.TOOL, result.content, tool_call_id=result.id, tool_name=result.name)


@dataclass(frozen=True)
class ConversationKey:
    """Identity of one conversation: a user talking to one provider."""

    user: str
    provider: str

    def __str__(self) -> str:
        return f"{self.user}_{self.provider}"


@dataclass(frozen=True)
class GenerateOptions:
    """Call options for one provider round-trip."""

    temperature: float
    max_tokens: int
    tools: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True)
class Generation:
    """Final response of one provider round-trip."""

    text: str
    tool_calls: tuple[ToolCall, ...] = ()


@dataclass(frozen=True)
class TurnRequest:
    """One end-user message addressed to one model."""

    user: str
    model: str
    text: str
    image_urls: tuple[str, ...] = field(default=())

    @property
    def key(self) -> ConversationKey:
        return ConversationKey(self.user, self.model)


StreamCallback = Callable[[bytes], Awaitable[None]]
