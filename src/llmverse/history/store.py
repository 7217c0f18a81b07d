"""Conversation history stores keyed by user and provider."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence

from loguru import logger

from llmverse.core.types import ConversationKey, Role, Turn
from llmverse.errors import PersistenceError

CHARS_PER_TOKEN = 4


def estimate_tokens(turn: Turn) -> int:
    """Rough token estimate (1 token ≈ 4 chars)."""
    return -(-len(turn.text) // CHARS_PER_TOKEN)


def trim_to_budget(
    turns: Sequence[Turn],
    max_tokens: int,
    count: Callable[[Turn], int] = estimate_tokens,
) -> list[Turn]:
    """Drop the oldest Human/AI pairs until the estimate fits; the newest pair always stays."""
    kept = list(turns)
    total = sum(count(turn) for turn in kept)
    while total > max_tokens and len(kept) > 2:
        total -= count(kept[0]) + count(kept[1])
        kept = kept[2:]
    return kept


def complete_pairs(turns: Sequence[Turn]) -> list[Turn]:
    """Keep only human turns directly answered by an ai turn."""
    paired: list[Turn] = []
    for index in range(len(turns) - 1):
        if turns[index].role is Role.HUMAN and turns[index + 1].role is Role.AI:
            paired.extend((turns[index], turns[index + 1]))
    return paired


def check_pairs(turns: Sequence[Turn]) -> None:
    if len(turns) % 2:
        raise PersistenceError("history turns must be appended as human/ai pairs")
    for index, turn in enumerate(turns):
        expected = Role.HUMAN if index % 2 == 0 else Role.AI
        if turn.role is not expected:
            raise PersistenceError(f"expected {expected} turn at position {index}, got {turn.role}")


class ConversationStore(ABC):
    """Append-only, token-budgeted conversation log.

    Conversations are created on first use, removed only by `clear`, and never expire.
    `lock(key)` serializes turns of one conversation.
    """

    def __init__(self, max_tokens: int) -> None:
        self.max_tokens = max_tokens
        self._locks: dict[ConversationKey, asyncio.Lock] = {}

    def lock(self, key: ConversationKey) -> asyncio.Lock:
        return self._locks.setdefault(key, asyncio.Lock())

    @abstractmethod
    async def load(self, key: ConversationKey) -> list[Turn]:
        """Return the ordered turns of one conversation."""

    @abstractmethod
    async def append(self, key: ConversationKey, *turns: Turn) -> None:
        """Append completed human/ai pairs to one conversation."""

    @abstractmethod
    async def clear(self, key: ConversationKey) -> None:
        """Forget one conversation."""

    @abstractmethod
    def keys(self) -> list[ConversationKey]:
        """Keys of every known conversation."""

    async def clear_user(self, user: str) -> int:
        """Forget every conversation of one user, across providers.

        Each clear waits for the conversation's lock, so a turn in flight persists
        before the clear and never after it.
        """
        stored = {key for key in self.keys() if key.user == user}
        # Locked keys cover turns whose conversation has nothing stored yet.
        pending = {key for key in self._locks if key.user == user}
        cleared = 0
        for key in sorted(stored | pending, key=str):
            async with self.lock(key):
                await self.clear(key)
            if key in stored:
                cleared += 1
        logger.debug("history.cleared user={} conversations={}", user, cleared)
        return cleared


class InMemoryConversationStore(ConversationStore):
    """Process-local conversation store."""

    def __init__(self, max_tokens: int = 2048) -> None:
        super().__init__(max_tokens)
        self._conversations: dict[ConversationKey, list[Turn]] = {}

    async def load(self, key: ConversationKey) -> list[Turn]:
        return list(self._conversations.setdefault(key, []))

    async def append(self, key: ConversationKey, *turns: Turn) -> None:
        check_pairs(turns)
        conversation = [*self._conversations.get(key, []), *turns]
        trimmed = trim_to_budget(conversation, self.max_tokens)
        if len(trimmed) < len(conversation):
            logger.debug("history.trimmed key={} dropped={}", key, len(conversation) - len(trimmed))
        self._conversations[key] = trimmed

    async def clear(self, key: ConversationKey) -> None:
        self._conversations.pop(key, None)

    def keys(self) -> list[ConversationKey]:
        return list(self._conversations)
