"""Persistent JSONL conversation store."""

from __future__ import annotations

import json
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from urllib.parse import quote, unquote

from loguru import logger

from llmverse.core.types import ConversationKey, Role, Turn
from llmverse.history.store import ConversationStore, check_pairs, complete_pairs, trim_to_budget

HISTORY_FILE_SUFFIX = ".jsonl"
KEY_SEPARATOR = "__"


class ConversationFile:
    """Helper for one conversation file."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._read_turns: list[Turn] = []
        self._read_offset = 0

    def _reset(self) -> None:
        self._read_turns = []
        self._read_offset = 0

    def read(self) -> list[Turn]:
        with self._lock:
            return self._read_locked()

    def _read_locked(self) -> list[Turn]:
        if not self.path.exists():
            self._reset()
            return []

        if self.path.stat().st_size < self._read_offset:
            # The file was truncated or replaced, so cached turns are stale.
            self._reset()

        with self.path.open("r", encoding="utf-8") as handle:
            handle.seek(self._read_offset)
            for raw_line in handle:
                line = raw_line.strip()
                if not line:
                    continue
                try:
                    payload = json.loads(line)
                except json.JSONDecodeError:
                    continue
                turn = self.turn_from_payload(payload)
                if turn is not None:
                    self._read_turns.append(turn)
            self._read_offset = handle.tell()

        return list(self._read_turns)

    @staticmethod
    def turn_to_payload(turn: Turn) -> dict[str, Any]:
        return {
            "role": turn.role.value,
            "text": turn.text,
            "timestamp": datetime.now(UTC).isoformat(),
        }

    @staticmethod
    def turn_from_payload(payload: object) -> Turn | None:
        if not isinstance(payload, dict):
            return None
        role = payload.get("role")
        text = payload.get("text")
        if role not in (Role.HUMAN.value, Role.AI.value) or not isinstance(text, str):
            return None
        return Turn(Role(role), text)

    def append(self, turns: tuple[Turn, ...]) -> None:
        if not turns:
            return
        with self._lock:
            self._read_locked()
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                for turn in turns:
                    handle.write(json.dumps(self.turn_to_payload(turn), ensure_ascii=False) + "\n")
                    self._read_turns.append(turn)
                self._read_offset = handle.tell()

    def archive(self) -> Path | None:
        with self._lock:
            if not self.path.exists():
                return None
            stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S%fZ")
            archive_file = self.path.with_suffix(f"{HISTORY_FILE_SUFFIX}.{stamp}.bak")
            self.path.replace(archive_file)
            self._reset()
            return archive_file


class FileConversationStore(ConversationStore):
    """Conversation store keeping one append-only JSONL file per conversation.

    Files keep the full exchange; the token budget applies to what `load` returns.
    """

    def __init__(self, root: Path, max_tokens: int = 2048) -> None:
        super().__init__(max_tokens)
        self.root = root.expanduser().resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self._files: dict[ConversationKey, ConversationFile] = {}

    async def load(self, key: ConversationKey) -> list[Turn]:
        turns = self._file(key).read()
        paired = complete_pairs(turns)
        if len(paired) < len(turns):
            logger.warning("history.unpaired key={} dropped={}", key, len(turns) - len(paired))
        return trim_to_budget(paired, self.max_tokens)

    async def append(self, key: ConversationKey, *turns: Turn) -> None:
        check_pairs(turns)
        self._file(key).append(turns)

    async def clear(self, key: ConversationKey) -> None:
        archived = self._file(key).archive()
        if archived is not None:
            logger.info("history.archived key={} path={}", key, archived)

    def keys(self) -> list[ConversationKey]:
        keys: list[ConversationKey] = []
        for path in self.root.glob(f"*{HISTORY_FILE_SUFFIX}"):
            encoded = path.name.removesuffix(HISTORY_FILE_SUFFIX)
            user, separator, provider = encoded.partition(KEY_SEPARATOR)
            if not separator or not user or not provider:
                continue
            keys.append(ConversationKey(unquote(user), unquote(provider)))
        return sorted(keys, key=str)

    def _file(self, key: ConversationKey) -> ConversationFile:
        if key not in self._files:
            name = f"{_encode(key.user)}{KEY_SEPARATOR}{_encode(key.provider)}{HISTORY_FILE_SUFFIX}"
            self._files[key] = ConversationFile(self.root / name)
        return self._files[key]


def _encode(part: str) -> str:
    # "_" is escaped so the key separator never appears inside an encoded part.
    return quote(part, safe="").replace("_", "%5F")
