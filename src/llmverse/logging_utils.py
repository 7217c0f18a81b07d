"""Runtime logging helpers."""

from __future__ import annotations

import sys
from contextvars import ContextVar
from logging import Handler
from typing import Literal

import loguru
from loguru import logger
from rich import get_console
from rich.logging import RichHandler

LogFormat = Literal["text", "json", "console"]

_TEXT_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<6} | {name}:{function}:{line} | {extra[turn]} | {message}"
_current_turn: ContextVar[str] = ContextVar("turn", default="-")
_CONFIGURED: tuple[str, LogFormat] | None = None


def current_turn() -> str:
    """Get the conversation key of the turn being processed."""
    return _current_turn.get()


def bind_turn(key: str) -> None:
    """Tag log records emitted by the current task with a conversation key."""
    _current_turn.set(key)


def _inject_context(record: loguru.Record) -> None:
    record["extra"]["turn"] = current_turn()


def _build_console_handler() -> Handler:
    return RichHandler(
        console=get_console(),
        show_level=True,
        show_time=False,
        show_path=False,
        markup=False,
        rich_tracebacks=False,
    )


def configure_logging(level: str = "INFO", log_format: LogFormat = "text") -> None:
    """Configure process-level logging once."""
    global _CONFIGURED
    level = level.upper()
    if _CONFIGURED == (level, log_format):
        return

    logger.remove()
    if log_format == "console":
        logger.add(_build_console_handler(), level=level, format="{extra[turn]} | {message}", backtrace=False)
    elif log_format == "json":
        logger.add(sys.stderr, level=level, serialize=True, backtrace=False, diagnose=False)
    else:
        logger.add(sys.stderr, level=level, format=_TEXT_FORMAT, backtrace=False, diagnose=False)
    logger.configure(patcher=_inject_context)
    _CONFIGURED = (level, log_format)
