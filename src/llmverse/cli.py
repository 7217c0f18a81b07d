"""llmverse command line interface."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import NoReturn

import typer
from loguru import logger
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from llmverse.app.runtime import AppRuntime
from llmverse.config import Settings, load_settings
from llmverse.core.types import TurnRequest
from llmverse.errors import ConfigurationError
from llmverse.logging_utils import configure_logging

app = typer.Typer(
    name="llmverse",
    help="Stream answers from several LLM providers into chat.",
    add_completion=False,
    rich_markup_mode="rich",
)

_console = Console()
CONFIG_OPTION = typer.Option(None, "--config", "-c", help="JSON settings file")
ENV_FILE_OPTION = typer.Option(None, "--env-file", help="Env file to read settings from")


class ConsoleSurface:
    """Delivery surface that keeps windows in memory and renders them with rich."""

    def __init__(self, console: Console) -> None:
        self.console = console
        self.messages: list[str] = []
        self.edits = 0

    async def create(self, text: str) -> int:
        self.messages.append(text)
        return len(self.messages) - 1

    async def edit(self, handle: int, text: str) -> None:
        self.messages[handle] = text
        self.edits += 1

    def render(self, title: str) -> None:
        total = len(self.messages)
        for index, text in enumerate(self.messages, start=1):
            self.console.print(Panel(Text(text), title=Text(f"{title} [{index}/{total}]"), title_align="left"))


def _exit_with_error(message: str) -> NoReturn:
    _console.print(Text.assemble(("Error: ", "bold red"), message), soft_wrap=True)
    raise typer.Exit(1)


def _load(config_file: Path | None, env_file: Path | None) -> Settings:
    try:
        settings = load_settings(config_file, env_file=env_file)
    except (ConfigurationError, ValidationError) as exc:
        _exit_with_error(str(exc))
    configure_logging(settings.effective_log_level, settings.log_format)
    return settings


@app.command()
def bot(
    config_file: Path | None = CONFIG_OPTION,
    env_file: Path | None = ENV_FILE_OPTION,
) -> None:
    """Run the Discord bot."""
    from llmverse.channels.discord import DiscordChannel

    settings = _load(config_file, env_file)
    if not settings.discord_bot_token:
        _exit_with_error("discord_bot_token is required to run the bot")

    async def _serve() -> None:
        runtime = AppRuntime(settings)
        try:
            await DiscordChannel(runtime).start()
        finally:
            await runtime.aclose()

    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        logger.info("bot.interrupted")


@app.command()
def chat(
    model: str = typer.Argument(..., help="Enabled model name, e.g. openai"),
    message: str = typer.Argument(..., help="Message to send"),
    user: str = typer.Option("console", "--user", "-u", help="Conversation owner"),
    config_file: Path | None = CONFIG_OPTION,
    env_file: Path | None = ENV_FILE_OPTION,
) -> None:
    """Run one turn against a model and print the delivered messages."""
    settings = _load(config_file, env_file)
    if settings.get_model(model) is None:
        _exit_with_error(f"model {model} is not enabled; available: {', '.join(settings.model_names()) or '-'}")

    surface = ConsoleSurface(_console)

    async def _run() -> None:
        runtime = AppRuntime(settings)
        try:
            await runtime.run_turn(TurnRequest(user=user, model=model, text=message), surface)
        finally:
            await runtime.aclose()

    asyncio.run(_run())
    surface.render(model)


@app.command()
def models(
    config_file: Path | None = CONFIG_OPTION,
    env_file: Path | None = ENV_FILE_OPTION,
) -> None:
    """List enabled models and their capabilities."""
    settings = _load(config_file, env_file)
    enabled = settings.enabled_models()
    if not enabled:
        _console.print("[dim]No models enabled.[/dim]")
        return
    for model in sorted(enabled, key=lambda item: item.name):
        flags = [
            name
            for name, on in (
                ("vision", model.has_vision_support),
                ("tools", model.has_tool_support),
                ("system", model.has_system_support),
                ("streaming", model.has_streaming_support),
            )
            if on
        ]
        _console.print(f"[bold]{model.name}[/bold] [magenta]{model.model}[/magenta] [green]{', '.join(flags)}[/green]")
