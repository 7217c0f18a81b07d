"""Discord channel adapter."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import cast

import discord
from loguru import logger

from llmverse.app.runtime import AppRuntime
from llmverse.core.types import TurnRequest

IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".webp")
CLEAR_COMMAND = "$clear"
MODELS_COMMAND = "$models"
BOT_PREFIX = "🤖 "
NO_IMAGE_REPLY = f"{BOT_PREFIX}no image found. only png, jpg, jpeg, gif or webp supported"
_MENTION_PATTERN = re.compile(r"<[^>]+>")


def strip_mentions(content: str) -> str:
    """Drop mention tags and leading whitespace from a message."""
    return _MENTION_PATTERN.sub("", content).lstrip()


def image_urls(attachments: list[discord.Attachment]) -> tuple[str, ...]:
    return tuple(attachment.url for attachment in attachments if attachment.filename.lower().endswith(IMAGE_SUFFIXES))


@dataclass(frozen=True)
class DiscordConfig:
    """Discord adapter config."""

    token: str
    allow_from: set[str]
    allow_channels: set[str]
    proxy: str | None = None


class DiscordSurface:
    """Renders delivery windows as replies to one Discord message.

    Every window is prefixed with `<model>: ` so that replying to it addresses the same model.
    """

    def __init__(self, message: discord.Message, model: str) -> None:
        self._message = message
        self.prefix = f"{model}: "

    async def create(self, text: str) -> discord.Message:
        return await self._message.reply(self.prefix + text, mention_author=False)

    async def edit(self, handle: discord.Message, text: str) -> None:
        await handle.edit(content=self.prefix + text)


class DiscordChannel:
    """Discord adapter based on discord.py."""

    name = "discord"

    def __init__(self, runtime: AppRuntime) -> None:
        self.runtime = runtime
        settings = runtime.settings
        self._config = DiscordConfig(
            token=settings.discord_bot_token,
            allow_from=set(settings.discord_allow_from),
            allow_channels=set(settings.discord_allow_channels),
            proxy=settings.discord_proxy,
        )
        self._client: discord.Client | None = None

    async def start(self) -> None:
        if not self._config.token:
            raise RuntimeError("discord token is empty")

        intents = discord.Intents.default()
        intents.messages = True
        intents.message_content = True
        client = discord.Client(intents=intents, proxy=self._config.proxy)
        self._client = client

        @client.event
        async def on_ready() -> None:
            logger.info("discord.ready user={} id={}", str(client.user), client.user.id if client.user else "<unknown>")

        @client.event
        async def on_message(message: discord.Message) -> None:
            await self.handle_message(message)

        logger.info(
            "discord.start models={} allow_from_count={} allow_channels_count={} proxy_enabled={}",
            ",".join(self.runtime.available_models()),
            len(self._config.allow_from),
            len(self._config.allow_channels),
            bool(self._config.proxy),
        )
        try:
            async with client:
                await client.start(self._config.token)
        finally:
            self._client = None
            logger.info("discord.stopped")

    @property
    def bot_user(self) -> discord.ClientUser | None:
        return self._client.user if self._client is not None else None

    async def handle_message(self, message: discord.Message) -> None:
        if not self._should_reply(message):
            return

        content = strip_mentions(message.content)
        user = message.author.name
        logger.info(
            "discord.inbound channel_id={} sender_id={} username={} content={}",
            message.channel.id,
            message.author.id,
            user,
            content[:100],
        )

        if content == CLEAR_COMMAND:
            cleared = await self.runtime.clear_history(user)
            logger.info("discord.history.cleared username={} conversations={}", user, cleared)
            await message.reply(f"{BOT_PREFIX}history cleared.", mention_author=False)
            return
        if content == MODELS_COMMAND:
            models = ", ".join(self.runtime.available_models())
            await message.reply(
                f"{BOT_PREFIX}available models: {models}. begin your question with `model: `",
                mention_author=False,
            )
            return

        model, text = self._route(message, content)
        if model is None:
            logger.debug("discord.inbound.unrouted message_id={}", message.id)
            return

        images: tuple[str, ...] = ()
        if message.attachments:
            images = image_urls(list(message.attachments))
            if not images:
                await message.reply(NO_IMAGE_REPLY, mention_author=False)
                return

        surface = DiscordSurface(message, model)
        request = TurnRequest(user=user, model=model, text=text, image_urls=images)
        try:
            async with message.channel.typing():
                await self.runtime.run_turn(request, surface, reserve=len(surface.prefix))
        except Exception:
            logger.exception("discord.turn.error message_id={} model={}", message.id, model)

    def _route(self, message: discord.Message, content: str) -> tuple[str | None, str]:
        model, text = self.runtime.parse_model_name(content)
        if model is not None:
            return model, text

        ref = message.reference
        # Deleted references resolve to an object without content.
        replied_to = getattr(ref.resolved, "content", None) if ref is not None else None
        if isinstance(replied_to, str):
            model, _ = self.runtime.parse_model_name(strip_mentions(replied_to))
            if model is not None:
                return model, content

        return self.runtime.settings.default_model, content

    def _should_reply(self, message: discord.Message) -> bool:
        bot_user = self.bot_user
        if message.author.bot or message.mention_everyone:
            return False
        if bot_user is not None and message.author.id == bot_user.id:
            return False

        channel_id = str(message.channel.id)
        if self._config.allow_channels and channel_id not in self._config.allow_channels:
            return False

        sender_tokens = {str(message.author.id), message.author.name}
        if getattr(message.author, "global_name", None):
            sender_tokens.add(cast(str, message.author.global_name))
        if self._config.allow_from and sender_tokens.isdisjoint(self._config.allow_from):
            logger.warning(
                "discord.inbound.denied channel_id={} sender_id={} reason=allow_from",
                message.channel.id,
                message.author.id,
            )
            return False

        if message.guild is None:
            return True
        return bot_user is not None and any(mention.id == bot_user.id for mention in message.mentions)
