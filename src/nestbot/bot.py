from __future__ import annotations

import asyncio

import discord

from nestbot.commands.catalog import install_builtins, register_builtins
from nestbot.config import Settings
from nestbot.dispatcher import Dispatcher
from nestbot.handlers import MessageSink
from nestbot.models import Identity, Scope
from nestbot.permissions import PermissionResolver
from nestbot.registry import HandlerCatalog, HandlerRegistry
from nestbot.services.command_service import CommandService
from nestbot.services.identity_service import IdentityService
from nestbot.services.logger_service import LoggerService
from nestbot.storage import MessagePackStore

DISCORD_MESSAGE_LIMIT = 1900


def split_text_for_discord(text: str, limit: int = DISCORD_MESSAGE_LIMIT) -> list[str]:
    remaining = str(text or "").strip()
    if not remaining:
        return []
    parts: list[str] = []
    while len(remaining) > limit:
        cut = remaining.rfind("\n", 0, limit)
        if cut <= 0:
            cut = remaining.rfind(" ", 0, limit)
        if cut <= 0:
            cut = limit
        parts.append(remaining[:cut].rstrip())
        remaining = remaining[cut:].lstrip()
    if remaining:
        parts.append(remaining)
    return parts


class DiscordSink:
    def __init__(self, target: discord.abc.Messageable | None, identity: Identity, logger: LoggerService) -> None:
        self.target = target
        self.identity = identity
        self.logger = logger

    async def send(self, text: str) -> None:
        if self.target is None:
            self.logger.log("sink.unavailable", identity_id=self.identity.id, chars=len(text))
            return
        for part in split_text_for_discord(text):
            try:
                await self.target.send(part)
            except (discord.Forbidden, discord.HTTPException) as exc:
                self.logger.log("sink.send_failed", identity_id=self.identity.id, error=str(exc)[:300])
                return

    async def send_highlighted(self, text: str) -> None:
        await self.send(f"{self.identity.display}: {text}")

    async def send_error(self, text: str) -> None:
        await self.send(f"**{text}**")


class DiscordSinkProvider:
    def __init__(self, client: discord.Client, logger: LoggerService) -> None:
        self.client = client
        self.logger = logger

    def sink_for(self, scope: Scope, identity: Identity) -> MessageSink:
        target: discord.abc.Messageable | None = None
        try:
            if scope.is_channel:
                channel = self.client.get_channel(int(scope.id))
                if isinstance(channel, discord.abc.Messageable):
                    target = channel
            else:
                target = self.client.get_user(int(identity.id))
        except ValueError:
            target = None
        return DiscordSink(target, identity, self.logger)


def identity_from_author(author: discord.abc.User) -> Identity:
    return Identity(
        id=str(author.id),
        name=str(getattr(author, "display_name", "") or getattr(author, "name", "")),
        mention=str(getattr(author, "mention", "")),
    )


class NestBot(discord.Client):
    def __init__(self, settings: Settings) -> None:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.messages = True
        intents.message_content = True
        intents.dm_messages = True
        super().__init__(intents=intents)
        self.settings = settings
        self.store = MessagePackStore(settings.store_path)
        self.logger = LoggerService(self.store)
        self.identities = IdentityService(settings, self.store)
        self.catalog = HandlerCatalog()
        self.registry = HandlerRegistry(settings, self.store, self.logger, self.catalog)
        register_builtins(self.catalog, self.registry, self.identities, self.close)
        self.permissions = PermissionResolver(self.identities, self.logger)
        self.sinks = DiscordSinkProvider(self, self.logger)
        self.dispatcher = Dispatcher(
            self.registry,
            self.permissions,
            self.sinks,
            self.logger,
            prefix=settings.command_prefix,
        )
        self.command_service = CommandService(settings, self.dispatcher, self.logger)
        self._autosave_task: asyncio.Task | None = None

    async def setup_hook(self) -> None:
        await self.store.load()
        self._autosave_task = asyncio.create_task(self.store.autosave_loop(), name="msgpack-autosave")
        seeded = install_builtins(self.registry)
        loaded = self.registry.load_installed()
        self.logger.log("bot.handlers_loaded", seeded=seeded, loaded=loaded)

    async def close(self) -> None:
        await self.registry.close_all()
        if self._autosave_task is not None:
            self._autosave_task.cancel()
        await self.store.save()
        await super().close()

    async def on_ready(self) -> None:
        self.logger.log("bot.ready", user=str(self.user), guilds=len(self.guilds))

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot:
            return
        identity = identity_from_author(message.author)
        try:
            if isinstance(message.channel, discord.DMChannel):
                await self.command_service.handle_private_message(identity, message.content)
            elif message.guild is not None:
                await self.command_service.handle_channel_message(message.channel.id, identity, message.content)
        except Exception as exc:  # noqa: BLE001
            self.logger.log(
                "command.error",
                identity_id=identity.id,
                text=str(message.content)[:200],
                error=str(exc)[:300],
            )


def main() -> None:
    settings = Settings.load()
    bot = NestBot(settings)
    bot.run(settings.discord_token)
