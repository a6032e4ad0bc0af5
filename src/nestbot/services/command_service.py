from __future__ import annotations

from nestbot.config import Settings
from nestbot.dispatcher import Dispatcher
from nestbot.message import Invocation
from nestbot.models import Identity, Scope
from nestbot.services.logger_service import LoggerService
from nestbot.tokenizer import parse


class CommandService:
    """Entry point for raw lines coming off the transport."""

    def __init__(self, settings: Settings, dispatcher: Dispatcher, logger: LoggerService) -> None:
        self.settings = settings
        self.dispatcher = dispatcher
        self.logger = logger

    def extract_command_text(self, text: str) -> str | None:
        """Return the command part of a channel line, or ``None`` if it is not addressed to us."""
        raw = str(text or "")
        nick = self.settings.alternate_prefix_nick
        if nick and raw.startswith(f"{nick}:"):
            raw = raw[len(nick) + 1:]
        elif not raw.startswith(self.settings.command_prefix):
            return None
        raw = raw.strip()
        return raw or None

    def parse(self, text: str) -> Invocation:
        return parse(text, self.settings.command_prefix)

    async def handle_channel_message(self, channel_id: object, identity: Identity, text: str) -> str | None:
        command_text = self.extract_command_text(text)
        if command_text is None:
            return None
        scope = Scope.channel(channel_id)
        result = await self.dispatcher.dispatch(scope, identity, self.parse(command_text))
        if result:
            await self.dispatcher.sinks.sink_for(scope, identity).send(result)
        return result

    async def handle_private_message(self, identity: Identity, text: str) -> str | None:
        command_text = str(text or "").strip()
        if not command_text:
            return None
        scope = Scope.private(identity.id)
        result = await self.dispatcher.dispatch(None, identity, self.parse(command_text))
        if result:
            await self.dispatcher.sinks.sink_for(scope, identity).send(result)
        return result
