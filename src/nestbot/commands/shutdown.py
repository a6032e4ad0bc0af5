from __future__ import annotations

from typing import Awaitable, Callable

from nestbot.handlers import CommandContext, QueuedHandler
from nestbot.permissions import PermissionLevel


class ShutdownHandler(QueuedHandler):
    keywords = ("shutdown",)
    required_level = PermissionLevel.OWNER
    usage = "shutdown"

    def __init__(self, shutdown: Callable[[], Awaitable[None]]) -> None:
        super().__init__()
        self._shutdown = shutdown

    def action_name(self, ctx: CommandContext) -> str:
        return "managing the bot"

    async def handle(self, ctx: CommandContext) -> None:
        await ctx.reply("The bot will be shut down. Goodbye!")
        self._log("bot.shutdown_requested", identity_id=ctx.identity.id, scope=ctx.scope.key)
        # Closing the bot drains this handler, so it cannot run on the worker.
        self.spawn(self._shutdown(), name="bot-shutdown")
