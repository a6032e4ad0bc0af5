from __future__ import annotations

from typing import TYPE_CHECKING

from nestbot.errors import UnknownHandlerError
from nestbot.handlers import CommandContext, QueuedHandler
from nestbot.permissions import PermissionLevel

if TYPE_CHECKING:
    from nestbot.registry import HandlerRegistry

TRUE_WORDS = {"1", "true", "yes", "on", "y"}


def string_to_bool(value: str | None) -> bool:
    return str(value or "").strip().lower() in TRUE_WORDS


class CommandAdminHandler(QueuedHandler):
    """``command`` subcommands: install, load, unload, add, remove, reload."""

    keywords = ("command",)
    required_level = PermissionLevel.ADMINISTRATOR
    usage = "command [install <name> <channels> <users> | load|unload|add|remove <name> | reload]"

    def __init__(self, registry: "HandlerRegistry") -> None:
        super().__init__()
        self.registry = registry

    def action_name(self, ctx: CommandContext) -> str:
        return "managing commands"

    async def handle(self, ctx: CommandContext) -> None:
        arguments = await ctx.arguments()
        sub = (arguments[1] or "").lower() if len(arguments) > 1 else ""
        name = (arguments[2] or "").strip().lower() if len(arguments) > 2 else ""

        if not sub:
            names = [handler.name for handler in self.registry.handlers_for(ctx.scope)]
            await ctx.reply(f"The following commands are loaded for {ctx.scope.id}:")
            await ctx.reply("; ".join(names) if names else "(none)")
            return

        if sub == "reload":
            await self._reload_all(ctx)
            return

        if sub == "install":
            if not await ctx.require("installing commands", PermissionLevel.OWNER):
                return
            if len(arguments) < 5 or not name:
                await ctx.send_error(self._invalid(ctx))
                return
            await self._install(ctx, name, string_to_bool(arguments[3]), string_to_bool(arguments[4]))
            return

        actions = {
            "load": (self.registry.register, "Command loaded. For permanent use, please use 'add'."),
            "add": (self.registry.add, "Command added permanently."),
            "unload": (self.registry.unregister, "Command successfully unloaded."),
            "remove": (self.registry.remove, "Command removed permanently."),
        }
        if sub not in actions or not name:
            await ctx.send_error(self._invalid(ctx))
            return
        operation, done_message = actions[sub]
        try:
            operation(name, ctx.scope)
        except UnknownHandlerError:
            await ctx.send_error("Command is unknown. Have you already installed it?")
            return
        await ctx.reply(done_message)

    def _invalid(self, ctx: CommandContext) -> str:
        return f"Invalid command. Use '{ctx.prefix}help command' for more information."

    async def _install(self, ctx: CommandContext, name: str, channels: bool, users: bool) -> None:
        try:
            self.registry.install(name, autoregister_channels=channels, autoregister_users=users)
        except UnknownHandlerError:
            await ctx.send_error("Command could not be found.")
            return
        if channels and users:
            await ctx.reply("Command was successfully installed and loaded for every channel and user.")
        elif channels:
            await ctx.reply("Command was successfully installed and loaded for every channel.")
        elif users:
            await ctx.reply("Command was successfully installed and loaded for every user.")
        else:
            await ctx.reply("Command was successfully installed. Use 'load' or 'add' to load it.")

    async def _reload_all(self, ctx: CommandContext) -> None:
        if not await ctx.require("reloading commands", PermissionLevel.OWNER):
            return
        await ctx.reply("Reloading all commands...")

        async def reload_everything() -> None:
            try:
                await self.registry.reload_all()
            except Exception as exc:  # noqa: BLE001
                self._log("command.reload_failed", error=str(exc)[:300])
                await ctx.send_error(f"Fatal error while reloading commands: {exc}")
                return
            await ctx.reply("All commands are reloaded.")

        # The reload drains this handler too, so it cannot run on the worker.
        self.spawn(reload_everything(), name=f"command-reload-{ctx.scope.key}")
