from __future__ import annotations

from typing import TYPE_CHECKING

from nestbot.handlers import CommandContext, QueuedHandler

if TYPE_CHECKING:
    from nestbot.registry import HandlerRegistry


def _scope_label(ctx: CommandContext) -> str:
    return f"channel {ctx.scope.id}" if ctx.scope.is_channel else ctx.identity.display


class CommandsHandler(QueuedHandler):
    keywords = ("commands",)
    usage = "commands"

    def __init__(self, registry: "HandlerRegistry") -> None:
        super().__init__()
        self.registry = registry

    async def handle(self, ctx: CommandContext) -> None:
        level = ctx.level()
        keywords: set[str] = set()
        for handler in self.registry.handlers_for(ctx.scope):
            keywords.update(handler.listed_keywords(level))
        if not keywords:
            await ctx.reply(f"No commands are available for {_scope_label(ctx)}.")
            return
        await ctx.reply(f"The following commands are supported for {_scope_label(ctx)}: {', '.join(sorted(keywords))}")


class HelpHandler(QueuedHandler):
    keywords = ("help",)
    usage = "help [command]"

    def __init__(self, registry: "HandlerRegistry") -> None:
        super().__init__()
        self.registry = registry

    async def handle(self, ctx: CommandContext) -> None:
        arguments = await ctx.arguments()
        wanted = (arguments[1] or "").lstrip(ctx.prefix).lower() if len(arguments) > 1 else ""
        level = ctx.level()
        lines: list[str] = []
        for handler in self.registry.handlers_for(ctx.scope):
            listed = handler.listed_keywords(level)
            if not listed or not handler.usage:
                continue
            if wanted and wanted not in listed:
                continue
            lines.append(f"{ctx.prefix}{handler.usage}")
        if not lines:
            if wanted:
                await ctx.send_error(f"No help available for '{wanted}'.", personal=True)
            else:
                await ctx.reply("No commands are available here.", personal=True)
            return
        for line in lines:
            await ctx.private_sink.send(line)
