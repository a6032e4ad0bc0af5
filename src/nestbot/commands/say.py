from __future__ import annotations

from nestbot.handlers import CommandContext, Handler, argument_concat


class SayHandler(Handler):
    keywords = ("say", "parse")
    usage = "say <message> | parse <text>"

    async def handle(self, ctx: CommandContext) -> str | None:
        if ctx.is_command("parse"):
            return str(ctx.invocation)
        arguments = await ctx.arguments()
        if len(arguments) <= 1:
            return f"Usage: {ctx.prefix}say <message>"
        return argument_concat(arguments, 1)
