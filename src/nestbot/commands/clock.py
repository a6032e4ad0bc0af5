from __future__ import annotations

from datetime import datetime
from typing import Callable

from nestbot.handlers import CommandContext, Handler, argument_concat

DEFAULT_TIME_FORMAT = "%Y-%m-%d %H:%M:%S %Z"


def _local_now() -> datetime:
    return datetime.now().astimezone()


class TimeHandler(Handler):
    keywords = ("time",)
    usage = "time [strftime format]"

    def __init__(self, clock: Callable[[], datetime] = _local_now) -> None:
        super().__init__()
        self.clock = clock

    async def handle(self, ctx: CommandContext) -> str | None:
        arguments = await ctx.arguments()
        fmt = argument_concat(arguments, 1) or DEFAULT_TIME_FORMAT
        try:
            formatted = self.clock().strftime(fmt)
        except ValueError:
            return f"Invalid time format. Please refer to {ctx.prefix}help time for valid arguments."
        return f"It is now {formatted.strip()}"
