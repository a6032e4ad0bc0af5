from __future__ import annotations

import re
from typing import TYPE_CHECKING

from nestbot.handlers import CommandContext, Handler
from nestbot.models import Identity
from nestbot.permissions import PermissionLevel

if TYPE_CHECKING:
    from nestbot.services.identity_service import IdentityService

MENTION_RE = re.compile(r"^<@!?(\d+)>$")


def identity_id_from_argument(value: str) -> str:
    raw = value.strip()
    match = MENTION_RE.match(raw)
    return match.group(1) if match else raw


class UserLevelHandler(Handler):
    """``user`` shows and changes permission levels.

    ``user`` reports the caller's level, ``user <who>`` reports someone else's,
    ``user <who> channel <level|remove>`` edits the channel override and
    ``user <who> global <level>`` edits the global level.
    """

    keywords = ("user",)
    usage = "user [<who> [channel <level|remove> | global <level>]]"

    def __init__(self, identities: "IdentityService") -> None:
        super().__init__()
        self.identities = identities

    async def handle(self, ctx: CommandContext) -> str | None:
        arguments = await ctx.arguments()
        if len(arguments) <= 1 or not arguments[1]:
            await ctx.reply(f"Your level is '{ctx.level()}'.", personal=True)
            return None

        target_id = identity_id_from_argument(arguments[1])
        target = Identity(id=target_id, name=target_id)
        if len(arguments) == 2:
            level = ctx.dispatcher.permissions.effective_level(target, ctx.scope)
            await ctx.reply(f"{target_id} is a {level}", personal=True)
            return None

        mode = (arguments[2] or "").lower()
        value = arguments[3] if len(arguments) > 3 else None
        if mode == "channel":
            await self._change_channel_level(ctx, target_id, value)
        elif mode == "global":
            await self._change_global_level(ctx, target_id, value)
        else:
            await ctx.send_error(
                f"Correct syntax is {ctx.prefix}user <who> channel <level> or {ctx.prefix}user <who> global <level>",
                personal=True,
            )
        return None

    async def _change_channel_level(self, ctx: CommandContext, target_id: str, value: str | None) -> None:
        if not ctx.scope.is_channel:
            await ctx.send_error("Channel levels can only be changed inside a channel.", personal=True)
            return
        if not value:
            await ctx.send_error(f"Correct syntax is {ctx.prefix}user <who> channel <level>", personal=True)
            return
        if not await ctx.require("changing channel permissions", PermissionLevel.ADMINISTRATOR):
            return
        if value.strip().lower() == "remove":
            self.identities.remove_scope_level(target_id, ctx.scope)
            await ctx.reply(f"Channel level of {target_id} removed.", personal=True)
            return
        level = PermissionLevel.parse(value)
        if level is None or level < PermissionLevel.IDENTIFIED or level > PermissionLevel.ADMINISTRATOR:
            await ctx.send_error("Valid levels are identified, user, operator and administrator.", personal=True)
            return
        self.identities.set_scope_level(target_id, ctx.scope, level)
        await ctx.reply(f"Channel level of {target_id} changed to {level}", personal=True)

    async def _change_global_level(self, ctx: CommandContext, target_id: str, value: str | None) -> None:
        if not value:
            await ctx.send_error(f"Correct syntax is {ctx.prefix}user <who> global <level>", personal=True)
            return
        if not await ctx.require("changing user permissions", PermissionLevel.OWNER):
            return
        level = PermissionLevel.parse(value)
        if level is None or level < PermissionLevel.IDENTIFIED:
            await ctx.send_error(
                "Valid levels are identified, user, operator, administrator and owner.", personal=True
            )
            return
        self.identities.set_level(target_id, level)
        await ctx.reply(f"Global level of {target_id} changed to {level}", personal=True)
