from __future__ import annotations

from typing import TYPE_CHECKING

from nestbot.errors import HandlerClosedError
from nestbot.handlers import CommandContext, Handler, SinkProvider
from nestbot.message import DEFAULT_PREFIX, Invocation, Literal
from nestbot.models import Identity, Scope
from nestbot.permissions import PermissionResolver

if TYPE_CHECKING:
    from nestbot.registry import HandlerRegistry
    from nestbot.services.logger_service import LoggerService


class Dispatcher:
    """Routes an invocation to every handler registered for its scope.

    The first non-``None`` reply in registry order is returned. Every other
    handler still runs, so its own side effects happen, but its reply is dropped.
    """

    def __init__(
        self,
        registry: "HandlerRegistry",
        permissions: PermissionResolver,
        sinks: SinkProvider,
        logger: "LoggerService",
        prefix: str = DEFAULT_PREFIX,
    ) -> None:
        self.registry = registry
        self.permissions = permissions
        self.sinks = sinks
        self.logger = logger
        self.prefix = prefix

    @staticmethod
    def resolve_scope(scope: Scope | None, identity: Identity) -> Scope:
        return scope if scope is not None else Scope.private(identity.id)

    async def dispatch(self, scope: Scope | None, identity: Identity, invocation: Invocation) -> str | None:
        target = self.resolve_scope(scope, identity)
        ctx = CommandContext(dispatcher=self, scope=target, identity=identity, invocation=invocation)
        result: str | None = None
        for handler in self.registry.handlers_for(target):
            try:
                reply = await self._deliver(handler, ctx)
            except Exception as exc:  # noqa: BLE001
                self.logger.log(
                    "handler.failed",
                    handler=handler.name,
                    scope=target.key,
                    identity_id=identity.id,
                    keyword=invocation.keyword or "",
                    error=str(exc)[:300],
                )
                continue
            if result is None and reply is not None:
                result = reply
        return result

    async def _deliver(self, handler: Handler, ctx: CommandContext) -> str | None:
        if not handler.handles(ctx):
            return None
        auth = self.permissions.check(handler.action_name(ctx), handler.required_level, ctx.identity, ctx.scope)
        if not auth:
            await ctx.deny(auth)
            return None
        target: Handler | None = handler
        tried: set[int] = set()
        # A draining instance hands the item to whichever instance replaced it.
        while target is not None and id(target) not in tried:
            tried.add(id(target))
            try:
                return await target.receive(ctx)
            except HandlerClosedError:
                target = self.registry.current(handler.name)
        self.logger.log("handler.rejected", handler=handler.name, scope=ctx.scope.key)
        return None

    async def materialize(self, ctx: CommandContext) -> list[str | None]:
        """Flatten an invocation into its argument list.

        Nested invocations are dispatched in the same scope for the same identity
        and replaced by their reply, or by ``None`` when nothing answered.
        """
        arguments: list[str | None] = []
        for child in ctx.invocation.children:
            if isinstance(child, Literal):
                arguments.append(child.text)
            else:
                arguments.append(await self.dispatch(ctx.scope, ctx.identity, child))
        return arguments
