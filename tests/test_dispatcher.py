from __future__ import annotations

import asyncio

from nestbot.handlers import CommandContext, Handler, argument_concat
from nestbot.models import Identity, Scope
from nestbot.permissions import PermissionLevel
from nestbot.tokenizer import parse

from support import events, make_core

CHANNEL = Scope.channel("100")
BOB = Identity("5", name="bob", mention="<@5>")


class Silent(Handler):
    keywords = ("x", "quiet")

    async def handle(self, ctx: CommandContext) -> str | None:
        await ctx.sink.send("silent ran")
        return None


class First(Handler):
    keywords = ("x",)

    async def handle(self, ctx: CommandContext) -> str | None:
        return "first"


class Second(Handler):
    keywords = ("x",)

    async def handle(self, ctx: CommandContext) -> str | None:
        await ctx.sink.send("second ran")
        return "second"


class Boom(Handler):
    keywords = ("boom",)

    async def handle(self, ctx: CommandContext) -> str | None:
        raise RuntimeError("kaput")


class Fallback(Handler):
    keywords = ("boom",)

    async def handle(self, ctx: CommandContext) -> str | None:
        return "still here"


class Guarded(Handler):
    keywords = ("guarded",)
    required_level = PermissionLevel.OPERATOR

    async def handle(self, ctx: CommandContext) -> str | None:
        return "secret"


class Echo(Handler):
    keywords = ("echo",)

    async def handle(self, ctx: CommandContext) -> str | None:
        return argument_concat(await ctx.arguments(), 1)


class Args(Handler):
    keywords = ("args",)

    async def handle(self, ctx: CommandContext) -> str | None:
        return repr(await ctx.arguments())


def _core(tmp_path, *names: str):
    core = make_core(tmp_path)
    classes = {
        "silent": Silent,
        "first": First,
        "second": Second,
        "boom": Boom,
        "fallback": Fallback,
        "guarded": Guarded,
        "echo": Echo,
        "args": Args,
    }
    for name in names:
        core.catalog.register(name, classes[name])
        core.registry.install(name, autoregister_channels=True, autoregister_users=True)
    return core


def test_first_reply_wins_but_every_handler_runs(tmp_path) -> None:
    async def scenario() -> None:
        core = _core(tmp_path, "silent", "first", "second")
        result = await core.dispatcher.dispatch(CHANNEL, BOB, parse("!x"))
        assert result == "first"
        assert core.sinks.lines(CHANNEL, BOB) == [("send", "silent ran"), ("send", "second ran")]

    asyncio.run(scenario())


def test_nothing_matches_returns_none(tmp_path) -> None:
    async def scenario() -> None:
        core = _core(tmp_path, "first")
        assert await core.dispatcher.dispatch(CHANNEL, BOB, parse("!nobody")) is None
        assert await core.dispatcher.dispatch(CHANNEL, BOB, parse("x")) == "first"

    asyncio.run(scenario())


def test_handler_failure_is_logged_and_others_continue(tmp_path) -> None:
    async def scenario() -> None:
        core = _core(tmp_path, "boom", "fallback")
        assert await core.dispatcher.dispatch(CHANNEL, BOB, parse("!boom")) == "still here"
        row = core.logger.recent("handler.failed")[-1]
        assert row["data"]["handler"] == "boom"
        assert "kaput" in row["data"]["error"]

    asyncio.run(scenario())


def test_insufficient_level_is_denied_with_message(tmp_path) -> None:
    async def scenario() -> None:
        core = _core(tmp_path, "guarded")
        assert await core.dispatcher.dispatch(CHANNEL, BOB, parse("!guarded")) is None
        assert core.sinks.lines(CHANNEL, BOB) == [
            (
                "error",
                "<@5>: You don't have the required permission for 'guarded'. "
                "Your level is 'none', but 'operator' is required.",
            )
        ]
        assert "permission.denied" in events(core.logger)

    asyncio.run(scenario())


def test_channel_override_grants_access_in_that_channel_only(tmp_path) -> None:
    async def scenario() -> None:
        core = _core(tmp_path, "guarded")
        core.identities.set_scope_level(BOB.id, CHANNEL, PermissionLevel.OPERATOR)
        assert await core.dispatcher.dispatch(CHANNEL, BOB, parse("!guarded")) == "secret"
        assert await core.dispatcher.dispatch(Scope.channel("200"), BOB, parse("!guarded")) is None

    asyncio.run(scenario())


def test_private_dispatch_uses_identity_scope(tmp_path) -> None:
    async def scenario() -> None:
        core = _core(tmp_path, "silent")
        assert await core.dispatcher.dispatch(None, BOB, parse("!quiet")) is None
        assert core.sinks.lines(Scope.private(BOB.id), BOB) == [("send", "silent ran")]

    asyncio.run(scenario())


def test_nested_invocations_are_substituted(tmp_path) -> None:
    async def scenario() -> None:
        core = _core(tmp_path, "echo", "first", "second")
        assert await core.dispatcher.dispatch(CHANNEL, BOB, parse("!echo a {!x} b")) == "a first b"
        assert await core.dispatcher.dispatch(CHANNEL, BOB, parse("!echo a !echo b !x")) == "a b first"

    asyncio.run(scenario())


def test_silent_nested_invocation_leaves_a_hole(tmp_path) -> None:
    async def scenario() -> None:
        core = _core(tmp_path, "args", "silent")
        reply = await core.dispatcher.dispatch(CHANNEL, BOB, parse("!args a {!quiet} {!unknown}"))
        assert reply == "['!args', 'a', None, None]"

    asyncio.run(scenario())


def test_nested_invocation_checks_its_own_permission(tmp_path) -> None:
    async def scenario() -> None:
        core = _core(tmp_path, "echo", "guarded")
        assert await core.dispatcher.dispatch(CHANNEL, BOB, parse("!echo a {!guarded}")) == "a"
        assert core.sinks.lines(CHANNEL, BOB)[0][0] == "error"

    asyncio.run(scenario())


def test_argument_concat_skips_holes_and_honours_end() -> None:
    arguments = ["!say", "a", None, "b", "c"]
    assert argument_concat(arguments, 1) == "a b c"
    assert argument_concat(arguments, 1, 3) == "a b"
    assert argument_concat(arguments, 5) == ""
