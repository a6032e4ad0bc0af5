from __future__ import annotations

import asyncio

from nestbot.handlers import CommandContext, Handler, argument_concat
from nestbot.models import Identity, Scope
from nestbot.services.command_service import CommandService

from support import make_core

BOB = Identity("5", name="bob")


class Echo(Handler):
    keywords = ("echo",)

    async def handle(self, ctx: CommandContext) -> str | None:
        return f"{ctx.scope.key} {argument_concat(await ctx.arguments(), 1)}"


def _service(tmp_path, **overrides: object):
    core = make_core(tmp_path, **overrides)
    core.catalog.register("echo", Echo)
    core.registry.install("echo", autoregister_channels=True, autoregister_users=True)
    return core, CommandService(core.settings, core.dispatcher, core.logger)


def test_extract_command_text(tmp_path) -> None:
    _, service = _service(tmp_path, alternate_prefix_nick="nest")
    assert service.extract_command_text("!echo hi  ") == "!echo hi"
    assert service.extract_command_text("hello there") is None
    assert service.extract_command_text("nest: echo hi") == "echo hi"
    assert service.extract_command_text("nest:   ") is None
    assert service.extract_command_text("nestling: echo") is None


def test_channel_line_is_dispatched_and_answered(tmp_path) -> None:
    async def scenario() -> None:
        core, service = _service(tmp_path)
        result = await service.handle_channel_message(100, BOB, "!echo hi there")
        assert result == "channel:100 hi there"
        assert core.sinks.lines(Scope.channel("100"), BOB) == [("send", "channel:100 hi there")]

    asyncio.run(scenario())


def test_unaddressed_channel_line_is_ignored(tmp_path) -> None:
    async def scenario() -> None:
        core, service = _service(tmp_path)
        assert await service.handle_channel_message(100, BOB, "echo hi") is None
        assert core.sinks.texts() == []

    asyncio.run(scenario())


def test_alternate_nick_prefix(tmp_path) -> None:
    async def scenario() -> None:
        _, service = _service(tmp_path, alternate_prefix_nick="nest")
        assert await service.handle_channel_message(100, BOB, "nest: echo hi") == "channel:100 hi"

    asyncio.run(scenario())


def test_private_line_needs_no_prefix(tmp_path) -> None:
    async def scenario() -> None:
        core, service = _service(tmp_path)
        assert await service.handle_private_message(BOB, "echo hi") == "private:5 hi"
        assert core.sinks.lines(Scope.private("5"), BOB) == [("send", "private:5 hi")]
        assert await service.handle_private_message(BOB, "   ") is None

    asyncio.run(scenario())


def test_custom_prefix(tmp_path) -> None:
    async def scenario() -> None:
        _, service = _service(tmp_path, command_prefix="?")
        assert await service.handle_channel_message(1, BOB, "!echo hi") is None
        assert await service.handle_channel_message(1, BOB, "?echo a ?echo b") == "channel:1 a channel:1 b"

    asyncio.run(scenario())
