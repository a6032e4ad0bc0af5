from __future__ import annotations

from typing import TYPE_CHECKING, Awaitable, Callable

from nestbot.commands.clock import TimeHandler
from nestbot.commands.levels import UserLevelHandler
from nestbot.commands.listing import CommandsHandler, HelpHandler
from nestbot.commands.manage import CommandAdminHandler
from nestbot.commands.say import SayHandler
from nestbot.commands.shutdown import ShutdownHandler
from nestbot.registry import HandlerCatalog

if TYPE_CHECKING:
    from nestbot.registry import HandlerRegistry
    from nestbot.services.identity_service import IdentityService

# name -> (autoregister_channels, autoregister_users) on first start
BUILTIN_DEFAULTS: dict[str, tuple[bool, bool]] = {
    "say": (True, True),
    "time": (True, True),
    "commands": (True, True),
    "help": (True, True),
    "command": (True, True),
    "user": (True, True),
    "shutdown": (True, True),
}


def register_builtins(
    catalog: HandlerCatalog,
    registry: "HandlerRegistry",
    identities: "IdentityService",
    shutdown: Callable[[], Awaitable[None]],
) -> None:
    catalog.register("say", SayHandler)
    catalog.register("time", TimeHandler)
    catalog.register("commands", lambda: CommandsHandler(registry))
    catalog.register("help", lambda: HelpHandler(registry))
    catalog.register("command", lambda: CommandAdminHandler(registry))
    catalog.register("user", lambda: UserLevelHandler(identities))
    catalog.register("shutdown", lambda: ShutdownHandler(shutdown))


def install_builtins(registry: "HandlerRegistry") -> list[str]:
    """Install the built-ins once. Later uninstalls are respected on restart."""
    meta = registry.store.section("meta")
    if meta.get("builtins_seeded"):
        return []
    installed = registry.installed()
    added: list[str] = []
    for name, (channels, users) in BUILTIN_DEFAULTS.items():
        if name in installed:
            continue
        registry.install(name, autoregister_channels=channels, autoregister_users=users)
        added.append(name)
    meta["builtins_seeded"] = True
    registry.store.touch()
    return added
