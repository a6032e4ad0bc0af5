from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from types import SimpleNamespace

from nestbot.config import Settings
from nestbot.dispatcher import Dispatcher
from nestbot.models import Identity, Scope
from nestbot.permissions import PermissionLevel, PermissionResolver
from nestbot.registry import HandlerCatalog, HandlerRegistry
from nestbot.services.identity_service import IdentityService
from nestbot.services.logger_service import LoggerService
from nestbot.storage import MessagePackStore

OWNER_ID = 741470965359443970


def make_settings(tmp_path: Path, **overrides: object) -> Settings:
    settings = Settings(
        discord_token="token",
        command_prefix="!",
        store_path=tmp_path / "state.msgpack",
        owner_user_id=OWNER_ID,
        drain_timeout_sec=5.0,
    )
    return replace(settings, **overrides) if overrides else settings


class RecordingSink:
    def __init__(self, scope: Scope, identity: Identity) -> None:
        self.scope = scope
        self.identity = identity
        self.lines: list[tuple[str, str]] = []

    async def send(self, text: str) -> None:
        self.lines.append(("send", text))

    async def send_highlighted(self, text: str) -> None:
        self.lines.append(("highlighted", text))

    async def send_error(self, text: str) -> None:
        self.lines.append(("error", text))


class RecordingSinkProvider:
    def __init__(self) -> None:
        self.sinks: dict[tuple[str, str], RecordingSink] = {}

    def sink_for(self, scope: Scope, identity: Identity) -> RecordingSink:
        key = (scope.key, identity.id)
        if key not in self.sinks:
            self.sinks[key] = RecordingSink(scope, identity)
        return self.sinks[key]

    def lines(self, scope: Scope, identity: Identity) -> list[tuple[str, str]]:
        return list(self.sink_for(scope, identity).lines)

    def texts(self) -> list[str]:
        return [text for sink in self.sinks.values() for _, text in sink.lines]


class StubIdentities:
    def __init__(self) -> None:
        self.levels: dict[str, PermissionLevel] = {}
        self.overrides: dict[tuple[str, str], PermissionLevel] = {}
        self.fail = False

    def global_level(self, identity: Identity) -> PermissionLevel:
        if self.fail:
            raise ConnectionError("identity backend offline")
        return self.levels.get(identity.id, PermissionLevel.NONE)

    def scope_override(self, identity: Identity, scope: Scope) -> PermissionLevel | None:
        if self.fail:
            raise ConnectionError("identity backend offline")
        return self.overrides.get((identity.id, scope.key))


def make_core(tmp_path: Path, **settings_overrides: object) -> SimpleNamespace:
    settings = make_settings(tmp_path, **settings_overrides)
    store = MessagePackStore(settings.store_path)
    logger = LoggerService(store, echo=False)
    identities = IdentityService(settings, store)
    catalog = HandlerCatalog()
    registry = HandlerRegistry(settings, store, logger, catalog)
    permissions = PermissionResolver(identities, logger)
    sinks = RecordingSinkProvider()
    dispatcher = Dispatcher(registry, permissions, sinks, logger, prefix=settings.command_prefix)
    return SimpleNamespace(
        settings=settings,
        store=store,
        logger=logger,
        identities=identities,
        catalog=catalog,
        registry=registry,
        permissions=permissions,
        sinks=sinks,
        dispatcher=dispatcher,
    )


def events(logger: LoggerService, prefix: str = "") -> list[str]:
    return [str(row["event"]) for row in logger.store.data["logs"] if str(row["event"]).startswith(prefix)]
