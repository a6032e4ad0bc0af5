from __future__ import annotations

import asyncio
import threading
from typing import Any, Callable, Iterable

from nestbot.config import Settings
from nestbot.errors import UnknownHandlerError
from nestbot.handlers import Handler, QueuedHandler
from nestbot.models import CHANNEL, Scope
from nestbot.services.logger_service import LoggerService
from nestbot.storage import MessagePackStore

HandlerFactory = Callable[[], Handler]


class HandlerCatalog:
    """Maps handler names to the factories that build them."""

    def __init__(self) -> None:
        self._factories: dict[str, HandlerFactory] = {}

    def register(self, name: str, factory: HandlerFactory) -> None:
        key = name.strip().lower()
        if not key:
            raise ValueError("handler name is required")
        if key in self._factories:
            raise ValueError(f"duplicate handler name: {key}")
        self._factories[key] = factory

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.strip().lower() in self._factories

    def names(self) -> list[str]:
        return sorted(self._factories)

    def create(self, name: str) -> Handler:
        key = name.strip().lower()
        factory = self._factories.get(key)
        if factory is None:
            raise UnknownHandlerError(key)
        return factory()


class HandlerRegistry:
    """Active handlers per scope.

    Scopes hold handler names in registration order; instances live in a
    single name-to-instance map, so a reload swaps the instance for every scope
    at once. All mutation happens under one lock and readers get a tuple
    snapshot.
    """

    def __init__(
        self,
        settings: Settings,
        store: MessagePackStore,
        logger: LoggerService,
        catalog: HandlerCatalog,
    ) -> None:
        self.settings = settings
        self.store = store
        self.logger = logger
        self.catalog = catalog
        self._lock = threading.RLock()
        self._instances: dict[str, Handler] = {}
        self._scopes: dict[Scope, dict[str, None]] = {}

    # ------------------------------------------------------------------
    # persisted rows

    def _root(self) -> dict[str, dict[str, Any]]:
        for key in ("installed", "channels", "users"):
            self.store.section("handlers", key)
        return self.store.section("handlers")

    def _scope_bucket(self, scope: Scope) -> dict[str, list[str]]:
        return self._root()["channels" if scope.kind == CHANNEL else "users"]

    def _persisted_names(self, scope: Scope) -> list[str]:
        rows = self._scope_bucket(scope).get(scope.id, [])
        return [str(name) for name in rows] if isinstance(rows, list) else []

    def _autoregisters(self, name: str, scope: Scope) -> bool:
        row = self._root()["installed"].get(name, {})
        if not isinstance(row, dict):
            return False
        flag = "autoregister_channels" if scope.kind == CHANNEL else "autoregister_users"
        return bool(row.get(flag, False))

    def installed(self) -> dict[str, dict[str, bool]]:
        return dict(self._root()["installed"])

    # ------------------------------------------------------------------
    # lifecycle

    def _create(self, name: str) -> Handler:
        handler = self.catalog.create(name)
        handler.bind(name, self.logger)
        return handler

    def install(self, name: str, *, autoregister_channels: bool = False, autoregister_users: bool = False) -> Handler:
        key = name.strip().lower()
        if key not in self.catalog:
            raise UnknownHandlerError(key)
        with self._lock:
            self._root()["installed"][key] = {
                "autoregister_channels": bool(autoregister_channels),
                "autoregister_users": bool(autoregister_users),
            }
            self.store.touch()
            handler = self._instances.get(key)
            if handler is None:
                handler = self._attach(key)
            else:
                self._apply_to_scopes(key)
        self.logger.log(
            "registry.installed",
            handler=key,
            autoregister_channels=bool(autoregister_channels),
            autoregister_users=bool(autoregister_users),
        )
        return handler

    def load_installed(self) -> list[str]:
        loaded: list[str] = []
        for name in list(self._root()["installed"].keys()):
            with self._lock:
                if name in self._instances:
                    continue
                try:
                    self._attach(name)
                except UnknownHandlerError:
                    self.logger.log("registry.load_failed", handler=name, error="not in catalog")
                    continue
            loaded.append(name)
        return loaded

    def _attach(self, name: str) -> Handler:
        handler = self._create(name)
        self._instances[name] = handler
        self._apply_to_scopes(name)
        return handler

    def _apply_to_scopes(self, name: str) -> None:
        for scope, names in self._scopes.items():
            if self._autoregisters(name, scope) or name in self._persisted_names(scope):
                names[name] = None

    async def uninstall(self, name: str) -> bool:
        key = name.strip().lower()
        _check_drainable([self.current(key)])
        with self._lock:
            root = self._root()
            existed = root["installed"].pop(key, None) is not None
            for bucket in (root["channels"], root["users"]):
                for scope_id, rows in list(bucket.items()):
                    if isinstance(rows, list) and key in rows:
                        remaining = [row for row in rows if row != key]
                        if remaining:
                            bucket[scope_id] = remaining
                        else:
                            bucket.pop(scope_id)
            self.store.touch()
            for names in self._scopes.values():
                names.pop(key, None)
            handler = self._instances.pop(key, None)
        if handler is not None:
            await handler.close(self.settings.drain_timeout_sec)
        if existed:
            self.logger.log("registry.uninstalled", handler=key)
        return existed

    # ------------------------------------------------------------------
    # scopes

    def ensure_scope(self, scope: Scope) -> None:
        with self._lock:
            if scope in self._scopes:
                return
            persisted = set(self._persisted_names(scope))
            self._scopes[scope] = {
                name: None
                for name in self._instances
                if self._autoregisters(name, scope) or name in persisted
            }

    def handlers_for(self, scope: Scope) -> tuple[Handler, ...]:
        self.ensure_scope(scope)
        with self._lock:
            return tuple(self._instances[name] for name in self._scopes[scope] if name in self._instances)

    def current(self, name: str) -> Handler | None:
        with self._lock:
            return self._instances.get(name)

    def handler_names(self) -> list[str]:
        with self._lock:
            return list(self._instances)

    def register(self, name: str, scope: Scope) -> Handler:
        """Activate a handler for a scope until restart."""
        self.ensure_scope(scope)
        with self._lock:
            handler = self._instances.get(name)
            if handler is None:
                raise UnknownHandlerError(name)
            self._scopes[scope][name] = None
        self.logger.log("registry.registered", handler=name, scope=scope.key)
        return handler

    def unregister(self, name: str, scope: Scope) -> bool:
        self.ensure_scope(scope)
        with self._lock:
            if name not in self._instances:
                raise UnknownHandlerError(name)
            existed = name in self._scopes[scope]
            self._scopes[scope].pop(name, None)
        self.logger.log("registry.unregistered", handler=name, scope=scope.key, existed=existed)
        return existed

    def add(self, name: str, scope: Scope) -> Handler:
        """Activate a handler for a scope and remember it across restarts."""
        handler = self.register(name, scope)
        with self._lock:
            bucket = self._scope_bucket(scope)
            rows = self._persisted_names(scope)
            if name not in rows:
                rows.append(name)
            bucket[scope.id] = rows
            self.store.touch()
        return handler

    def remove(self, name: str, scope: Scope) -> bool:
        existed = self.unregister(name, scope)
        with self._lock:
            bucket = self._scope_bucket(scope)
            rows = [row for row in self._persisted_names(scope) if row != name]
            if rows:
                bucket[scope.id] = rows
            else:
                bucket.pop(scope.id, None)
            self.store.touch()
        return existed

    # ------------------------------------------------------------------
    # reload

    async def reload(self, name: str) -> Handler:
        """Replace a handler with a fresh instance once the old one has drained.

        The new instance takes over immediately. A queued replacement only starts
        consuming after the old worker has finished everything it accepted, so
        per-handler ordering holds across the swap.
        """
        with self._lock:
            old = self._instances.get(name)
            if old is None:
                raise UnknownHandlerError(name)
            _check_drainable([old])
            new = self._create(name)
            if isinstance(old, QueuedHandler) and isinstance(new, QueuedHandler):
                new.follow(old)
            self._instances[name] = new
        await old.close(self.settings.drain_timeout_sec)
        self.logger.log("registry.reloaded", handler=name)
        return new

    async def reload_all(self) -> list[str]:
        with self._lock:
            names = list(self._instances)
            _check_drainable(self._instances.values())
        await asyncio.gather(*(self.reload(name) for name in names))
        return names

    async def close_all(self) -> None:
        with self._lock:
            handlers = list(self._instances.values())
        _check_drainable(handlers)
        await asyncio.gather(*(handler.close(self.settings.drain_timeout_sec) for handler in handlers))


def _check_drainable(handlers: Iterable[Handler | None]) -> None:
    """Refuse up front when the caller is running on one of the workers it would drain."""
    for handler in handlers:
        if isinstance(handler, QueuedHandler):
            handler.check_drainable()
