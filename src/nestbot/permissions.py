from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum, unique
from typing import TYPE_CHECKING, Optional, Protocol

from nestbot.models import Identity, Scope

if TYPE_CHECKING:
    from nestbot.services.logger_service import LoggerService


@unique
class PermissionLevel(IntEnum):
    # Stored as these integers; never renumber.
    UNKNOWN = -1  # resolution failure, always denied
    NONE = 0
    IDENTIFIED = 1
    USER = 2
    OPERATOR = 3
    ADMINISTRATOR = 4
    OWNER = 5

    @staticmethod
    def from_int(value: object) -> Optional["PermissionLevel"]:
        try:
            return PermissionLevel(int(value))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return None

    @staticmethod
    def parse(text: str | None) -> Optional["PermissionLevel"]:
        raw = str(text or "").strip()
        if not raw:
            return None
        if raw.lstrip("-").isdigit():
            return PermissionLevel.from_int(raw)
        try:
            return PermissionLevel[raw.upper()]
        except KeyError:
            return None

    def __str__(self) -> str:
        return self.name.lower()


class IdentityProvider(Protocol):
    def global_level(self, identity: Identity) -> PermissionLevel:
        ...

    def scope_override(self, identity: Identity, scope: Scope) -> PermissionLevel | None:
        ...


@dataclass(frozen=True)
class Authorization:
    allowed: bool
    action: str
    actual: PermissionLevel
    required: PermissionLevel

    @property
    def message(self) -> str:
        if self.allowed:
            return ""
        return (
            f"You don't have the required permission for {self.action}. "
            f"Your level is '{self.actual}', but '{self.required}' is required."
        )

    def __bool__(self) -> bool:
        return self.allowed


class PermissionResolver:
    def __init__(self, provider: IdentityProvider, logger: "LoggerService | None" = None) -> None:
        self.provider = provider
        self.logger = logger

    def effective_level(self, identity: Identity, scope: Scope | None = None) -> PermissionLevel:
        try:
            level = PermissionLevel(self.provider.global_level(identity))
            if level == PermissionLevel.UNKNOWN:
                return level
            if scope is None or not scope.is_channel:
                return level
            override = self.provider.scope_override(identity, scope)
        except Exception as exc:  # noqa: BLE001
            self._log("permission.lookup_failed", identity_id=identity.id, error=str(exc)[:240])
            return PermissionLevel.UNKNOWN
        if override is None:
            return level
        return max(level, PermissionLevel(override))

    def check(
        self,
        action: str,
        required: PermissionLevel,
        identity: Identity,
        scope: Scope | None = None,
    ) -> Authorization:
        actual = self.effective_level(identity, scope)
        allowed = actual != PermissionLevel.UNKNOWN and actual >= required
        result = Authorization(allowed=allowed, action=action, actual=actual, required=required)
        if not allowed:
            self._log(
                "permission.denied",
                action=action,
                identity_id=identity.id,
                scope=scope.key if scope else "",
                actual=str(actual),
                required=str(required),
            )
        return result

    def authorize(
        self,
        action: str,
        required: PermissionLevel,
        identity: Identity,
        scope: Scope | None = None,
    ) -> bool:
        return self.check(action, required, identity, scope).allowed

    def _log(self, event: str, **data: object) -> None:
        if self.logger is not None:
            self.logger.log(event, **data)
