from __future__ import annotations

from typing import Any

from nestbot.config import Settings
from nestbot.models import Identity, Scope
from nestbot.permissions import PermissionLevel
from nestbot.storage import MessagePackStore


class IdentityService:
    """Store-backed identity provider.

    Unknown identities resolve to ``none``. Rows that cannot be decoded resolve
    to ``unknown`` so a damaged store can never grant access.
    """

    def __init__(self, settings: Settings, store: MessagePackStore) -> None:
        self.settings = settings
        self.store = store

    def root(self) -> dict[str, dict[str, Any]]:
        return self.store.section("identities")

    def _row(self, identity_id: str, *, create: bool) -> dict[str, Any] | None:
        node = self.root()
        row = node.get(str(identity_id))
        if not isinstance(row, dict):
            if not create:
                return None
            row = {"level": int(PermissionLevel.NONE), "channels": {}}
            node[str(identity_id)] = row
            self.store.touch()
        if not isinstance(row.get("channels"), dict):
            row["channels"] = {}
            self.store.touch()
        return row

    def is_owner(self, identity: Identity) -> bool:
        owner_id = int(self.settings.owner_user_id or 0)
        return owner_id > 0 and identity.id == str(owner_id)

    def global_level(self, identity: Identity) -> PermissionLevel:
        if self.is_owner(identity):
            return PermissionLevel.OWNER
        row = self._row(identity.id, create=False)
        if row is None:
            return PermissionLevel.NONE
        level = PermissionLevel.from_int(row.get("level", int(PermissionLevel.NONE)))
        return level if level is not None else PermissionLevel.UNKNOWN

    def scope_override(self, identity: Identity, scope: Scope) -> PermissionLevel | None:
        row = self._row(identity.id, create=False)
        if row is None:
            return None
        raw = row["channels"].get(scope.key)
        if raw is None:
            return None
        level = PermissionLevel.from_int(raw)
        return level if level is not None else PermissionLevel.UNKNOWN

    def set_level(self, identity_id: str, level: PermissionLevel) -> None:
        if level == PermissionLevel.UNKNOWN:
            raise ValueError("unknown is not an assignable level")
        row = self._row(identity_id, create=True)
        row["level"] = int(level)
        self.store.touch()

    def set_scope_level(self, identity_id: str, scope: Scope, level: PermissionLevel) -> None:
        if level == PermissionLevel.UNKNOWN:
            raise ValueError("unknown is not an assignable level")
        if not scope.is_channel:
            raise ValueError("level overrides only apply to channel scopes")
        row = self._row(identity_id, create=True)
        row["channels"][scope.key] = int(level)
        self.store.touch()

    def remove_scope_level(self, identity_id: str, scope: Scope) -> bool:
        row = self._row(identity_id, create=False)
        if row is None:
            return False
        existed = scope.key in row["channels"]
        row["channels"].pop(scope.key, None)
        self.store.touch()
        return existed
