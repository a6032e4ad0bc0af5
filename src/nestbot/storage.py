from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import msgpack


DEFAULT_STORE: dict[str, Any] = {
    "meta": {"version": 1},
    # identity_id -> {"level": int, "channels": {"channel:<id>": int}}
    "identities": {},
    "handlers": {
        # name -> {"autoregister_channels": bool, "autoregister_users": bool}
        "installed": {},
        # channel_id / identity_id -> [handler names]
        "channels": {},
        "users": {},
    },
    "logs": [],
}

AUTOSAVE_INTERVAL_SEC = 5.0


class MessagePackStore:
    """Whole-file msgpack state, written atomically.

    Mutations happen in place on ``data`` and are flagged with :meth:`touch`;
    ``autosave_loop`` and :meth:`flush` write the file only when flagged.
    """

    def __init__(self, path: Path, *, autosave_interval: float = AUTOSAVE_INTERVAL_SEC) -> None:
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.autosave_interval = autosave_interval
        self._lock = asyncio.Lock()
        self._dirty = False
        self.data: dict[str, Any] = _clone_defaults()

    async def load(self) -> None:
        async with self._lock:
            if not self.path.exists():
                self.data = _clone_defaults()
                await self._write()
                return
            loaded = msgpack.unpackb(self.path.read_bytes(), raw=False)
            self.data = loaded if isinstance(loaded, dict) else {}
            if _backfill(self.data, _clone_defaults()):
                self._dirty = True

    async def autosave_loop(self) -> None:
        while True:
            await asyncio.sleep(self.autosave_interval)
            await self.flush()

    async def flush(self) -> bool:
        if not self._dirty:
            return False
        await self.save()
        return True

    async def save(self) -> None:
        async with self._lock:
            await self._write()

    async def _write(self) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_bytes(msgpack.packb(self.data, use_bin_type=True))
        tmp.replace(self.path)
        self._dirty = False

    @property
    def dirty(self) -> bool:
        return self._dirty

    def touch(self) -> None:
        self._dirty = True

    def section(self, *keys: str) -> dict[str, Any]:
        """Return the dict at ``data[k1][k2]...``, replacing anything that is not a dict."""
        node = self.data
        for key in keys:
            child = node.get(key)
            if not isinstance(child, dict):
                child = {}
                node[key] = child
                self._dirty = True
            node = child
        return node


def _backfill(target: dict[str, Any], defaults: dict[str, Any]) -> bool:
    changed = False
    for key, value in defaults.items():
        current = target.get(key)
        if not isinstance(current, type(value)):
            target[key] = value
            changed = True
        elif isinstance(value, dict) and _backfill(current, value):
            changed = True
    return changed


def _clone_defaults() -> dict[str, Any]:
    return msgpack.unpackb(msgpack.packb(DEFAULT_STORE, use_bin_type=True), raw=False)
