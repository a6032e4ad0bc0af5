from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

from nestbot.storage import MessagePackStore

MAX_LOG_ROWS = 2000

LogRow = dict[str, object]
LogListener = Callable[[LogRow], None]


def format_row(row: LogRow) -> str:
    data = row.get("data") or {}
    fields = " ".join(f"{key}={value}" for key, value in data.items()) if isinstance(data, dict) else ""
    return f"[{row['ts']}] {row['event']} {fields}".rstrip()


class LoggerService:
    """Dotted event rows (``handler.failed``, ``worker.started``...) kept in the store.

    The store holds at most ``MAX_LOG_ROWS`` rows, oldest dropped first.
    """

    def __init__(self, store: MessagePackStore, *, echo: bool = True) -> None:
        self.store = store
        self.echo = echo
        self._listeners: list[LogListener] = []

    def subscribe(self, listener: LogListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _rows(self) -> list[LogRow]:
        rows = self.store.data.get("logs")
        if not isinstance(rows, list):
            rows = self.store.data["logs"] = []
        return rows

    def log(self, event: str, **data: object) -> LogRow:
        row: LogRow = {"ts": datetime.now(tz=timezone.utc).isoformat(), "event": event, "data": data}
        rows = self._rows()
        rows.append(row)
        del rows[:-MAX_LOG_ROWS]
        self.store.touch()
        if self.echo:
            print(format_row(row))
        self._notify(row)
        return row

    def _notify(self, row: LogRow) -> None:
        for listener in list(self._listeners):
            try:
                listener(row)
            except Exception:  # noqa: BLE001
                continue

    def recent(self, event_prefix: str = "", limit: int = 50) -> list[LogRow]:
        matching = [row for row in self._rows() if str(row.get("event", "")).startswith(event_prefix)]
        return matching[-min(max(1, int(limit)), MAX_LOG_ROWS):]
