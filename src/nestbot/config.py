from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

PASSWORDS_FILE = Path("passwords.txt")


@dataclass(frozen=True)
class Settings:
    discord_token: str
    command_prefix: str
    store_path: Path
    owner_user_id: int
    drain_timeout_sec: float
    alternate_prefix_nick: str = ""

    @staticmethod
    def load(path: Path = PASSWORDS_FILE) -> "Settings":
        values = _parse_passwords_file(path)
        token = values.get("DISCORD_TOKEN", "")
        command_prefix = values.get("COMMAND_PREFIX", "") or "!"
        if not token:
            raise RuntimeError(f"DISCORD_TOKEN is required in {path.name}.")
        if len(command_prefix) != 1:
            raise RuntimeError("COMMAND_PREFIX must be a single character.")
        return Settings(
            discord_token=token,
            command_prefix=command_prefix,
            store_path=Path(values.get("STORE_PATH") or "data/nestbot.msgpack"),
            owner_user_id=_number(values, "OWNER_USER_ID", int, 0),
            drain_timeout_sec=max(0.1, _number(values, "DRAIN_TIMEOUT_SEC", float, 30.0)),
            alternate_prefix_nick=values.get("ALTERNATE_PREFIX_NICK", ""),
        )


def _number(values: dict[str, str], key: str, kind: type, default):
    raw = values.get(key, "")
    if not raw:
        return default
    try:
        return kind(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be a number, got {raw!r}.") from None


def _parse_passwords_file(path: Path) -> dict[str, str]:
    if not path.exists():
        raise RuntimeError(f"{path.name} not found. Copy passwords.example.txt to {path.name} and fill values.")
    values: dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        values[key.strip()] = value
    return values
