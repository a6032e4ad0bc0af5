from __future__ import annotations

from dataclasses import dataclass

CHANNEL = "channel"
PRIVATE = "private"


@dataclass(frozen=True)
class Identity:
    id: str
    name: str = ""
    mention: str = ""

    @property
    def display(self) -> str:
        return self.mention or self.name or self.id


@dataclass(frozen=True)
class Scope:
    """Addressing context of an invocation: a shared channel or a private one."""

    kind: str
    id: str

    @staticmethod
    def channel(channel_id: object) -> "Scope":
        return Scope(CHANNEL, str(channel_id))

    @staticmethod
    def private(identity_id: object) -> "Scope":
        return Scope(PRIVATE, str(identity_id))

    @property
    def is_channel(self) -> bool:
        return self.kind == CHANNEL

    @property
    def key(self) -> str:
        return f"{self.kind}:{self.id}"

    def __str__(self) -> str:
        return self.key
