from __future__ import annotations


class NestbotError(Exception):
    """Base class for errors raised by the command core."""


class HandlerClosedError(NestbotError):
    def __init__(self, name: str) -> None:
        super().__init__(f"handler {name!r} is draining or closed and no longer accepts work")
        self.name = name


class UnknownHandlerError(NestbotError):
    def __init__(self, name: str) -> None:
        super().__init__(f"handler {name!r} is not installed")
        self.name = name
