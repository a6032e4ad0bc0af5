from __future__ import annotations

import asyncio
import contextlib
from contextvars import ContextVar
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Coroutine, Protocol

from nestbot.errors import HandlerClosedError
from nestbot.message import Invocation
from nestbot.models import Identity, Scope
from nestbot.permissions import Authorization, PermissionLevel

if TYPE_CHECKING:
    from nestbot.dispatcher import Dispatcher
    from nestbot.services.logger_service import LoggerService


class MessageSink(Protocol):
    async def send(self, text: str) -> None:
        ...

    async def send_highlighted(self, text: str) -> None:
        ...

    async def send_error(self, text: str) -> None:
        ...


class SinkProvider(Protocol):
    def sink_for(self, scope: Scope, identity: Identity) -> MessageSink:
        ...


@dataclass(frozen=True)
class CommandContext:
    """One invocation as seen by a handler: where it came from, who sent it, what it says."""

    dispatcher: "Dispatcher"
    scope: Scope
    identity: Identity
    invocation: Invocation

    @property
    def prefix(self) -> str:
        return self.dispatcher.prefix

    @property
    def sink(self) -> MessageSink:
        return self.dispatcher.sinks.sink_for(self.scope, self.identity)

    @property
    def private_sink(self) -> MessageSink:
        return self.dispatcher.sinks.sink_for(Scope.private(self.identity.id), self.identity)

    def is_command(self, name: str) -> bool:
        return self.invocation.is_command(name, self.prefix)

    async def arguments(self) -> list[str | None]:
        return await self.dispatcher.materialize(self)

    def level(self) -> PermissionLevel:
        return self.dispatcher.permissions.effective_level(self.identity, self.scope)

    def check(self, action: str, required: PermissionLevel) -> Authorization:
        return self.dispatcher.permissions.check(action, required, self.identity, self.scope)

    async def require(self, action: str, required: PermissionLevel) -> bool:
        auth = self.check(action, required)
        if not auth:
            await self.deny(auth)
        return auth.allowed

    async def deny(self, auth: Authorization) -> None:
        await self.send_error(auth.message, personal=True)

    async def reply(self, text: str, *, personal: bool = False) -> None:
        if personal and self.scope.is_channel:
            await self.sink.send_highlighted(text)
        else:
            await self.sink.send(text)

    async def send_error(self, text: str, *, personal: bool = False) -> None:
        if personal and self.scope.is_channel:
            text = f"{self.identity.display}: {text}"
        await self.sink.send_error(text)


def argument_concat(arguments: list[str | None], begin: int, end: int | None = None) -> str:
    """Join ``arguments[begin:end + 1]`` with spaces, skipping holes left by silent sub-invocations."""
    stop = len(arguments) if end is None else min(len(arguments), end + 1)
    return " ".join(arg for arg in arguments[begin:stop] if arg is not None)


class Handler:
    """A unit that reacts to invocations whose keyword it recognises.

    Subclasses set ``keywords`` and either implement :meth:`handle` (inline) or
    derive from :class:`QueuedHandler`.
    """

    keywords: tuple[str, ...] = ()
    required_level: PermissionLevel = PermissionLevel.NONE
    usage: str = ""
    queued = False

    def __init__(self) -> None:
        self.name = type(self).__name__
        self.logger: LoggerService | None = None

    def bind(self, name: str, logger: "LoggerService | None") -> None:
        self.name = name
        self.logger = logger

    def handles(self, ctx: CommandContext) -> bool:
        return any(ctx.is_command(keyword) for keyword in self.keywords)

    def action_name(self, ctx: CommandContext) -> str:
        return f"'{ctx.invocation.keyword}'"

    def listed_keywords(self, level: PermissionLevel) -> list[str]:
        if level < self.required_level:
            return []
        return list(self.keywords)

    async def receive(self, ctx: CommandContext) -> str | None:
        return await self.handle(ctx)

    async def handle(self, ctx: CommandContext) -> str | None:
        raise NotImplementedError

    async def close(self, timeout: float | None = None) -> None:
        return None

    def _log(self, event: str, **data: object) -> None:
        if self.logger is not None:
            self.logger.log(event, handler=self.name, **data)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r}>"


class WorkerState(str, Enum):
    DORMANT = "dormant"
    RUNNING = "running"
    DRAINING = "draining"
    CLOSED = "closed"


class QueuedHandler(Handler):
    """Handler with its own FIFO queue and a single worker task.

    ``receive`` only enqueues and never produces a reply; replies go through the
    context's sink from inside the worker. The worker starts on the first
    enqueue and processes one item at a time until the handler is closed.
    Every accepted item runs to completion: closing waits for the queue to
    empty, however long that takes, and never cancels a running item.
    """

    queued = True

    def __init__(self) -> None:
        super().__init__()
        self._queue: asyncio.Queue[CommandContext] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._state = WorkerState.DORMANT
        self._closed = asyncio.Event()
        self._predecessor: QueuedHandler | None = None
        self._busy = False
        self._background: set[asyncio.Task] = set()

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def running_inside(self) -> bool:
        """True when called from this handler's worker or a task it spawned without detaching."""
        return _active_worker.get() is self

    async def receive(self, ctx: CommandContext) -> str | None:
        self.enqueue(ctx)
        return None

    def enqueue(self, ctx: CommandContext) -> None:
        if self._state in (WorkerState.DRAINING, WorkerState.CLOSED):
            raise HandlerClosedError(self.name)
        self._queue.put_nowait(ctx)
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"handler-worker-{self.name}")
            self._state = WorkerState.RUNNING
            self._log("worker.started")

    def follow(self, predecessor: "QueuedHandler") -> None:
        """Hold this worker back until ``predecessor`` has drained and closed."""
        self._predecessor = predecessor

    def spawn(self, coro: Coroutine[Any, Any, None], *, name: str) -> asyncio.Task:
        """Run ``coro`` next to the worker instead of on it.

        The spawned task may drain or reload this handler, which the worker
        itself cannot do.
        """

        async def detached() -> None:
            _active_worker.set(None)
            await coro

        task = asyncio.create_task(detached(), name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _run(self) -> None:
        _active_worker.set(self)
        if self._predecessor is not None:
            await self._predecessor.wait_closed()
            self._predecessor = None
        while True:
            ctx = await self._queue.get()
            self._busy = True
            try:
                await self.handle(ctx)
            except Exception as exc:  # noqa: BLE001
                self._log(
                    "worker.item_failed",
                    scope=ctx.scope.key,
                    identity_id=ctx.identity.id,
                    error=str(exc)[:300],
                )
            finally:
                self._busy = False
                self._queue.task_done()

    async def join(self) -> None:
        await self._queue.join()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def wait_background(self) -> None:
        while self._background:
            await asyncio.gather(*list(self._background))

    def check_drainable(self) -> None:
        if self.running_inside():
            raise RuntimeError(f"handler {self.name!r} cannot drain itself from its own worker")

    async def close(self, timeout: float | None = None) -> None:
        """Stop accepting items, wait for the accepted ones, then stop the worker.

        ``timeout`` only bounds how long to wait before logging
        ``worker.drain_timeout``; the wait itself goes on until the queue is empty.
        """
        if self._state == WorkerState.CLOSED:
            return
        self.check_drainable()
        self._state = WorkerState.DRAINING
        if self._task is not None:
            try:
                await asyncio.wait_for(self._queue.join(), timeout)
            except asyncio.TimeoutError:
                self._log("worker.drain_timeout", pending=self._queue.qsize(), busy=self._busy, timeout_sec=timeout)
                await self._queue.join()
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        elif self._predecessor is not None:
            # A dormant instance still holds the barrier for whatever follows it.
            await self._predecessor.wait_closed()
            self._predecessor = None
        self._state = WorkerState.CLOSED
        self._closed.set()
        self._log("worker.closed")


_active_worker: ContextVar[QueuedHandler | None] = ContextVar("nestbot_active_worker", default=None)
