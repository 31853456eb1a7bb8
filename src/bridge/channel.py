"""Pair of linked asyncio endpoints carrying typed messages.

Each endpoint owns an inbound queue that its peer writes into. Nothing is
delivered until the receiving endpoint calls :meth:`ChannelEndpoint.start`;
messages sent before that are held in the queue, so a listener that attaches
late still sees the first phase or transcript event of a session.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

from pydantic import TypeAdapter, ValidationError

from bridge.messages import (
    COMMAND_ADAPTER,
    RUNTIME_EVENT_ADAPTER,
    BridgeMessage,
    Command,
    RuntimeEvent,
)

LOGGER = logging.getLogger(__name__)

InT = TypeVar("InT")
OutT = TypeVar("OutT", bound=BridgeMessage)

Handler = Callable[[Any], Awaitable[None] | None]

_CLOSED = object()


class _Link:
    def __init__(self) -> None:
        self.closed = False
        self.endpoints: list[ChannelEndpoint] = []

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for endpoint in self.endpoints:
            endpoint._shutdown()


class ChannelEndpoint(Generic[OutT, InT]):
    """One side of a bridge channel."""

    def __init__(self, name: str, inbound: TypeAdapter, link: _Link) -> None:
        self.name = name
        self._inbound = inbound
        self._link = link
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._handler: Handler | None = None
        self._pump: asyncio.Task | None = None
        self._peer: ChannelEndpoint | None = None

    @property
    def closed(self) -> bool:
        return self._link.closed

    @property
    def started(self) -> bool:
        return self._pump is not None

    def on_message(self, handler: Handler) -> None:
        self._handler = handler

    def send(self, message: OutT) -> bool:
        """Queue ``message`` for the peer. Returns False if the channel is closed."""

        if self._link.closed or self._peer is None:
            LOGGER.debug("Dropping %s on closed channel %s", getattr(message, "type", message), self.name)
            return False
        self._peer._queue.put_nowait(message.to_wire())
        return True

    def start(self) -> None:
        if self._pump is not None or self._link.closed:
            return
        self._pump = asyncio.get_running_loop().create_task(
            self._run(), name=f"channel-{self.name}"
        )

    def close(self) -> None:
        self._link.close()

    async def drain(self) -> None:
        """Wait until every message queued so far has been handled or dropped."""

        if self._pump is None and not self._link.closed:
            raise RuntimeError(f"Endpoint {self.name} has not been started.")
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            raw = await self._queue.get()
            try:
                if raw is _CLOSED or self._link.closed:
                    return
                await self._dispatch(raw)
            finally:
                self._queue.task_done()

    async def _dispatch(self, raw: dict) -> None:
        try:
            message = self._inbound.validate_python(raw)
        except ValidationError as exc:
            LOGGER.error("Dropping invalid message on %s: %s", self.name, exc)
            return

        if self._handler is None:
            LOGGER.debug("No handler on %s for %s", self.name, raw.get("type"))
            return

        try:
            result = self._handler(message)
            if inspect.isawaitable(result):
                await result
        except Exception:
            LOGGER.exception("Handler on %s failed for %s", self.name, raw.get("type"))

    def _shutdown(self) -> None:
        # Unhandled messages are discarded; the receiving side is torn down.
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()
        if self._pump is not None:
            self._queue.put_nowait(_CLOSED)


ControllerEndpoint = ChannelEndpoint[Command, RuntimeEvent]
RuntimeEndpoint = ChannelEndpoint[RuntimeEvent, Command]


def open_channel(name: str = "session") -> tuple[ControllerEndpoint, RuntimeEndpoint]:
    """Return linked ``(controller, runtime)`` endpoints."""

    link = _Link()
    controller: ControllerEndpoint = ChannelEndpoint(f"{name}:controller", RUNTIME_EVENT_ADAPTER, link)
    runtime: RuntimeEndpoint = ChannelEndpoint(f"{name}:runtime", COMMAND_ADAPTER, link)
    controller._peer = runtime
    runtime._peer = controller
    link.endpoints.extend([controller, runtime])
    return controller, runtime
