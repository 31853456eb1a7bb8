"""Caller-facing controller for a live voice conversation.

The controller owns the transcript, the waveform buffers and the current
phase. It reaches the live session only through its end of the channel and
the :class:`~runtime.host.RuntimeHost` that mounts the runtime side. Every
connect attempt gets fresh state: the fence is moved, the stores are cleared,
and a new channel is opened, so nothing from a previous session can leak in.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any, Literal, Protocol

from bridge.channel import ControllerEndpoint, open_channel
from bridge.fence import Clock, SessionFence, wall_clock_ms
from bridge.messages import (
    FunctionCallsCollected,
    FunctionCallsFinished,
    RuntimeEvent,
    SessionPhase,
    Speaker,
    StateUpdate,
    TranscriptionUpdate,
    TransportClosed,
    WaveformConfig,
    WaveformUpdate,
)
from runtime.host import RuntimeHost
from session.commands import CommandDispatcher
from session.errors import ConnectionRejectedError, SessionSetupError, TransportError, VoxError
from session.schemas import ConnectionDetail, ConnectParams, ConversationEntry, DispatchResult, ToolBatch
from session.state_machine import SessionStateMachine
from session.transcript import TranscriptStore
from session.waveform import WaveformCache

LOGGER = logging.getLogger(__name__)

EventName = Literal["phase", "message", "error", "connect", "disconnect"]
EVENTS: frozenset[str] = frozenset({"phase", "message", "error", "connect", "disconnect"})


class CredentialExchange(Protocol):
    async def exchange(self, params: ConnectParams) -> ConnectionDetail:  # pragma: no cover
        ...


class VoxController:
    def __init__(
        self,
        exchange: CredentialExchange,
        host: RuntimeHost,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._exchange = exchange
        self._host = host
        self._clock = clock or wall_clock_ms
        self._fence = SessionFence(self._clock)
        self._transcript = TranscriptStore(self._fence, clock=self._clock)
        self._waveforms = WaveformCache()
        self._machine = SessionStateMachine()
        self._channel: ControllerEndpoint | None = None
        self._dispatcher = CommandDispatcher(
            channel=lambda: self._channel,
            phase=lambda: self._machine.phase,
            transcript=self._transcript,
        )
        self._listeners: dict[str, list[Callable[..., Any]]] = defaultdict(list)
        self._attempt = 0
        self._pending_attempt: int | None = None
        self._lost_while_connecting: str | None = None
        self._microphone_enabled = True

        self._machine.subscribe(lambda _old, new: self._emit("phase", new))
        self._transcript.subscribe(lambda entry: self._emit("message", entry))

    # Read-only state

    @property
    def phase(self) -> SessionPhase:
        return self._machine.phase

    @property
    def transcript(self) -> list[ConversationEntry]:
        return self._transcript.entries

    @property
    def microphone_enabled(self) -> bool:
        return self._microphone_enabled

    @property
    def fence(self) -> SessionFence:
        return self._fence

    @property
    def channel(self) -> ControllerEndpoint | None:
        return self._channel

    def on(self, event: EventName, callback: Callable[..., Any]) -> None:
        if event not in EVENTS:
            raise ValueError(f"Unknown event: {event!r}")
        self._listeners[event].append(callback)

    # Lifecycle

    async def connect(self, params: ConnectParams) -> None:
        if not self._machine.begin_connect():
            error = ConnectionRejectedError(
                f"Connection attempt rejected: Already in a connection state ({self._machine.phase})"
            )
            self._emit("error", error)
            raise error

        self._attempt += 1
        attempt = self._attempt
        self._pending_attempt = attempt
        self._lost_while_connecting = None
        self._fence.mark()
        self._transcript.reset()
        self._waveforms.reset()

        try:
            detail = await self._exchange.exchange(params)
            if attempt != self._attempt:
                LOGGER.info("Discarding connection details for superseded attempt %s", attempt)
                return
            await self._open_session(detail, attempt)
            if self._lost_while_connecting is not None:
                raise SessionSetupError(f"Live session closed while connecting: {self._lost_while_connecting}")
        except VoxError as exc:
            if attempt != self._attempt:
                LOGGER.info("Discarding failure of superseded attempt %s: %s", attempt, exc)
                return
            await self._teardown()
            self._emit("error", exc)
            raise
        except Exception as exc:
            if attempt != self._attempt:
                return
            await self._teardown()
            error = SessionSetupError(str(exc))
            self._emit("error", error)
            raise error from exc
        finally:
            if self._pending_attempt == attempt:
                self._pending_attempt = None

        if attempt == self._attempt:
            self._emit("connect")

    async def disconnect(self) -> None:
        self._attempt += 1
        self._fence.mark()
        was_active = not self._machine.is_disconnected
        await self._teardown()
        if was_active:
            self._emit("disconnect")

    async def _open_session(self, detail: ConnectionDetail, attempt: int) -> None:
        controller_end, runtime_end = open_channel(f"session-{attempt}")
        controller_end.on_message(self._handle_event)
        controller_end.start()
        self._channel = controller_end
        await self._host.mount(detail, runtime_end, self._waveforms.requested)
        if attempt != self._attempt:
            # A disconnect raced the mount and already unmounted the runtime.
            controller_end.close()

    async def _teardown(self) -> None:
        channel, self._channel = self._channel, None
        if channel is not None:
            channel.close()
        await self._host.unmount()
        self._transcript.reset()
        self._waveforms.reset()
        self._machine.reset()

    # Inbound events

    async def _handle_event(self, event: RuntimeEvent) -> None:
        if isinstance(event, StateUpdate):
            self._machine.report(event.phase)
        elif isinstance(event, TranscriptionUpdate):
            for segment in event.segments:
                self._transcript.upsert(
                    segment.id,
                    segment.speaker,
                    segment.text,
                    segment.is_final,
                    segment.timestamp,
                )
        elif isinstance(event, WaveformUpdate):
            self._waveforms.update(event.speaker, event.samples)
        elif isinstance(event, FunctionCallsCollected):
            self._transcript.record_tool_batch(ToolBatch(calls=event.calls))
        elif isinstance(event, FunctionCallsFinished):
            self._transcript.record_tool_batch(ToolBatch(calls=event.calls, results=event.results))
        elif isinstance(event, TransportClosed):
            LOGGER.info("Live session closed%s", f": {event.error}" if event.error else "")
            if self._pending_attempt == self._attempt:
                # Still inside connect(); it reports the failure to its caller.
                self._lost_while_connecting = event.error or "transport closed"
                self._fence.mark()
                await self._teardown()
                return
            await self.disconnect()
            if event.error:
                self._emit("error", TransportError(f"Live session connection error: {event.error}"))
        else:
            LOGGER.error("Unhandled runtime event: %r", event)

    # Commands

    def send(self, text: str | None = None, digit: int | str | None = None) -> list[DispatchResult]:
        results: list[DispatchResult] = []
        if text is not None:
            results.append(self._dispatcher.send_text(text))
        if digit is not None:
            results.append(self._dispatcher.send_digit(digit))
        return results

    def audio_waveform(
        self,
        speaker: Speaker = "agent",
        bar_count: int = 10,
        update_interval: int = 20,
    ) -> list[float]:
        if bar_count >= 1 and update_interval >= 1:
            config = WaveformConfig(speaker=speaker, bar_count=bar_count, update_interval=update_interval)
            if config != self._waveforms.requested:
                self._waveforms.remember(config)
                if not self._machine.is_disconnected:
                    self._dispatcher.configure_waveform(speaker, bar_count, update_interval)
        return self._waveforms.read(speaker, bar_count)

    def toggle_microphone(self, enabled: bool) -> DispatchResult:
        result = self._dispatcher.toggle_microphone(enabled)
        if result.ok:
            self._microphone_enabled = bool(enabled)
        return result

    def set_volume(self, value: float) -> DispatchResult:
        return self._dispatcher.set_volume(value)

    def _emit(self, event: str, *args: Any) -> None:
        for callback in list(self._listeners[event]):
            try:
                callback(*args)
            except Exception:
                LOGGER.exception("%s listener failed", event)
