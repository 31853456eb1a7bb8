"""Relay between a live media session and the runtime end of the channel.

The adapter keeps no conversation state. Live events become channel messages,
and commands received on the channel become calls on the live session. A bad
event or a failed command is logged and dropped; it never ends the session.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Sequence
from typing import Any

from pydantic import ValidationError

from bridge.channel import RuntimeEndpoint
from bridge.fence import Clock, wall_clock_ms
from bridge.messages import (
    BridgeMessage,
    Command,
    FunctionCallsCollected,
    FunctionCallsFinished,
    SendDtmf,
    SendText,
    SetVolume,
    StateUpdate,
    ToggleMic,
    TranscriptionUpdate,
    TransportClosed,
    WaveformConfig,
    WaveformUpdate,
)
from config.settings import Settings, get_settings
from runtime.base import LiveSegment, LiveSession

LOGGER = logging.getLogger(__name__)

TOPIC_CALLS_COLLECTED = "function_calls_collected"
TOPIC_CALLS_FINISHED = "function_calls_finished"
TOPIC_TOOLS_EXECUTED = "function_tools_executed"
TOOL_TOPICS = frozenset({TOPIC_CALLS_COLLECTED, TOPIC_CALLS_FINISHED, TOPIC_TOOLS_EXECUTED})

def decode_tool_payload(topic: str, payload: bytes | str) -> BridgeMessage:
    """Parse a data-channel payload into a tool-call message. Raises ValueError."""

    text = payload.decode("utf-8") if isinstance(payload, (bytes, bytearray)) else str(payload)
    data: Any = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")

    calls = data.get("calls", data.get("function_calls", []))
    if topic == TOPIC_CALLS_COLLECTED:
        return FunctionCallsCollected(calls=calls)

    results = data.get("results", data.get("function_call_outputs", []))
    return FunctionCallsFinished(calls=calls, results=results)


class SandboxedRuntimeAdapter:
    def __init__(
        self,
        endpoint: RuntimeEndpoint,
        session: LiveSession,
        *,
        initial_config: WaveformConfig | None = None,
        settings: Settings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._session = session
        self._settings = settings or get_settings()
        self._clock = clock or wall_clock_ms
        self._sampling = initial_config or WaveformConfig(
            speaker="agent",
            bar_count=self._settings.waveform_default_bar_count,
            update_interval=self._settings.waveform_default_update_interval_ms,
        )
        self._commands: asyncio.Queue[Any] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._attached = False

    @property
    def sampling(self) -> WaveformConfig:
        return self._sampling

    def attach(self) -> None:
        """Bind to the live session and activate the runtime endpoint."""

        if self._attached:
            return
        self._attached = True
        self._endpoint.on_message(self._enqueue)
        self._session.bind(self)
        self._apply_sampling()
        self._worker = asyncio.get_running_loop().create_task(self._run_commands(), name="runtime-commands")
        self._endpoint.start()

    async def detach(self) -> None:
        self._attached = False
        if self._worker is not None:
            worker, self._worker = self._worker, None
            worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await worker

    async def flush(self) -> None:
        """Wait until every command received so far has been executed."""

        await self._endpoint.drain()
        await self._commands.join()

    # Live session -> channel

    def on_phase(self, phase: str) -> None:
        self._relay(StateUpdate, phase=phase)

    def on_transcription(self, speaker: str, segments: Sequence[LiveSegment]) -> None:
        if not segments:
            return
        stamp = self._clock()
        self._relay(
            TranscriptionUpdate,
            segments=[
                {
                    "id": segment.id,
                    "text": segment.text,
                    "isFinal": segment.final,
                    "timestamp": stamp,
                    "speaker": speaker,
                }
                for segment in segments
            ],
        )

    def on_audio_levels(self, speaker: str, samples: Sequence[float]) -> None:
        self._relay(WaveformUpdate, speaker=speaker, samples=list(samples))

    def on_data(self, topic: str, payload: bytes | str) -> None:
        if topic not in TOOL_TOPICS:
            LOGGER.debug("Ignoring data on topic %s", topic)
            return
        try:
            message = decode_tool_payload(topic, payload)
        except ValueError as exc:
            LOGGER.error("Failed to parse %s payload: %s", topic, exc)
            return
        self._emit(message)

    def on_disconnected(self, error: BaseException | None = None) -> None:
        self._relay(TransportClosed, error=str(error) if error is not None else None)

    # Channel -> live session

    def _enqueue(self, command: Command) -> None:
        self._commands.put_nowait(command)

    async def _run_commands(self) -> None:
        while True:
            command = await self._commands.get()
            try:
                await self.execute(command)
            except Exception:
                LOGGER.exception("Command %s failed", getattr(command, "type", command))
            finally:
                self._commands.task_done()

    async def execute(self, command: Command) -> None:
        if isinstance(command, SendText):
            await self._session.publish_text(command.text)
        elif isinstance(command, SendDtmf):
            await self._session.publish_dtmf(self._settings.dtmf_payload_type, command.digit)
        elif isinstance(command, ToggleMic):
            await self._session.set_microphone_enabled(command.enabled)
        elif isinstance(command, SetVolume):
            await self._session.set_remote_volume(command.value)
            LOGGER.info("Set agent volume to %s", command.value)
        elif isinstance(command, WaveformConfig):
            self._sampling = command
            self._apply_sampling()
        else:
            LOGGER.error("Unhandled command type: %r", command)

    def _apply_sampling(self) -> None:
        selected = self._sampling
        for speaker in ("agent", "user"):
            if speaker == selected.speaker:
                bars, interval = selected.bar_count, selected.update_interval
            else:
                bars = self._settings.waveform_idle_bar_count
                interval = self._settings.waveform_idle_update_interval_ms
            self._session.configure_sampling(speaker, bars, interval)

    def _relay(self, model: type[BridgeMessage], **fields: Any) -> None:
        try:
            message = model(**fields)
        except ValidationError as exc:
            LOGGER.error("Dropping malformed %s event: %s", model.__name__, exc)
            return
        self._emit(message)

    def _emit(self, message: BridgeMessage) -> None:
        if not self._attached:
            LOGGER.debug("Adapter detached; dropping %s", message.type)
            return
        self._endpoint.send(message)
