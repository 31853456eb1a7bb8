"""Translate controller intents into outbound channel commands."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable

from bridge.channel import ControllerEndpoint
from bridge.messages import (
    SendDtmf,
    SendText,
    SessionPhase,
    SetVolume,
    Speaker,
    ToggleMic,
    WaveformConfig,
    BridgeMessage,
)
from session.schemas import DispatchResult
from session.transcript import TranscriptStore

LOGGER = logging.getLogger(__name__)

DTMF_DIGITS = frozenset("0123456789*#")


def clamp_volume(value: float) -> float:
    return min(max(float(value), 0.0), 1.0)


class CommandDispatcher:
    def __init__(
        self,
        channel: Callable[[], ControllerEndpoint | None],
        phase: Callable[[], SessionPhase],
        transcript: TranscriptStore,
    ) -> None:
        self._channel = channel
        self._phase = phase
        self._transcript = transcript

    def send_text(self, text: str) -> DispatchResult:
        if not isinstance(text, str) or not text:
            return self._reject("send_text", "Text must be non-empty.")
        blocked = self._blocked("send_text")
        if blocked:
            return blocked

        # Show the user's own message before the round trip completes.
        self._transcript.append_local("user", text)
        return self._dispatch(SendText(text=text))

    def send_digit(self, digit: int | str) -> DispatchResult:
        value = str(digit) if isinstance(digit, int) and not isinstance(digit, bool) else digit
        if not isinstance(value, str) or value not in DTMF_DIGITS:
            return self._reject("send_dtmf", f"Invalid DTMF digit: {digit!r}")
        return self._dispatch(SendDtmf(digit=value))

    def toggle_microphone(self, enabled: bool) -> DispatchResult:
        return self._dispatch(ToggleMic(enabled=bool(enabled)))

    def set_volume(self, value: float) -> DispatchResult:
        if not math.isfinite(value):
            return self._reject("set_volume", f"Invalid volume: {value!r}")
        return self._dispatch(SetVolume(value=clamp_volume(value)))

    def configure_waveform(self, speaker: Speaker, bar_count: int, update_interval: int) -> DispatchResult:
        if speaker not in ("agent", "user"):
            return self._reject("waveform_config", f"Unknown waveform speaker: {speaker!r}")
        if bar_count < 1 or update_interval < 1:
            return self._reject("waveform_config", "Bar count and update interval must be positive.")
        return self._dispatch(
            WaveformConfig(speaker=speaker, bar_count=bar_count, update_interval=update_interval)
        )

    def _blocked(self, command: str) -> DispatchResult | None:
        if self._phase() == "disconnected":
            return self._reject(command, "Not connected to a conversation.")
        channel = self._channel()
        if channel is None or channel.closed:
            return self._reject(command, "No message channel available.")
        return None

    def _dispatch(self, message: BridgeMessage) -> DispatchResult:
        command = message.type
        blocked = self._blocked(command)
        if blocked:
            return blocked
        channel = self._channel()
        if channel is None or not channel.send(message):
            return self._reject(command, "No message channel available.")
        return DispatchResult.sent(command)

    @staticmethod
    def _reject(command: str, reason: str) -> DispatchResult:
        LOGGER.warning("Cannot dispatch %s: %s", command, reason)
        return DispatchResult.rejected(command, reason)
