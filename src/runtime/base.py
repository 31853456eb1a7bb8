"""Boundary of the external real-time media collaborator."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol


class ParticipantUnavailableError(RuntimeError):
    """Raised by a live session when the participant a command targets is missing."""


@dataclass(slots=True, frozen=True)
class LiveSegment:
    """Speech-to-text chunk as reported by the media collaborator."""

    id: str
    text: str
    final: bool


class LiveEventListener(Protocol):
    """Callbacks a live session invokes for its events."""

    def on_phase(self, phase: str) -> None:  # pragma: no cover - protocol stub
        ...

    def on_transcription(self, speaker: str, segments: Sequence[LiveSegment]) -> None:  # pragma: no cover
        ...

    def on_audio_levels(self, speaker: str, samples: Sequence[float]) -> None:  # pragma: no cover
        ...

    def on_data(self, topic: str, payload: bytes | str) -> None:  # pragma: no cover
        ...

    def on_disconnected(self, error: BaseException | None = None) -> None:  # pragma: no cover
        ...


class LiveSession(ABC):
    """Abstract base class for live media sessions."""

    @abstractmethod
    def bind(self, listener: LiveEventListener) -> None:
        """Route all subsequent session events to ``listener``."""

    @abstractmethod
    async def connect(self) -> None:
        """Join the transport using the connection details the session was built with."""

    @abstractmethod
    async def close(self) -> None:
        """Leave the transport and release media resources."""

    @abstractmethod
    async def publish_text(self, text: str) -> None:
        """Send a chat message to the agent."""

    @abstractmethod
    async def publish_dtmf(self, code: int, digit: str) -> None:
        """Send a DTMF tone from the local participant."""

    @abstractmethod
    async def set_microphone_enabled(self, enabled: bool) -> None:
        """Enable or disable the local microphone track."""

    @abstractmethod
    async def set_remote_volume(self, value: float) -> None:
        """Set playback volume of the agent's audio."""

    @abstractmethod
    def configure_sampling(self, speaker: str, bar_count: int, update_interval: int) -> None:
        """Adjust audio level sampling for one speaker."""
