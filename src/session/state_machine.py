"""Conversation lifecycle tracking."""

from __future__ import annotations

import logging
from collections.abc import Callable

from bridge.messages import SessionPhase

LOGGER = logging.getLogger(__name__)

PhaseListener = Callable[[SessionPhase, SessionPhase], None]


class SessionStateMachine:
    """Single source of truth for the current phase.

    Phases after ``connecting`` are reported by the runtime and recorded as-is;
    only entering ``connecting`` and returning to ``disconnected`` are decided
    locally.
    """

    def __init__(self) -> None:
        self._phase: SessionPhase = "disconnected"
        self._listeners: list[PhaseListener] = []

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def is_disconnected(self) -> bool:
        return self._phase == "disconnected"

    def subscribe(self, listener: PhaseListener) -> None:
        self._listeners.append(listener)

    def begin_connect(self) -> bool:
        if self._phase != "disconnected":
            LOGGER.warning("Connect rejected while %s", self._phase)
            return False
        self._set("connecting")
        return True

    def report(self, phase: SessionPhase) -> bool:
        """Record a phase reported by the runtime. Returns True if it was applied."""

        if self._phase == "disconnected":
            LOGGER.debug("Ignoring reported phase %s with no active session", phase)
            return False
        if phase == "disconnected":
            # Session teardown is driven by transport closure or an explicit disconnect.
            LOGGER.debug("Ignoring reported disconnected phase while %s", self._phase)
            return False
        self._set(phase)
        return True

    def reset(self) -> bool:
        if self._phase == "disconnected":
            return False
        self._set("disconnected")
        return True

    def _set(self, phase: SessionPhase) -> None:
        previous = self._phase
        if previous == phase:
            return
        self._phase = phase
        LOGGER.debug("Phase %s -> %s", previous, phase)
        for listener in self._listeners:
            listener(previous, phase)
