"""Transcript reconciliation.

Segments arrive repeatedly for the same identity while speech-to-text revises
them. The store keys entries by identity, keeps the timestamp of the first
sighting so ordering stays put while text changes, and hands each settled
entry to the subscriber exactly once.
"""

from __future__ import annotations

import itertools
import json
import logging
from collections.abc import Callable

from bridge.fence import Clock, SessionFence, wall_clock_ms
from session.schemas import ConversationEntry, Role, ToolBatch

LOGGER = logging.getLogger(__name__)

FinalListener = Callable[[ConversationEntry], None]


class TranscriptStore:
    def __init__(self, fence: SessionFence, *, clock: Clock | None = None) -> None:
        self._fence = fence
        self._clock = clock or wall_clock_ms
        self._entries: dict[str, ConversationEntry] = {}
        self._snapshot: list[ConversationEntry] = []
        self._serialized = "[]"
        self._delivered: set[str] = set()
        self._listeners: list[FinalListener] = []
        self._seq = itertools.count(1)

    @property
    def entries(self) -> list[ConversationEntry]:
        """Ordered, externally visible transcript."""

        return list(self._snapshot)

    def subscribe(self, listener: FinalListener) -> None:
        self._listeners.append(listener)

    def upsert(
        self,
        segment_id: str,
        speaker: Role,
        text: str | None,
        is_final: bool,
        origin_timestamp: float | None = None,
    ) -> bool:
        """Insert or revise one segment. Returns True if the visible transcript changed."""

        if origin_timestamp is not None and self._fence.is_stale(origin_timestamp):
            LOGGER.debug("Dropping stale segment %s (ts=%s < fence=%s)", segment_id, origin_timestamp, self._fence.value)
            return False

        existing = self._entries.get(segment_id)
        if existing is None:
            timestamp = origin_timestamp if origin_timestamp is not None else self._clock()
            final = is_final
        else:
            timestamp = existing.timestamp
            final = existing.is_final or is_final

        self._entries[segment_id] = ConversationEntry(
            id=segment_id,
            speaker=speaker,
            text=text,
            timestamp=timestamp,
            is_final=final,
        )
        return self._publish()

    def append_local(self, speaker: Role, text: str, *, prefix: str = "user-text") -> ConversationEntry:
        """Record a settled entry produced on the controller side, e.g. typed user text."""

        timestamp = self._clock()
        segment_id = self._next_id(prefix, timestamp)
        self.upsert(segment_id, speaker, text, True)
        return self._entries[segment_id]

    def record_tool_batch(self, batch: ToolBatch) -> ConversationEntry:
        timestamp = self._clock()
        entry = ConversationEntry(
            id=self._next_id("function-calls", timestamp),
            speaker="tool",
            timestamp=timestamp,
            is_final=True,
            tool=batch,
        )
        self._entries[entry.id] = entry
        self._publish()
        return entry

    def notify_final(self) -> list[ConversationEntry]:
        """Deliver settled entries not yet seen by subscribers, oldest first."""

        delivered: list[ConversationEntry] = []
        for entry in self._snapshot:
            if not entry.is_final or entry.id in self._delivered:
                continue
            self._delivered.add(entry.id)
            delivered.append(entry)
            for listener in self._listeners:
                listener(entry)
        return delivered

    def reset(self) -> None:
        self._entries.clear()
        self._delivered.clear()
        self._snapshot = []
        self._serialized = "[]"

    def _publish(self) -> bool:
        # Stable sort: equal timestamps keep insertion order.
        ordered = sorted(self._entries.values(), key=lambda entry: entry.timestamp)
        serialized = json.dumps([entry.model_dump(mode="json") for entry in ordered])
        if serialized == self._serialized:
            return False
        self._serialized = serialized
        self._snapshot = ordered
        self.notify_final()
        return True

    def _next_id(self, prefix: str, timestamp: float) -> str:
        return f"{prefix}-{int(timestamp)}-{next(self._seq)}"
