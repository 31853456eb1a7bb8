"""Per-speaker audio level buffers."""

from __future__ import annotations

from collections.abc import Sequence
from typing import get_args

import numpy as np

from bridge.messages import Speaker, WaveformConfig

SPEAKERS: tuple[str, ...] = get_args(Speaker)


class WaveformCache:
    """Latest sample buffer per speaker; each update replaces the previous one."""

    def __init__(self) -> None:
        self._buffers: dict[str, np.ndarray] = {}
        self.requested: WaveformConfig | None = None
        self.reset()

    def update(self, speaker: Speaker, samples: Sequence[float]) -> None:
        self._check_speaker(speaker)
        self._buffers[speaker] = np.asarray(samples, dtype=np.float64).copy()

    def read(self, speaker: Speaker, bar_count: int) -> list[float]:
        """Return exactly ``bar_count`` values, truncated or zero-padded."""

        self._check_speaker(speaker)
        if bar_count < 0:
            raise ValueError("bar_count must be non-negative.")

        data = self._buffers[speaker]
        if data.size >= bar_count:
            return data[:bar_count].tolist()

        out = np.zeros(bar_count, dtype=np.float64)
        out[: data.size] = data
        return out.tolist()

    def remember(self, config: WaveformConfig) -> None:
        """Keep the last requested sampling so a new runtime can start with it."""

        self.requested = config

    def reset(self) -> None:
        self._buffers = {speaker: np.zeros(0, dtype=np.float64) for speaker in SPEAKERS}

    @staticmethod
    def _check_speaker(speaker: str) -> None:
        if speaker not in SPEAKERS:
            raise ValueError(f"Unknown waveform speaker: {speaker!r}")
