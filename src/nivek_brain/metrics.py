"""Running latency and audio-duration statistics across turns."""

from __future__ import annotations

import logging
import math

from nivek_brain.models import MetricsSnapshot


class MetricsAggregator:
    """Keeps a cumulative moving average of turn latency.

    Values only move forward; nothing resets them short of a new process.
    """

    def __init__(self, *, logger: logging.Logger | None = None) -> None:
        self._last_latency_ms = 0
        self._average_latency_ms = 0
        self._turn_count = 0
        self._last_audio_duration_ms = 0
        self._logger = logger or logging.getLogger("nivek_brain.metrics")

    def record_turn(self, elapsed_ms: int) -> MetricsSnapshot:
        """Fold one completed turn's latency into the running average."""
        elapsed_ms = max(0, int(elapsed_ms))
        total = self._average_latency_ms * self._turn_count + elapsed_ms
        # Half-up rounding, not Python's banker's rounding.
        self._average_latency_ms = math.floor(total / (self._turn_count + 1) + 0.5)
        self._turn_count += 1
        self._last_latency_ms = elapsed_ms
        self._logger.info(
            "turn_metrics_recorded",
            extra={
                "latency_ms": elapsed_ms,
                "average_latency_ms": self._average_latency_ms,
                "turn_count": self._turn_count,
            },
        )
        return self.snapshot()

    def record_audio_duration(self, duration_ms: int) -> None:
        self._last_audio_duration_ms = int(duration_ms)

    def snapshot(self) -> MetricsSnapshot:
        return MetricsSnapshot(
            last_latency_ms=self._last_latency_ms,
            average_latency_ms=self._average_latency_ms,
            turn_count=self._turn_count,
            last_audio_duration_ms=self._last_audio_duration_ms,
        )
