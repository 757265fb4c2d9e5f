"""Capture statistics for the acquisition loop.

Collects capture outcomes and save outcomes for the single attached sensor:

- Capture success/failure counts and success rate
- Capture duration statistics (min, max, avg, p95) over a rolling window
- Failure counts by error category
- Frames written to disk and failed writes

Thread-safe: the capture thread records, the command shell reads.

Example:
    stats = CaptureStats()
    stats.record_capture(duration_ms=1012.5, success=True)
    stats.record_capture(duration_ms=0, success=False, error_type="DeviceError")
    stats.record_save(success=True)

    summary = stats.get_summary()
    print(f"{summary.frames_saved} saved, {summary.success_rate:.0%} captured")
"""

from __future__ import annotations

import threading
import time
from collections import Counter, deque
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

import numpy as np

#: Successful capture durations kept for duration statistics. At one-second
#: exposures this covers the last quarter hour or so.
DEFAULT_STATS_WINDOW_SIZE: int = 1000


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class StatsSummary:
    """Point-in-time view of capture statistics.

    Attributes:
        total_captures: Capture attempts since creation or reset.
        successful_captures: Attempts that produced a frame.
        failed_captures: Attempts that ended the session.
        success_rate: successful / total, 0.0 before the first attempt.
        min_duration_ms: Fastest successful capture in the window.
        max_duration_ms: Slowest successful capture in the window.
        avg_duration_ms: Mean successful capture duration in the window.
        p95_duration_ms: 95th percentile successful capture duration.
        error_counts: Failed captures by error category.
        frames_saved: Raw frames written to disk.
        save_failures: Writes that failed.
        last_capture_time: UTC time of the most recent attempt.
        uptime_seconds: Seconds since creation or reset.
    """

    total_captures: int = 0
    successful_captures: int = 0
    failed_captures: int = 0
    success_rate: float = 0.0
    min_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    avg_duration_ms: float = 0.0
    p95_duration_ms: float = 0.0
    error_counts: dict[str, int] = field(default_factory=dict)
    frames_saved: int = 0
    save_failures: int = 0
    last_capture_time: datetime | None = None
    uptime_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable dict of every field.

        ``last_capture_time`` is rendered as an ISO 8601 string (or None).
        """
        data = asdict(self)
        if self.last_capture_time is not None:
            data["last_capture_time"] = self.last_capture_time.isoformat()
        return data


def _duration_stats(durations: list[float]) -> dict[str, float]:
    """Min, max, mean and linearly interpolated p95 of ``durations``."""
    if not durations:
        return {}
    values = np.asarray(durations, dtype=np.float64)
    return {
        "min_duration_ms": float(values.min()),
        "max_duration_ms": float(values.max()),
        "avg_duration_ms": float(values.mean()),
        "p95_duration_ms": float(np.percentile(values, 95)),
    }


class CaptureStats:
    """Thread-safe capture and save counters with a rolling duration window.

    Cumulative counters cover the whole lifetime (or since :meth:`reset`);
    duration statistics use only the last ``window_size`` successful
    captures so a long run reflects recent behaviour.
    """

    def __init__(self, window_size: int = DEFAULT_STATS_WINDOW_SIZE) -> None:
        """Create an empty collector.

        Args:
            window_size: Successful capture durations retained.

        Raises:
            ValueError: If window_size is not positive.
        """
        if window_size <= 0:
            raise ValueError(f"window_size must be > 0, got {window_size}")
        self._lock = threading.Lock()
        self._durations: deque[float] = deque(maxlen=window_size)
        self._clear()

    def _clear(self) -> None:
        self._durations.clear()
        self._errors: Counter[str] = Counter()
        self._attempts = 0
        self._captured = 0
        self._saved = 0
        self._save_failures = 0
        self._started = time.monotonic()
        self._last_attempt: datetime | None = None

    def record_capture(
        self,
        duration_ms: float,
        success: bool,
        error_type: str | None = None,
    ) -> None:
        """Record one capture attempt.

        Args:
            duration_ms: Wall time of the attempt, including any streaming
                reconfiguration it triggered.
            success: True if a frame was produced.
            error_type: Failure category (usually the exception class name).
                Ignored for successful attempts.

        Example:
            >>> stats.record_capture(duration_ms=998.0, success=True)
            >>> stats.record_capture(0.0, False, error_type="SessionClosedError")
        """
        with self._lock:
            self._attempts += 1
            self._last_attempt = _utc_now()
            if success:
                self._captured += 1
                if duration_ms > 0:
                    self._durations.append(duration_ms)
            elif error_type:
                self._errors[error_type] += 1

    def record_save(self, success: bool) -> None:
        """Record one attempt to persist a raw frame."""
        with self._lock:
            if success:
                self._saved += 1
            else:
                self._save_failures += 1

    def get_summary(self) -> StatsSummary:
        """Compute a summary snapshot.

        Counters are copied under the lock; the duration aggregates are
        computed outside it so a status query never holds up the capture
        thread.
        """
        with self._lock:
            attempts = self._attempts
            captured = self._captured
            summary = StatsSummary(
                total_captures=attempts,
                successful_captures=captured,
                failed_captures=attempts - captured,
                success_rate=captured / attempts if attempts else 0.0,
                error_counts=dict(self._errors),
                frames_saved=self._saved,
                save_failures=self._save_failures,
                last_capture_time=self._last_attempt,
                uptime_seconds=time.monotonic() - self._started,
            )
            durations = list(self._durations)

        for name, value in _duration_stats(durations).items():
            setattr(summary, name, value)
        return summary

    def reset(self) -> None:
        """Clear all counters and durations and restart the uptime clock."""
        with self._lock:
            self._clear()

    def to_dict(self) -> dict[str, Any]:
        """Export the current summary with an export timestamp."""
        return {
            "capture": self.get_summary().to_dict(),
            "timestamp": _utc_now().isoformat(),
        }
