"""Stream metrics for a recording session."""

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Optional, Deque
import numpy as np

from ..core.config import Config
from ..core.types import SourceKind, SourceStats

logger = logging.getLogger(__name__)


@dataclass
class SampleMetrics:
    """Metrics for one processed sample."""
    timestamp: int
    dt_ms: float
    processing_ms: float
    index: int


@dataclass
class StreamStats:
    """Aggregated stream statistics."""
    mean_dt_ms: float
    std_dt_ms: float
    max_dt_ms: float
    min_dt_ms: float
    mean_processing_ms: float
    max_processing_ms: float
    effective_rate_hz: float
    gaps: int
    total_samples: int

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "rate_hz": self.effective_rate_hz,
            "dt_mean_ms": self.mean_dt_ms,
            "dt_std_ms": self.std_dt_ms,
            "processing_ms": self.mean_processing_ms,
            "gaps": self.gaps,
            "samples": self.total_samples,
        }


class StreamMonitor:
    """Tracks sample timing and processing cost while recording.

    Inter-sample intervals come from the samples' own timestamps, so
    they reflect the source clock. Intervals longer than 1.5 nominal
    periods count as gaps.
    """

    def __init__(self, config: Config, expected_rate_hz: Optional[float] = None):
        """Initialize monitor.

        Args:
            config: System configuration with monitoring settings.
            expected_rate_hz: Nominal sample rate for gap detection.
                Defaults to the local source's combined event rate.
        """
        self._mon_cfg = config.monitoring

        window = self._mon_cfg.window_size
        self._dt_history: Deque[float] = deque(maxlen=window)
        self._processing_history: Deque[float] = deque(maxlen=window)

        self._count = 0
        self._gaps = 0
        self._last_log_time = 0.0
        self._last_timestamp: Optional[int] = None
        self._start_time: Optional[float] = None

        if expected_rate_hz is None:
            expected_rate_hz = config.nominal_sample_rate_hz(SourceKind.LOCAL)
        self._target_dt_ms = 1000.0 / expected_rate_hz

    def start_sample(self) -> None:
        """Mark the start of processing for one sample."""
        self._start_time = time.perf_counter()

    def end_sample(self, timestamp: int) -> SampleMetrics:
        """Mark the end of processing and record timing.

        Args:
            timestamp: Sample timestamp in nanoseconds.

        Returns:
            Metrics for this sample.
        """
        now = time.perf_counter()
        processing_ms = 0.0
        if self._start_time is not None:
            processing_ms = (now - self._start_time) * 1000

        dt_ms = 0.0
        if self._last_timestamp is not None:
            dt_ms = (timestamp - self._last_timestamp) / 1e6
            self._dt_history.append(dt_ms)
            if dt_ms > 1.5 * self._target_dt_ms:
                self._gaps += 1
                logger.debug("Gap: dt=%.2f ms (nominal %.2f ms)", dt_ms, self._target_dt_ms)

        self._processing_history.append(processing_ms)
        self._last_timestamp = timestamp
        self._count += 1

        self._maybe_log_stats()

        return SampleMetrics(
            timestamp=timestamp,
            dt_ms=dt_ms,
            processing_ms=processing_ms,
            index=self._count,
        )

    def _maybe_log_stats(self) -> None:
        """Log statistics periodically."""
        now = time.time()
        if now - self._last_log_time >= self._mon_cfg.log_interval_s:
            if self._dt_history:
                stats = self.get_stats()
                logger.info(
                    "Stream: rate=%.1f Hz, dt=%.2f+/-%.2f ms, processing=%.3f ms, gaps=%d",
                    stats.effective_rate_hz,
                    stats.mean_dt_ms,
                    stats.std_dt_ms,
                    stats.mean_processing_ms,
                    stats.gaps,
                )
            self._last_log_time = now

    def get_stats(self) -> StreamStats:
        """Get aggregated stream statistics."""
        if not self._dt_history:
            return StreamStats(
                mean_dt_ms=0.0,
                std_dt_ms=0.0,
                max_dt_ms=0.0,
                min_dt_ms=0.0,
                mean_processing_ms=0.0,
                max_processing_ms=0.0,
                effective_rate_hz=0.0,
                gaps=0,
                total_samples=self._count,
            )

        dt_array = np.array(self._dt_history)
        processing_array = np.array(self._processing_history)

        mean_dt = float(np.mean(dt_array))
        effective_rate = 1000.0 / mean_dt if mean_dt > 0 else 0.0

        return StreamStats(
            mean_dt_ms=mean_dt,
            std_dt_ms=float(np.std(dt_array)),
            max_dt_ms=float(np.max(dt_array)),
            min_dt_ms=float(np.min(dt_array)),
            mean_processing_ms=float(np.mean(processing_array)),
            max_processing_ms=float(np.max(processing_array)),
            effective_rate_hz=effective_rate,
            gaps=self._gaps,
            total_samples=self._count,
        )

    def log_summary(self, source_stats: SourceStats) -> None:
        """Log final statistics for a finished recording."""
        stats = self.get_stats()
        logger.info("Recording statistics:")
        logger.info("  Samples: %d", stats.total_samples)
        logger.info("  Effective rate: %.1f Hz", stats.effective_rate_hz)
        logger.info("  Events: %d, emitted: %d, dropped: %d (%.1f%%)",
                    source_stats.events,
                    source_stats.samples_emitted,
                    source_stats.samples_dropped,
                    100.0 * source_stats.drop_rate)
        logger.info("  Rejected frames: %d (CRC %d)",
                    source_stats.rejected_frames,
                    source_stats.crc_errors)
        logger.info("  Gaps: %d", stats.gaps)

    def reset(self, expected_rate_hz: Optional[float] = None) -> None:
        """Reset all metrics.

        Args:
            expected_rate_hz: New nominal sample rate, if it changes.
        """
        if expected_rate_hz is not None:
            self._target_dt_ms = 1000.0 / expected_rate_hz
        self._dt_history.clear()
        self._processing_history.clear()
        self._count = 0
        self._gaps = 0
        self._last_timestamp = None
        self._start_time = None
