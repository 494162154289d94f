"""Stream monitoring module."""

from .metrics import StreamMonitor, StreamStats, SampleMetrics

__all__ = ["StreamMonitor", "StreamStats", "SampleMetrics"]
