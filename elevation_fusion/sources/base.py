"""Sensor source contract shared by the local and remote sources."""

import asyncio
import logging
import threading
from typing import AsyncIterator, Callable, Optional, Protocol

from ..core.errors import FusionError
from ..core.types import AxisEvent, RawSample, SourceKind, SourceStats
from ..fusion.channel import FusionChannel, SampleStream

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[FusionError], None]


class SensorSource(Protocol):
    """Capability set every sensor source provides.

    ``start_listening`` and ``stop_listening`` are idempotent.
    ``start_listening`` never raises: failures go to the error handler
    and the call returns False. Each successful start opens a new,
    infinite sample sequence that ends when the source is stopped.
    """

    kind: SourceKind

    @property
    def is_listening(self) -> bool: ...

    @property
    def stats(self) -> SourceStats: ...

    def set_error_handler(self, handler: Optional[ErrorHandler]) -> None: ...

    async def start_listening(self) -> bool: ...

    async def stop_listening(self) -> None: ...

    def samples(self) -> AsyncIterator[RawSample]: ...


class SourceOutput:
    """Fusion channel, sample stream and error reporting for one source.

    Owns the per-recording SampleStream and the FusionChannel feeding
    it. ``push`` and ``report`` are safe to call from producer threads.
    """

    def __init__(self, name: str, capacity: int = 64):
        """Initialize output.

        Args:
            name: Source name used in log messages.
            capacity: Sample stream capacity.
        """
        self._name = name
        self._capacity = capacity
        self._stream: Optional[SampleStream] = None
        self._channel: Optional[FusionChannel] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._handler: Optional[ErrorHandler] = None
        self._lock = threading.Lock()

    def set_error_handler(self, handler: Optional[ErrorHandler]) -> None:
        """Install the callback receiving reported errors."""
        self._handler = handler

    def open(self) -> None:
        """Start a new sample sequence on the running loop."""
        self._loop = asyncio.get_running_loop()
        stream = SampleStream(self._capacity, loop=self._loop)
        with self._lock:
            self._stream = stream
            self._channel = FusionChannel(stream.publish)

    def close(self) -> None:
        """End the current sample sequence."""
        with self._lock:
            stream = self._stream
        if stream is not None:
            stream.close()

    def push(self, event: AxisEvent) -> Optional[RawSample]:
        """Feed one axis-group event into the channel."""
        with self._lock:
            channel = self._channel
            stream = self._stream
        if channel is None or stream is None or stream.closed:
            return None
        return channel.push(event)

    def samples(self) -> AsyncIterator[RawSample]:
        """The sequence opened by the most recent ``open``."""
        if self._stream is None:
            raise RuntimeError(f"{self._name} source has never been started")
        return self._stream

    def report(self, error: FusionError) -> None:
        """Deliver an error to the handler on the consumer's loop."""
        logger.warning("%s source: %s", self._name, error)
        handler = self._handler
        if handler is None:
            return

        loop = self._loop
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if loop is None or running is loop:
            handler(error)
        elif not loop.is_closed():
            loop.call_soon_threadsafe(handler, error)

    def fill_stats(self, stats: SourceStats) -> SourceStats:
        """Copy channel and stream counters into ``stats``."""
        if self._channel is not None:
            stats.events = self._channel.events_in
        if self._stream is not None:
            stats.samples_emitted = self._stream.published
            stats.samples_dropped = self._stream.dropped
        return stats
