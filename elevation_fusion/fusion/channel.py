"""Fusion channel and bounded sample stream.

Sources deliver acceleration and angular-rate readings as separate
events. ``FusionChannel`` combines each event with the last known value
of the other axis group and hands one RawSample per event to a sink.
``SampleStream`` is the usual sink: a bounded queue that drops the
oldest pending sample when full and is consumed as an async iterator.
"""

import asyncio
import logging
import threading
from collections import deque
from typing import Callable, Deque, Optional

from ..core.types import AxisEvent, AxisGroup, RawSample, Vector3, ZERO_VECTOR

logger = logging.getLogger(__name__)


class SampleStream:
    """Bounded, drop-oldest stream of RawSamples.

    ``publish`` may be called from any thread; iteration happens on the
    event loop the stream was created on. Once closed the stream cannot
    be reopened; a new recording uses a new stream.
    """

    def __init__(
        self,
        capacity: int = 64,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        """Initialize stream.

        Args:
            capacity: Maximum number of unread samples.
            loop: Loop the consumer runs on. Defaults to the running loop.
        """
        self._capacity = max(1, int(capacity))
        self._loop = loop if loop is not None else asyncio.get_running_loop()
        self._buffer: Deque[RawSample] = deque()
        self._lock = threading.Lock()
        self._wakeup = asyncio.Event()
        self._closed = False
        self.published = 0
        self.dropped = 0

    @property
    def closed(self) -> bool:
        """True once ``close`` has been called."""
        return self._closed

    @property
    def pending(self) -> int:
        """Number of unread samples."""
        with self._lock:
            return len(self._buffer)

    def publish(self, sample: RawSample) -> None:
        """Append a sample, evicting the oldest unread one when full."""
        with self._lock:
            if self._closed:
                return
            if len(self._buffer) >= self._capacity:
                self._buffer.popleft()
                self.dropped += 1
                if self.dropped == 1 or self.dropped % 100 == 0:
                    logger.warning("Sample stream full, %d samples dropped", self.dropped)
            self._buffer.append(sample)
            self.published += 1
        self._notify()

    def close(self) -> None:
        """End the stream; the consumer finishes after draining."""
        with self._lock:
            self._closed = True
        self._notify()

    def _notify(self) -> None:
        """Wake the consumer from whichever thread we are on."""
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self._loop:
            self._wakeup.set()
        elif not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._wakeup.set)

    def __aiter__(self) -> "SampleStream":
        return self

    async def __anext__(self) -> RawSample:
        while True:
            self._wakeup.clear()
            with self._lock:
                if self._buffer:
                    return self._buffer.popleft()
                if self._closed:
                    raise StopAsyncIteration
            await self._wakeup.wait()


class FusionChannel:
    """Merges acceleration and angular-rate events into RawSamples.

    Every incoming event produces exactly one RawSample, stamped with
    the event's own timestamp. The axis group not carried by the event
    is held at its last known value (zero until first seen).
    """

    def __init__(self, sink: Callable[[RawSample], None]):
        """Initialize channel.

        Args:
            sink: Receives each combined sample, in combination order.
        """
        self._sink = sink
        self._lock = threading.Lock()
        self._acc: Vector3 = ZERO_VECTOR
        self._gyr: Vector3 = ZERO_VECTOR
        self.events_in = 0
        self.samples_out = 0

    def reset(self) -> None:
        """Forget held values and counters."""
        with self._lock:
            self._acc = ZERO_VECTOR
            self._gyr = ZERO_VECTOR
            self.events_in = 0
            self.samples_out = 0

    def push(self, event: AxisEvent) -> RawSample:
        """Combine one axis-group event and forward it.

        Args:
            event: Reading from one physical sensor.

        Returns:
            The RawSample handed to the sink.
        """
        with self._lock:
            self.events_in += 1
            if event.group is AxisGroup.ACCELERATION:
                self._acc = event.values
            else:
                self._gyr = event.values

            sample = RawSample(
                timestamp=event.timestamp,
                acceleration=self._acc,
                angular_rate=self._gyr,
            )
            # Sink runs under the lock so concurrent producers cannot reorder.
            self._sink(sample)
            self.samples_out += 1
        return sample
