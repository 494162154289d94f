"""Local inertial source: accelerometer and gyroscope on a serial link.

The sensor board sends one frame per axis-group reading, so
acceleration and angular rate arrive as two independent event streams.
Frame layout (little-endian)::

    0xAA 0x55 | group:u8 | timestamp_ns:u64 | x:f32 | y:f32 | z:f32 | crc:u16

The CRC-16-CCITT covers the payload bytes before it. Group 1 is
acceleration in m/s^2, group 2 angular rate in rad/s.
"""

import asyncio
import logging
import struct
import threading
import time
from typing import Optional, Protocol

import numpy as np
import serial

from ..core.config import Config
from ..core.errors import LinkError, SourceUnavailable, StreamError
from ..core.types import AxisEvent, AxisGroup, SourceKind, SourceStats
from .base import ErrorHandler, SourceOutput

logger = logging.getLogger(__name__)

SYNC1 = 0xAA
SYNC2 = 0x55
FRAME_FORMAT = "<BQfffH"
FRAME_SIZE = struct.calcsize(FRAME_FORMAT)
GRAVITY = 9.81


def crc16_ccitt(data: bytes, init: int = 0xFFFF) -> int:
    """Calculate CRC-16-CCITT checksum.

    Args:
        data: Bytes to checksum.
        init: Initial CRC value.

    Returns:
        16-bit CRC value.
    """
    crc = init
    for b in data:
        crc ^= (b << 8) & 0xFFFF
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ 0x1021) & 0xFFFF
            else:
                crc = (crc << 1) & 0xFFFF
    return crc


def encode_frame(event: AxisEvent) -> bytes:
    """Build the wire frame for one axis-group event, sync bytes included."""
    body = struct.pack(
        FRAME_FORMAT[:-1],
        event.group.value,
        event.timestamp,
        *event.values,
    )
    crc = crc16_ccitt(body)
    return bytes([SYNC1, SYNC2]) + body + struct.pack("<H", crc)


class ImuLink(Protocol):
    """Blocking transport delivering axis-group events."""

    stats: SourceStats

    def open(self) -> None: ...

    def close(self) -> None: ...

    def read_event(self, timeout_s: float = 1.0) -> Optional[AxisEvent]: ...


class SerialImuLink:
    """Serial transport for framed axis-group events.

    Thread-safe for a single reader.
    """

    def __init__(self, config: Config):
        """Initialize serial link.

        Args:
            config: System configuration with serial settings.
        """
        serial_cfg = config.local.serial
        self._port = serial_cfg.port
        self._baudrate = serial_cfg.baudrate
        self._timeout = serial_cfg.timeout_s
        self._write_timeout = serial_cfg.write_timeout_s

        self._serial: Optional[serial.Serial] = None
        self._buffer = bytearray()
        self.stats = SourceStats()

    @property
    def is_open(self) -> bool:
        """Check if the port is open."""
        return self._serial is not None and self._serial.is_open

    def open(self) -> None:
        """Open serial connection.

        Raises:
            LinkError: If the port cannot be opened.
        """
        if self.is_open:
            return

        try:
            self._serial = serial.Serial(
                port=self._port,
                baudrate=self._baudrate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=self._timeout,
                write_timeout=self._write_timeout,
            )
            self._serial.reset_input_buffer()
            self._serial.reset_output_buffer()
            time.sleep(0.1)
        except serial.SerialException as e:
            self._serial = None
            raise LinkError(f"Failed to open {self._port}: {e}") from e

        self._buffer.clear()
        self.stats = SourceStats()
        logger.info("Serial link opened: %s @ %d baud", self._port, self._baudrate)

    def close(self) -> None:
        """Close serial connection."""
        if self._serial is not None and self._serial.is_open:
            self._serial.close()
        self._serial = None
        logger.info("Serial link closed")

    def read_event(self, timeout_s: float = 1.0) -> Optional[AxisEvent]:
        """Read the next valid frame.

        Args:
            timeout_s: Maximum time to wait for a frame.

        Returns:
            AxisEvent if successful, None on timeout.

        Raises:
            LinkError: If the port is closed or fails while reading.
        """
        if not self.is_open:
            raise LinkError("Serial link not open")

        deadline = time.perf_counter() + timeout_s

        while True:
            try:
                self._feed()
            except serial.SerialException as e:
                raise LinkError(f"Read from {self._port} failed: {e}") from e

            event = self.feed_bytes(b"")
            if event is not None:
                return event

            if time.perf_counter() > deadline:
                return None

            time.sleep(0.001)

    def feed_bytes(self, data: bytes) -> Optional[AxisEvent]:
        """Append raw bytes and try to decode one frame from the buffer."""
        if data:
            self._buffer.extend(data)

        while True:
            idx = self._buffer.find(bytes([SYNC1, SYNC2]))

            if idx < 0:
                if len(self._buffer) > 1:
                    self._buffer[:] = self._buffer[-1:]
                return None

            if idx > 0:
                del self._buffer[:idx]

            if len(self._buffer) < 2 + FRAME_SIZE:
                return None

            payload = bytes(self._buffer[2:2 + FRAME_SIZE])
            del self._buffer[:2 + FRAME_SIZE]

            rx_crc = struct.unpack_from("<H", payload, FRAME_SIZE - 2)[0]
            calc_crc = crc16_ccitt(payload[:-2])
            if rx_crc != calc_crc:
                self.stats.crc_errors += 1
                logger.debug("CRC error: received 0x%04X, expected 0x%04X", rx_crc, calc_crc)
                continue

            group_id, timestamp, x, y, z, _ = struct.unpack(FRAME_FORMAT, payload)
            try:
                group = AxisGroup(group_id)
            except ValueError:
                self.stats.rejected_frames += 1
                logger.debug("Unknown axis group id %d", group_id)
                continue

            self.stats.events += 1
            return AxisEvent(
                group=group,
                timestamp=int(timestamp),
                values=(float(x), float(y), float(z)),
            )

    def _feed(self) -> None:
        """Read available data from serial port into buffer."""
        if self._serial is not None and self._serial.in_waiting > 0:
            self._buffer.extend(self._serial.read(self._serial.in_waiting))


class MockImuLink:
    """Synthetic link for development and tests.

    Simulates an arm slowly raised to 90 degrees and lowered again,
    with acceleration and angular-rate readings interleaved at the
    configured rate. With ``realtime=False`` no sleeping happens and
    timestamps advance synthetically.
    """

    def __init__(
        self,
        config: Config,
        realtime: bool = True,
        period_s: float = 4.0,
        seed: Optional[int] = None,
    ):
        """Initialize mock link.

        Args:
            config: System configuration.
            realtime: Pace events at the configured sample rate.
            period_s: Duration of one raise/lower cycle.
            seed: Seed for the noise generator.
        """
        self._rate = config.local.sample_rate_hz
        self._realtime = realtime
        self._period_s = period_s
        self._rng = np.random.default_rng(seed)
        self._is_open = False
        self._index = 0
        self._t0_ns = 0
        self.stats = SourceStats()

    @property
    def is_open(self) -> bool:
        """Check if mock is open."""
        return self._is_open

    def open(self) -> None:
        """Simulate opening the link."""
        self._is_open = True
        self._index = 0
        self._t0_ns = time.perf_counter_ns() if self._realtime else 1
        self.stats = SourceStats()
        logger.info("Mock link opened")

    def close(self) -> None:
        """Simulate closing the link."""
        self._is_open = False
        logger.info("Mock link closed")

    def angle_at(self, t: float) -> float:
        """Simulated elevation in radians at ``t`` seconds."""
        return (np.pi / 4) * (1.0 - np.cos(2.0 * np.pi * t / self._period_s))

    def read_event(self, timeout_s: float = 1.0) -> Optional[AxisEvent]:
        """Generate the next synthetic event.

        Even indices are acceleration, odd indices angular rate; each
        group runs at the configured rate.

        Raises:
            LinkError: If the mock is not open.
        """
        if not self._is_open:
            raise LinkError("Mock link not open")

        step_ns = int(1e9 / (2 * self._rate))
        if self._realtime:
            time.sleep(step_ns / 1e9 * 0.9)

        index = self._index
        self._index += 1
        timestamp = self._t0_ns + index * step_ns
        t = index * step_ns / 1e9
        theta = self.angle_at(t)

        if index % 2 == 0:
            noise = self._rng.normal(0, 0.02, 3)
            values = (
                float(noise[0]),
                float(GRAVITY * np.sin(theta) + noise[1]),
                float(GRAVITY * np.cos(theta) + noise[2]),
            )
            group = AxisGroup.ACCELERATION
        else:
            omega = (np.pi / 4) * (2.0 * np.pi / self._period_s) * np.sin(2.0 * np.pi * t / self._period_s)
            noise = self._rng.normal(0, 0.002, 3)
            values = (float(omega + noise[0]), float(noise[1]), float(noise[2]))
            group = AxisGroup.ANGULAR_RATE

        self.stats.events += 1
        return AxisEvent(group=group, timestamp=timestamp, values=values)


def create_link(config: Config) -> ImuLink:
    """Build the link named by ``config.local.link``."""
    kind = config.local.link
    if kind == "serial":
        return SerialImuLink(config)
    if kind == "mock":
        return MockImuLink(config)
    raise ValueError(f"Unknown local link type: {kind}")


class LocalInertialSource:
    """Sensor source reading the local accelerometer and gyroscope.

    A reader thread pulls events from the link and pushes them through
    the fusion channel. A link failure while listening is reported as
    a StreamError and the stream stalls until ``stop_listening``.
    """

    kind = SourceKind.LOCAL

    def __init__(self, config: Config, link: Optional[ImuLink] = None):
        """Initialize local source.

        Args:
            config: System configuration.
            link: Transport to read from. Built from config if None.
        """
        self._config = config
        self._link = link if link is not None else create_link(config)
        self._read_timeout = config.local.read_timeout_s
        self._output = SourceOutput("local", config.stream.capacity)
        self._running = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_listening(self) -> bool:
        """True between a successful start and the next stop."""
        return self._running.is_set()

    @property
    def stats(self) -> SourceStats:
        """Counters for the current sample sequence."""
        link_stats = self._link.stats
        stats = SourceStats(
            crc_errors=link_stats.crc_errors,
            rejected_frames=link_stats.rejected_frames,
        )
        return self._output.fill_stats(stats)

    def set_error_handler(self, handler: Optional[ErrorHandler]) -> None:
        """Install the callback receiving reported errors."""
        self._output.set_error_handler(handler)

    def samples(self):
        """Sample sequence of the current recording."""
        return self._output.samples()

    async def start_listening(self) -> bool:
        """Open the link and start the reader thread.

        Returns:
            True if listening, False if the link could not be opened.
        """
        if self.is_listening:
            return True

        self._output.open()
        try:
            await asyncio.to_thread(self._link.open)
        except LinkError as e:
            self._output.close()
            self._output.report(SourceUnavailable(f"Local sensor unavailable: {e}"))
            return False

        self._running.set()
        self._thread = threading.Thread(
            target=self._read_loop,
            name="local-imu-reader",
            daemon=True,
        )
        self._thread.start()
        logger.info("Local source listening")
        return True

    async def stop_listening(self) -> None:
        """Stop the reader thread and release the link."""
        if not self.is_listening:
            return

        self._running.clear()
        thread, self._thread = self._thread, None
        if thread is not None:
            await asyncio.to_thread(thread.join, self._read_timeout + 1.0)

        self._link.close()
        self._output.close()
        logger.info("Local source stopped")

    def _read_loop(self) -> None:
        """Reader thread body."""
        while self._running.is_set():
            try:
                event = self._link.read_event(timeout_s=self._read_timeout)
            except LinkError as e:
                self._output.report(StreamError(f"Local sensor stream failed: {e}"))
                return

            if event is not None:
                self._output.push(event)
