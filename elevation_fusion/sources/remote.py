"""Remote wearable source over Bluetooth Low Energy.

Discovery, connection and streaming go through bleak. The wearable
exposes a control characteristic (feature read and start/stop
requests) and a data characteristic whose notifications carry frames::

    type:u8 | timestamp_ns:u64 | frame_type:u8 | samples...

``frame_type`` 0 packs int16 triples, 1 packs float32 triples. The
header timestamp belongs to the last sample in the frame; earlier
samples are spaced by the negotiated sample period. Acceleration
arrives in milli-g and angular rate in deg/s; both are converted to
m/s^2 and rad/s before entering the fusion channel.
"""

import asyncio
import logging
import math
import struct
from typing import AsyncIterator, Callable, List, Optional, Tuple

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakError

from ..core.config import Config
from ..core.errors import ConnectionFailed, SourceUnavailable, StreamError
from ..core.observable import StateCell
from ..core.types import (
    AxisEvent,
    AxisGroup,
    ConnectionState,
    ConnectionStatus,
    DeviceInfo,
    SourceKind,
    SourceStats,
    Vector3,
)
from .base import ErrorHandler, SourceOutput

logger = logging.getLogger(__name__)

MEASUREMENT_ACC = 0x02
MEASUREMENT_GYRO = 0x05

FEATURE_READ_RESPONSE = 0x0F
FEATURE_BITS = {
    MEASUREMENT_ACC: 0x04,
    MEASUREMENT_GYRO: 0x20,
}

CONTROL_START = 0x02
CONTROL_STOP = 0x03
SETTING_SAMPLE_RATE = 0x00
SETTING_RANGE = 0x02

HEADER_FORMAT = "<BQB"
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)
SAMPLE_FORMATS = {
    0: "<hhh",
    1: "<fff",
}

MILLI_G_TO_MS2 = 9.81 / 1000.0
DEG_TO_RAD = math.pi / 180.0


def build_start_request(measurement: int, sample_rate_hz: int, range_value: int) -> bytes:
    """Control-point request starting one measurement stream."""
    return struct.pack(
        "<BBBBHBBH",
        CONTROL_START,
        measurement,
        SETTING_SAMPLE_RATE, 1, sample_rate_hz,
        SETTING_RANGE, 1, range_value,
    )


def build_stop_request(measurement: int) -> bytes:
    """Control-point request stopping one measurement stream."""
    return bytes([CONTROL_STOP, measurement])


def parse_data_frame(
    data: bytes,
    sample_rate_hz: int,
) -> Tuple[int, List[Tuple[int, Vector3]]]:
    """Decode one data notification.

    Args:
        data: Notification payload.
        sample_rate_hz: Negotiated rate, used to back-date samples.

    Returns:
        Measurement type and (timestamp_ns, raw values) per sample, in
        device units.

    Raises:
        ValueError: If the frame is truncated or of unknown type.
    """
    if len(data) < HEADER_SIZE:
        raise ValueError(f"Frame too short: {len(data)} bytes")

    measurement, timestamp, frame_type = struct.unpack_from(HEADER_FORMAT, data)
    sample_format = SAMPLE_FORMATS.get(frame_type)
    if sample_format is None:
        raise ValueError(f"Unknown frame type {frame_type}")

    body = bytes(data[HEADER_SIZE:])
    size = struct.calcsize(sample_format)
    if not body or len(body) % size:
        raise ValueError(f"Frame body of {len(body)} bytes is not a multiple of {size}")

    triples = [struct.unpack_from(sample_format, body, off) for off in range(0, len(body), size)]
    period_ns = int(1e9 / sample_rate_hz)
    last = len(triples) - 1

    samples = [
        (timestamp - (last - i) * period_ns, (float(x), float(y), float(z)))
        for i, (x, y, z) in enumerate(triples)
    ]
    return measurement, samples


def convert_acceleration(values: Vector3) -> Vector3:
    """milli-g to m/s^2."""
    return (
        values[0] * MILLI_G_TO_MS2,
        values[1] * MILLI_G_TO_MS2,
        values[2] * MILLI_G_TO_MS2,
    )


def convert_angular_rate(values: Vector3) -> Vector3:
    """deg/s to rad/s."""
    return (
        values[0] * DEG_TO_RAD,
        values[1] * DEG_TO_RAD,
        values[2] * DEG_TO_RAD,
    )


class RemoteWearableSource:
    """Sensor source streaming from a BLE wearable.

    Connection state and discovered devices are published through
    ``connection_state``. A disconnect while listening is reported as a
    StreamError; the sample stream stays open but stalls until
    ``stop_listening``.
    """

    kind = SourceKind.REMOTE

    def __init__(
        self,
        config: Config,
        client_factory: Callable[..., BleakClient] = BleakClient,
        scanner_factory: Callable[..., BleakScanner] = BleakScanner,
    ):
        """Initialize remote source.

        Args:
            config: System configuration with wearable settings.
            client_factory: Builds the BLE client for a device address.
            scanner_factory: Builds a BLE scanner.
        """
        self._cfg = config.wearable
        self._client_factory = client_factory
        self._scanner_factory = scanner_factory
        self._client: Optional[BleakClient] = None
        self._output = SourceOutput("remote", config.stream.capacity)
        self._listening = False
        self._rejected_frames = 0
        self.connection_state: StateCell[ConnectionState] = StateCell(ConnectionState())

    @property
    def is_listening(self) -> bool:
        """True between a successful start and the next stop."""
        return self._listening

    @property
    def is_connected(self) -> bool:
        """True while the wearable link is up."""
        return self.connection_state.value.is_connected

    @property
    def stats(self) -> SourceStats:
        """Counters for the current sample sequence."""
        return self._output.fill_stats(SourceStats(rejected_frames=self._rejected_frames))

    def set_error_handler(self, handler: Optional[ErrorHandler]) -> None:
        """Install the callback receiving reported errors."""
        self._output.set_error_handler(handler)

    def samples(self):
        """Sample sequence of the current recording."""
        return self._output.samples()

    # ----------------------- Discovery -----------------------

    async def scan(self, timeout_s: Optional[float] = None) -> AsyncIterator[DeviceInfo]:
        """Scan for wearables matching the configured name filter.

        Each device is yielded once, the first time it is seen, and is
        added to ``connection_state.devices``.

        Args:
            timeout_s: Scan duration. Defaults to the configured timeout.
        """
        loop = asyncio.get_running_loop()
        timeout_s = self._cfg.scan_timeout_s if timeout_s is None else timeout_s
        found: "asyncio.Queue[DeviceInfo]" = asyncio.Queue()

        def on_detect(device: BLEDevice, adv: AdvertisementData) -> None:
            info = self._accept_device(device, adv)
            if info is not None:
                found.put_nowait(info)

        self.connection_state.update(devices=())
        scanner = self._scanner_factory(detection_callback=on_detect)
        try:
            await scanner.start()
        except BleakError as e:
            message = f"BLE scan failed: {e}"
            self.connection_state.update(last_error=message)
            self._output.report(SourceUnavailable(message))
            return

        logger.info("Scanning for '%s' devices (%.1f s)", self._cfg.name_filter, timeout_s)
        deadline = loop.time() + timeout_s
        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                try:
                    info = await asyncio.wait_for(found.get(), remaining)
                except asyncio.TimeoutError:
                    break
                yield info
        finally:
            await scanner.stop()
            logger.info("Scan finished: %d device(s)", len(self.connection_state.value.devices))

    async def discover(self, timeout_s: Optional[float] = None) -> List[DeviceInfo]:
        """Run a scan to completion and return the devices found."""
        return [info async for info in self.scan(timeout_s)]

    def _accept_device(self, device: BLEDevice, adv: AdvertisementData) -> Optional[DeviceInfo]:
        """Filter by name and de-duplicate by address."""
        name = device.name or adv.local_name or ""
        if self._cfg.name_filter not in name:
            return None

        devices = self.connection_state.value.devices
        if any(d.device_id == device.address for d in devices):
            return None

        info = DeviceInfo(device_id=device.address, name=name, rssi=adv.rssi)
        self.connection_state.update(devices=devices + (info,))
        logger.debug("Found wearable %s (%s)", info.name, info.device_id)
        return info

    # ----------------------- Connection -----------------------

    async def connect(self, device_id: str) -> bool:
        """Connect to a wearable.

        Args:
            device_id: BLE address from a scan.

        Returns:
            True once connected. On failure a ConnectionFailed is
            reported and the state stays Disconnected.
        """
        if self._client is not None and self.is_connected:
            if self.connection_state.value.device_id == device_id:
                return True
            await self.disconnect()

        self.connection_state.update(
            status=ConnectionStatus.CONNECTING,
            device_id=device_id,
            last_error=None,
        )
        logger.info("Connecting to %s", device_id)

        client = self._client_factory(
            device_id,
            disconnected_callback=self._on_disconnected,
            timeout=self._cfg.connect_timeout_s,
        )
        try:
            await client.connect()
        except (BleakError, asyncio.TimeoutError, OSError) as e:
            message = f"Could not connect to {device_id}: {e}"
            self.connection_state.update(
                status=ConnectionStatus.DISCONNECTED,
                device_id=None,
                last_error=message,
            )
            self._output.report(ConnectionFailed(message))
            return False

        self._client = client
        self.connection_state.update(status=ConnectionStatus.CONNECTED)
        logger.info("Connected to %s", device_id)
        return True

    async def disconnect(self) -> None:
        """Stop streaming and drop the link."""
        if self._listening:
            await self.stop_listening()

        client, self._client = self._client, None
        if client is not None:
            try:
                await client.disconnect()
            except BleakError as e:
                logger.warning("Disconnect failed: %s", e)

        self.connection_state.update(status=ConnectionStatus.DISCONNECTED, device_id=None)
        logger.info("Wearable disconnected")

    def _on_disconnected(self, client: BleakClient) -> None:
        """bleak callback for links dropped by the device or the stack."""
        if client is not self._client:
            return

        self._client = None
        message = "Wearable connection lost"
        self.connection_state.update(
            status=ConnectionStatus.DISCONNECTED,
            device_id=None,
            last_error=message,
        )
        if self._listening:
            self._output.report(StreamError(message))
        else:
            logger.warning(message)

    # ----------------------- Streaming -----------------------

    async def start_listening(self) -> bool:
        """Negotiate settings and start both measurement streams.

        Returns:
            True if streaming. False, with an error reported, when no
            wearable is connected or negotiation fails.
        """
        if self._listening:
            return True

        client = self._client
        if client is None or not self.is_connected:
            self._output.report(SourceUnavailable("Not connected to any wearable sensor"))
            return False

        self._output.open()
        self._rejected_frames = 0
        try:
            await self._negotiate(client)
        except StreamError as e:
            self._output.close()
            self._output.report(e)
            return False
        except (BleakError, asyncio.TimeoutError, OSError) as e:
            self._output.close()
            self._output.report(StreamError(f"Could not start wearable streams: {e}"))
            return False

        self._listening = True
        logger.info(
            "Remote source listening at %d Hz",
            self._cfg.sample_rate_hz,
        )
        return True

    async def stop_listening(self) -> None:
        """Stop both measurement streams and end the sample sequence."""
        if not self._listening:
            return

        self._listening = False
        client = self._client
        if client is not None and client.is_connected:
            try:
                for measurement in (MEASUREMENT_ACC, MEASUREMENT_GYRO):
                    await client.write_gatt_char(
                        self._cfg.control_uuid,
                        build_stop_request(measurement),
                        response=True,
                    )
                await client.stop_notify(self._cfg.data_uuid)
            except BleakError as e:
                logger.warning("Could not stop wearable streams cleanly: %s", e)

        self._output.close()
        logger.info("Remote source stopped")

    async def _negotiate(self, client: BleakClient) -> None:
        """Check features, subscribe to data and request both streams.

        Raises:
            StreamError: If the device lacks a required measurement.
        """
        features = await client.read_gatt_char(self._cfg.control_uuid)
        if len(features) < 2 or features[0] != FEATURE_READ_RESPONSE:
            raise StreamError("Unexpected feature response from wearable")

        for measurement, bit in FEATURE_BITS.items():
            if not features[1] & bit:
                raise StreamError(f"Wearable does not support measurement 0x{measurement:02X}")

        await client.start_notify(self._cfg.data_uuid, self._on_data)

        requests = (
            (MEASUREMENT_ACC, self._cfg.acc_range_g),
            (MEASUREMENT_GYRO, self._cfg.gyro_range_dps),
        )
        for measurement, range_value in requests:
            await client.write_gatt_char(
                self._cfg.control_uuid,
                build_start_request(measurement, self._cfg.sample_rate_hz, range_value),
                response=True,
            )

    def _on_data(self, _sender, data: bytearray) -> None:
        """Notification handler for the data characteristic."""
        try:
            measurement, samples = parse_data_frame(data, self._cfg.sample_rate_hz)
        except (ValueError, struct.error) as e:
            self._rejected_frames += 1
            logger.debug("Rejected wearable frame: %s", e)
            return

        if measurement == MEASUREMENT_ACC:
            group, convert = AxisGroup.ACCELERATION, convert_acceleration
        elif measurement == MEASUREMENT_GYRO:
            group, convert = AxisGroup.ANGULAR_RATE, convert_angular_rate
        else:
            self._rejected_frames += 1
            logger.debug("Ignoring measurement type 0x%02X", measurement)
            return

        for timestamp, values in samples:
            self._output.push(AxisEvent(group=group, timestamp=timestamp, values=convert(values)))
