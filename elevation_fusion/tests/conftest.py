"""Pytest fixtures for elevation fusion tests."""

import asyncio
import sys
from pathlib import Path
from typing import Callable, List, Optional

import pytest

repo_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(repo_root))

from elevation_fusion.core.config import Config
from elevation_fusion.core.errors import (
    ConnectionFailed,
    ExportFailure,
    PersistenceFailure,
    SourceUnavailable,
)
from elevation_fusion.core.observable import StateCell
from elevation_fusion.core.types import (
    AxisEvent,
    AxisGroup,
    ConnectionState,
    ConnectionStatus,
    DeviceInfo,
    EstimatedSample,
    RawSample,
    SessionRecord,
    SourceKind,
    SourceStats,
)
from elevation_fusion.sources.base import SourceOutput


@pytest.fixture
def config() -> Config:
    """Create default configuration for tests."""
    return Config()


@pytest.fixture
def level_sample() -> RawSample:
    """Device lying flat: gravity on Z, no rotation."""
    return RawSample(
        timestamp=0,
        acceleration=(0.0, 0.0, 9.81),
        angular_rate=(0.0, 0.0, 0.0),
    )


@pytest.fixture
def raised_sample() -> RawSample:
    """Device raised to vertical half a second later, no rotation rate."""
    return RawSample(
        timestamp=500_000_000,
        acceleration=(0.0, 9.81, 0.0),
        angular_rate=(0.0, 0.0, 0.0),
    )


@pytest.fixture
def estimated_samples() -> List[EstimatedSample]:
    """Short well-formed estimated series."""
    return [
        EstimatedSample(timestamp=0, angle_a=0.0, angle_b=0.0),
        EstimatedSample(timestamp=16_666_667, angle_a=1.25, angle_b=0.5),
        EstimatedSample(timestamp=33_333_333, angle_a=2.5, angle_b=-0.125),
    ]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the loop until ``predicate`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


def drain_events(queue: "asyncio.Queue") -> list:
    """All events currently queued."""
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


class FakeSource:
    """In-memory sensor source fed by the test."""

    def __init__(self, kind: SourceKind, capacity: int = 64, fail_start: bool = False):
        self.kind = kind
        self.fail_start = fail_start
        self.start_calls = 0
        self.stop_calls = 0
        self._listening = False
        self._output = SourceOutput(kind.value, capacity)

    @property
    def is_listening(self) -> bool:
        return self._listening

    @property
    def stats(self) -> SourceStats:
        return self._output.fill_stats(SourceStats())

    def set_error_handler(self, handler) -> None:
        self._output.set_error_handler(handler)

    def samples(self):
        return self._output.samples()

    async def start_listening(self) -> bool:
        if self._listening:
            return True
        self.start_calls += 1
        if self.fail_start:
            self._output.report(SourceUnavailable("fake source unavailable"))
            return False
        self._output.open()
        self._listening = True
        return True

    async def stop_listening(self) -> None:
        if not self._listening:
            return
        self._listening = False
        self.stop_calls += 1
        self._output.close()

    def emit(self, group: AxisGroup, timestamp: int, values) -> Optional[RawSample]:
        """Inject one axis-group event."""
        return self._output.push(AxisEvent(group=group, timestamp=timestamp, values=values))

    def fail_stream(self, error) -> None:
        self._output.report(error)


class FakeRemoteSource(FakeSource):
    """Fake wearable with an observable connection state."""

    def __init__(self, capacity: int = 64, devices=()):
        super().__init__(SourceKind.REMOTE, capacity)
        self.connection_state: StateCell[ConnectionState] = StateCell(ConnectionState())
        self.devices = tuple(devices)
        self.refuse = False

    async def discover(self, timeout_s=None) -> List[DeviceInfo]:
        self.connection_state.update(devices=self.devices)
        return list(self.devices)

    async def connect(self, device_id: str) -> bool:
        if self.refuse:
            self._output.report(ConnectionFailed(f"refused {device_id}"))
            return False
        self.connection_state.update(status=ConnectionStatus.CONNECTED, device_id=device_id)
        return True

    async def disconnect(self) -> None:
        await self.stop_listening()
        self.connection_state.update(status=ConnectionStatus.DISCONNECTED, device_id=None)


class FakeStore:
    """Session store kept in a list."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.records: List[SessionRecord] = []

    def insert(self, record: SessionRecord) -> SessionRecord:
        if self.fail:
            raise PersistenceFailure("disk full")
        stored = SessionRecord(
            id=len(self.records) + 1,
            timestamp=record.timestamp,
            data_points_csv=record.data_points_csv,
        )
        self.records.append(stored)
        return stored

    def list_all(self) -> List[SessionRecord]:
        if self.fail:
            raise PersistenceFailure("disk full")
        return sorted(self.records, key=lambda r: (r.timestamp, r.id), reverse=True)

    def get(self, record_id: int) -> Optional[SessionRecord]:
        for record in self.records:
            if record.id == record_id:
                return record
        return None


class FakeExporter:
    """Exporter recording every write."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.writes = []

    def write(self, samples, destination) -> int:
        if self.fail:
            raise ExportFailure("read-only destination")
        self.writes.append((list(samples), destination))
        return len(samples)


class FakeBleDevice:
    def __init__(self, address: str, name: Optional[str]):
        self.address = address
        self.name = name


class FakeAdvertisement:
    def __init__(self, rssi: int = -60, local_name: Optional[str] = None):
        self.rssi = rssi
        self.local_name = local_name


class FakeScanner:
    """Stand-in for BleakScanner replaying advertisements on start."""

    def __init__(self, advertisements, detection_callback=None, fail: bool = False):
        self._advertisements = advertisements
        self._callback = detection_callback
        self._fail = fail
        self.started = False
        self.stopped = False

    async def start(self) -> None:
        from bleak.exc import BleakError

        if self._fail:
            raise BleakError("Bluetooth adapter off")
        self.started = True
        for device, adv in self._advertisements:
            self._callback(device, adv)

    async def stop(self) -> None:
        self.stopped = True


class FakeBleClient:
    """Stand-in for BleakClient talking to a wearable."""

    def __init__(self, address, disconnected_callback=None, timeout=None,
                 fail_connect: bool = False, features: bytes = bytes([0x0F, 0x24])):
        self.address = address
        self.disconnected_callback = disconnected_callback
        self.timeout = timeout
        self.fail_connect = fail_connect
        self.features = features
        self.is_connected = False
        self.writes = []
        self.notify = {}

    async def connect(self) -> bool:
        from bleak.exc import BleakError

        if self.fail_connect:
            raise BleakError("Device not found")
        self.is_connected = True
        return True

    async def disconnect(self) -> bool:
        self.is_connected = False
        return True

    async def read_gatt_char(self, uuid) -> bytearray:
        return bytearray(self.features)

    async def write_gatt_char(self, uuid, data, response=False) -> None:
        self.writes.append((uuid, bytes(data)))

    async def start_notify(self, uuid, callback) -> None:
        self.notify[uuid] = callback

    async def stop_notify(self, uuid) -> None:
        self.notify.pop(uuid, None)

    def drop_link(self) -> None:
        """Simulate the device going out of range."""
        self.is_connected = False
        if self.disconnected_callback is not None:
            self.disconnected_callback(self)


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def fake_exporter() -> FakeExporter:
    return FakeExporter()
