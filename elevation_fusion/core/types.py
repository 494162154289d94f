"""Data types for elevation-angle sensor fusion."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

Vector3 = Tuple[float, float, float]

ZERO_VECTOR: Vector3 = (0.0, 0.0, 0.0)


class AxisGroup(Enum):
    """Physical sensor an axis-group event comes from."""
    ACCELERATION = 1
    ANGULAR_RATE = 2


class SourceKind(Enum):
    """Closed set of sensor sources the controller can record from."""
    LOCAL = "local"
    REMOTE = "remote"


class ConnectionStatus(Enum):
    """Link state of the remote wearable."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class AxisEvent:
    """One 3-axis reading from a single physical sensor.

    Units follow RawSample: m/s^2 for acceleration, rad/s for
    angular rate.
    """
    group: AxisGroup
    timestamp: int  # nanoseconds, source-defined epoch
    values: Vector3


@dataclass(frozen=True)
class RawSample:
    """Combined accelerometer and gyroscope sample.

    All values use SI units:
    - Acceleration: m/s^2
    - Angular rate: rad/s
    """
    timestamp: int  # nanoseconds, source-defined epoch
    acceleration: Vector3
    angular_rate: Vector3


@dataclass(frozen=True)
class EstimatedSample:
    """Elevation angles produced by the two filters for one RawSample."""
    timestamp: int
    angle_a: float  # EWMA, degrees
    angle_b: float  # complementary filter, degrees

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "timestamp": self.timestamp,
            "angle_a": self.angle_a,
            "angle_b": self.angle_b,
        }


@dataclass
class FilterState:
    """Mutable state carried between Estimator calls.

    ``last_timestamp == 0`` means no sample has been seen since the
    last reset.
    """
    last_angle_a: float = 0.0
    last_angle_b: float = 0.0
    last_timestamp: int = 0

    def reset(self) -> None:
        """Return to the zero sentinel."""
        self.last_angle_a = 0.0
        self.last_angle_b = 0.0
        self.last_timestamp = 0


@dataclass(frozen=True)
class Session:
    """A completed recording."""
    started_at_ms: int
    samples: Tuple[EstimatedSample, ...]
    id: Optional[int] = None

    @property
    def duration_s(self) -> float:
        """Elapsed sensor time between first and last sample."""
        if len(self.samples) < 2:
            return 0.0
        return (self.samples[-1].timestamp - self.samples[0].timestamp) / 1e9


@dataclass(frozen=True)
class SessionRecord:
    """Stored layout of a session: id, save time and flattened samples."""
    id: Optional[int]
    timestamp: int  # wall-clock milliseconds at save time
    data_points_csv: str


@dataclass(frozen=True)
class DeviceInfo:
    """A wearable found during a BLE scan."""
    device_id: str  # BLE address
    name: str
    rssi: Optional[int] = None


@dataclass(frozen=True)
class ConnectionState:
    """Observable link state owned by the remote wearable source."""
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    devices: Tuple[DeviceInfo, ...] = ()
    device_id: Optional[str] = None
    last_error: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        """True once the wearable link is up."""
        return self.status is ConnectionStatus.CONNECTED


@dataclass
class SourceStats:
    """Counters for one sensor source."""
    events: int = 0
    samples_emitted: int = 0
    samples_dropped: int = 0
    crc_errors: int = 0
    rejected_frames: int = 0

    @property
    def drop_rate(self) -> float:
        """Fraction of emitted samples lost to backpressure."""
        if self.samples_emitted == 0:
            return 0.0
        return self.samples_dropped / self.samples_emitted


@dataclass(frozen=True)
class SessionSummary:
    """Short description of a stored session for listings."""
    id: int
    timestamp: int
    sample_count: int
    duration_s: float = 0.0
