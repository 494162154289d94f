"""Core module for elevation-angle sensor fusion."""

from .types import (
    AxisGroup,
    AxisEvent,
    RawSample,
    EstimatedSample,
    FilterState,
    Session,
    SessionRecord,
    SessionSummary,
    SourceKind,
    SourceStats,
    ConnectionStatus,
    ConnectionState,
    DeviceInfo,
    Vector3,
)
from .errors import (
    FusionError,
    SourceUnavailable,
    ConnectionFailed,
    StreamError,
    PersistenceFailure,
    ExportFailure,
    LinkError,
)
from .config import Config, load_config

__all__ = [
    "AxisGroup",
    "AxisEvent",
    "RawSample",
    "EstimatedSample",
    "FilterState",
    "Session",
    "SessionRecord",
    "SessionSummary",
    "SourceKind",
    "SourceStats",
    "ConnectionStatus",
    "ConnectionState",
    "DeviceInfo",
    "Vector3",
    "FusionError",
    "SourceUnavailable",
    "ConnectionFailed",
    "StreamError",
    "PersistenceFailure",
    "ExportFailure",
    "LinkError",
    "Config",
    "load_config",
]
