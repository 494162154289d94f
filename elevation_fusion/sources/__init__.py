"""Sensor sources: local inertial link and remote BLE wearable."""

from typing import Dict, Optional

from ..core.config import Config
from ..core.types import SourceKind
from .base import SensorSource, SourceOutput, ErrorHandler
from .local import (
    LocalInertialSource,
    SerialImuLink,
    MockImuLink,
    create_link,
    encode_frame,
    crc16_ccitt,
)
from .remote import RemoteWearableSource, parse_data_frame


def create_sources(
    config: Config,
    local: Optional[LocalInertialSource] = None,
    remote: Optional[RemoteWearableSource] = None,
) -> Dict[SourceKind, SensorSource]:
    """Build the closed set of sources keyed by kind."""
    return {
        SourceKind.LOCAL: local if local is not None else LocalInertialSource(config),
        SourceKind.REMOTE: remote if remote is not None else RemoteWearableSource(config),
    }


__all__ = [
    "SensorSource",
    "SourceOutput",
    "ErrorHandler",
    "LocalInertialSource",
    "SerialImuLink",
    "MockImuLink",
    "RemoteWearableSource",
    "create_link",
    "create_sources",
    "encode_frame",
    "crc16_ccitt",
    "parse_data_frame",
]
