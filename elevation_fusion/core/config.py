"""Configuration management for elevation-angle recording."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import os

import yaml

from .types import SourceKind

CONFIG_ENV_VAR = "ELEVATION_FUSION_CONFIG"
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"


@dataclass
class SerialConfig:
    """Serial port settings for the local sensor link."""
    port: str = "/dev/ttyUSB0"
    baudrate: int = 115200
    timeout_s: float = 0.1
    write_timeout_s: float = 1.0


@dataclass
class LocalSensorConfig:
    """Local inertial source configuration."""
    link: str = "serial"  # "serial" or "mock"
    sample_rate_hz: int = 60
    read_timeout_s: float = 0.5
    serial: SerialConfig = field(default_factory=SerialConfig)


@dataclass
class WearableConfig:
    """Remote BLE wearable configuration."""
    name_filter: str = "Polar"
    scan_timeout_s: float = 10.0
    connect_timeout_s: float = 20.0
    control_uuid: str = "fb005c81-02e7-f387-1cad-8acd2d8df0c8"
    data_uuid: str = "fb005c82-02e7-f387-1cad-8acd2d8df0c8"
    sample_rate_hz: int = 52
    acc_range_g: int = 8
    gyro_range_dps: int = 2000


@dataclass
class StreamConfig:
    """Bounded sample stream between a source and the controller."""
    capacity: int = 64


@dataclass
class StorageConfig:
    """Session store configuration."""
    database_path: str = "measurements.db"


@dataclass
class ExportConfig:
    """CSV export configuration."""
    directory: str = "exports"


@dataclass
class MonitoringConfig:
    """Stream monitoring configuration."""
    window_size: int = 1000
    log_interval_s: float = 10.0


@dataclass
class WebConfig:
    """Web front end configuration."""
    host: str = "0.0.0.0"
    port: int = 5000
    emit_rate_hz: int = 10


@dataclass
class Config:
    """Complete configuration."""
    local: LocalSensorConfig = field(default_factory=LocalSensorConfig)
    wearable: WearableConfig = field(default_factory=WearableConfig)
    stream: StreamConfig = field(default_factory=StreamConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    web: WebConfig = field(default_factory=WebConfig)

    def nominal_sample_rate_hz(self, kind: SourceKind) -> float:
        """Expected RawSample rate of a source.

        Every axis-group event yields one sample, so this is the sum of
        the acceleration and angular-rate event rates.
        """
        if kind is SourceKind.REMOTE:
            return 2.0 * self.wearable.sample_rate_hz
        return 2.0 * self.local.sample_rate_hz


def load_config(config_path: Optional[str] = None) -> Config:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration file. If None, the path in
            ``ELEVATION_FUSION_CONFIG`` or the packaged ``config.yaml``
            is used, falling back to built-in defaults.

    Returns:
        Configuration object with all settings.

    Raises:
        FileNotFoundError: If specified config file doesn't exist.
    """
    if config_path is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        if env_path:
            config_path = env_path
        elif DEFAULT_CONFIG_PATH.exists():
            config_path = str(DEFAULT_CONFIG_PATH)
        else:
            return Config()

    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if data is None:
        return Config()

    return _build_config(data)


def _build_config(data: dict) -> Config:
    """Build Config object from dictionary."""
    local_data = dict(data.get("local", {}))
    serial = SerialConfig(**local_data.pop("serial", {}))
    local = LocalSensorConfig(serial=serial, **local_data)

    return Config(
        local=local,
        wearable=WearableConfig(**data.get("wearable", {})),
        stream=StreamConfig(**data.get("stream", {})),
        storage=StorageConfig(**data.get("storage", {})),
        export=ExportConfig(**data.get("export", {})),
        monitoring=MonitoringConfig(**data.get("monitoring", {})),
        web=WebConfig(**data.get("web", {})),
    )
