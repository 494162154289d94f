"""Tests for configuration loading."""

import pytest

from elevation_fusion.core.config import (
    CONFIG_ENV_VAR,
    DEFAULT_CONFIG_PATH,
    Config,
    load_config,
)
from elevation_fusion.core.types import SourceKind


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults(self):
        """Default config should carry the documented values."""
        config = Config()
        assert config.stream.capacity == 64
        assert config.wearable.name_filter == "Polar"

    def test_packaged_file_matches_defaults(self):
        """The shipped reference file should equal the built-in defaults."""
        assert DEFAULT_CONFIG_PATH.exists()
        assert load_config(str(DEFAULT_CONFIG_PATH)) == Config()

    def test_missing_file(self, tmp_path):
        """A missing file should raise FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.yaml"))

    def test_empty_file(self, tmp_path):
        """An empty file should give defaults."""
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(str(path)) == Config()

    def test_partial_override(self, tmp_path):
        """Given values should override, others keep defaults."""
        path = tmp_path / "config.yaml"
        path.write_text(
            "stream:\n"
            "  capacity: 16\n"
            "local:\n"
            "  link: mock\n"
            "  serial:\n"
            "    port: /dev/ttyACM0\n"
        )

        config = load_config(str(path))

        assert config.stream.capacity == 16
        assert config.storage.database_path == "measurements.db"
        assert config.local.link == "mock"
        assert config.local.serial.port == "/dev/ttyACM0"
        assert config.local.serial.baudrate == 115200

    def test_env_var(self, tmp_path, monkeypatch):
        """The environment variable should name the file when no path is given."""
        path = tmp_path / "env.yaml"
        path.write_text("stream:\n  capacity: 8\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

        assert load_config().stream.capacity == 8

    def test_unknown_key(self, tmp_path):
        """Unknown keys should be rejected."""
        path = tmp_path / "bad.yaml"
        path.write_text("stream:\n  gamma: 1.0\n")
        with pytest.raises(TypeError):
            load_config(str(path))


class TestNominalSampleRate:
    """Tests for the expected RawSample rate per source."""

    def test_local(self):
        """Both local axis groups together should give twice the sensor rate."""
        assert Config().nominal_sample_rate_hz(SourceKind.LOCAL) == 120.0

    def test_remote(self):
        """The wearable rate should double the same way."""
        assert Config().nominal_sample_rate_hz(SourceKind.REMOTE) == 104.0
