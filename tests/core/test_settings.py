"""Tests for core.settings module.

Covers:
- FleetSettings instantiation with defaults
- FLEET_* environment variable override
- Field validation
- log_format resolution
"""

import pytest
from pydantic import ValidationError

from pxe_fleet.core.settings import FleetSettings


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """No stray FLEET_* variables or .env file from the developer machine."""
    monkeypatch.chdir(tmp_path)
    for key in list(__import__("os").environ):
        if key.startswith("FLEET_"):
            monkeypatch.delenv(key)


class TestFleetSettingsDefaults:
    def test_server(self):
        s = FleetSettings()
        assert s.host == "0.0.0.0"
        assert s.port == 5000
        assert s.api_prefix == "/api"

    def test_scheduler(self):
        s = FleetSettings()
        assert s.scheduler_enabled is True
        assert s.scheduler_interval_seconds == 60.0
        assert s.instance_id is None

    def test_broadcaster(self):
        s = FleetSettings()
        assert s.broadcast_buffer_size == 256
        assert s.broadcast_overflow_policy == "drop_oldest"

    def test_reconnect(self):
        s = FleetSettings()
        assert s.reconnect_base_delay_seconds == 1.0
        assert s.reconnect_max_attempts == 5

    def test_simulator_off(self):
        assert FleetSettings().simulator_enabled is False


class TestFleetSettingsEnv:
    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("FLEET_SCHEDULER_INTERVAL_SECONDS", "15")
        monkeypatch.setenv("FLEET_BROADCAST_OVERFLOW_POLICY", "disconnect")
        monkeypatch.setenv("FLEET_DATABASE_PATH", "/tmp/fleet.db")
        s = FleetSettings()
        assert s.scheduler_interval_seconds == 15.0
        assert s.broadcast_overflow_policy == "disconnect"
        assert s.database_path == "/tmp/fleet.db"

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("FLEET_PORT=8080\n")
        assert FleetSettings().port == 8080

    def test_unknown_env_ignored(self, monkeypatch):
        monkeypatch.setenv("FLEET_NOT_A_SETTING", "x")
        FleetSettings()


class TestFleetSettingsValidation:
    def test_interval_must_be_positive(self):
        with pytest.raises(ValidationError):
            FleetSettings(scheduler_interval_seconds=0)

    def test_overflow_policy_is_closed(self):
        with pytest.raises(ValidationError):
            FleetSettings(broadcast_overflow_policy="block")

    def test_buffer_size_minimum(self):
        with pytest.raises(ValidationError):
            FleetSettings(broadcast_buffer_size=0)


class TestLogFormat:
    @pytest.mark.parametrize("fmt,expected", [("auto", None), ("json", True), ("console", False)])
    def test_json_logs(self, fmt, expected):
        assert FleetSettings(log_format=fmt).json_logs is expected
