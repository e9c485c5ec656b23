"""Centralized settings for pxe-fleet.

All fields can be set through ``FLEET_*`` environment variables (for
example ``FLEET_SCHEDULER_INTERVAL_SECONDS=30``) or a ``.env`` file.

Examples:
    >>> from pxe_fleet.core.settings import FleetSettings
    >>> settings = FleetSettings(database_path=":memory:", scheduler_enabled=False)
    >>> settings.broadcast_overflow_policy
    'drop_oldest'
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FleetSettings(BaseSettings):
    """pxe-fleet configuration.

    Fields
    ──────
    host / port          : Bind address for the HTTP + WebSocket server
    database_path        : SQLite file holding deployments (``:memory:`` for tests)
    scheduler_*          : Tick interval and instance identity
    broadcast_*          : Per-observer buffer size and overflow policy
    reconnect_*          : Observer reconnect backoff parameters
    simulator_*          : Development-only progress simulator
    """

    model_config = SettingsConfigDict(
        env_prefix="FLEET_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Server ───────────────────────────────────────────────────
    host: str = "0.0.0.0"
    port: int = 5000
    api_prefix: str = "/api"
    api_title: str = "pxe-fleet"
    api_version: str = "0.3.0"
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # ── Observability ────────────────────────────────────────────
    debug: bool = False
    log_level: str = "INFO"
    log_format: Literal["json", "console", "auto"] = "auto"

    # ── Storage ──────────────────────────────────────────────────
    database_path: str = "pxe_fleet.db"

    # ── Scheduler ────────────────────────────────────────────────
    scheduler_enabled: bool = True
    scheduler_interval_seconds: float = Field(default=60.0, gt=0)
    instance_id: str | None = None

    # ── Broadcaster ──────────────────────────────────────────────
    broadcast_buffer_size: int = Field(default=256, ge=1)
    broadcast_overflow_policy: Literal["drop_oldest", "disconnect"] = "drop_oldest"

    # ── Observer reconnect ───────────────────────────────────────
    reconnect_base_delay_seconds: float = Field(default=1.0, gt=0)
    reconnect_max_attempts: int = Field(default=5, ge=0)

    # ── Development simulator ────────────────────────────────────
    simulator_enabled: bool = False
    simulator_interval_seconds: float = Field(default=2.0, gt=0)

    @property
    def json_logs(self) -> bool | None:
        """Resolve ``log_format`` into the ``configure_logging`` flag."""
        if self.log_format == "auto":
            return None
        return self.log_format == "json"


@lru_cache(maxsize=1)
def get_settings() -> FleetSettings:
    """Cached settings — loaded once per process."""
    return FleetSettings()
