from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from sw_watchdog.utils.logging_config import resolve_level


class WatchdogSettings(BaseSettings):
    """Watchdog settings with environment variable support (SW_WATCHDOG_*)"""

    model_config = SettingsConfigDict(
        env_prefix="SW_WATCHDOG_",
        env_file=".env",
        extra="ignore",
    )

    # Lease granted to the heartbeat writers; must exceed their period
    lease_duration_ms: int = Field(..., gt=0)
    autostart: bool = False
    publish_failures: bool = False

    heartbeat_topic: str = Field(default="heartbeat", min_length=1)
    failure_topic: str = Field(default="failure", min_length=1)
    history_capacity: int = Field(default=25, gt=0)

    # Wire protocol (heartbeats, failure subscriptions)
    host: str = "127.0.0.1"
    port: int = Field(default=9400, ge=0, le=65535)
    # REST lifecycle API; disabled when unset
    api_port: Optional[int] = Field(default=None, ge=0, le=65535)

    monitor_interval: float = Field(default=0.05, gt=0)
    failure_log: Optional[str] = None

    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "json"
    log_path: Optional[str] = None

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        resolve_level(value)
        return value.upper()

    @property
    def lease_duration(self) -> float:
        """Lease in seconds."""
        return self.lease_duration_ms / 1000.0
