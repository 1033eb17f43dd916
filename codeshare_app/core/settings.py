"""
Runtime settings for the classroom server.

Defaults come from the constants modules; every field can be overridden with a
``CODESHARE_``-prefixed environment variable or a ``.env`` file.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from codeshare_app.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from codeshare_app.constants.session_constants import (
    IDLE_SESSION_TIMEOUT_SECONDS,
    IDLE_SWEEP_INTERVAL_SECONDS,
    STUDENT_GRACE_PERIOD_SECONDS,
)

DEFAULT_TASKS_PATH = Path(__file__).resolve().parent.parent / "data" / "tasks.txt"


class ServerSettings(BaseSettings):
    """Values the server needs at start-up."""

    host: str = Field(default=DEFAULT_HOST, description="Interface to bind")
    port: int = Field(default=DEFAULT_PORT, gt=0, lt=65536, description="TCP port")
    idle_timeout_seconds: float = Field(
        default=IDLE_SESSION_TIMEOUT_SECONDS,
        gt=0,
        description="End a session after its teacher has been gone this long",
    )
    grace_period_seconds: float = Field(
        default=STUDENT_GRACE_PERIOD_SECONDS,
        gt=0,
        description="Keep a disconnected student's entry this long",
    )
    sweep_interval_seconds: float = Field(
        default=IDLE_SWEEP_INTERVAL_SECONDS,
        gt=0,
        description="How often idle sessions are looked for",
    )
    tasks_path: Path = Field(default=DEFAULT_TASKS_PATH, description="Task catalog file")
    log_level: str = Field(default="INFO", description="Logging level")

    model_config = SettingsConfigDict(
        env_prefix="CODESHARE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.strip().upper()
