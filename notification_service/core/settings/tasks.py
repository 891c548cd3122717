"""Background task settings.

Environment variables use TASK_ prefix.
Example: TASK_ENABLED=true
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TaskSettings(BaseSettings):
    """taskiq broker and APScheduler configuration."""

    enabled: bool = Field(
        default=True,
        description="Hand periodic work to a taskiq worker when Redis is configured",
    )
    scheduler_enabled: bool = Field(
        default=True,
        description="Run the in-process APScheduler (queue processing, cleanup)",
    )
    queue_name: str = Field(
        default="notification-tasks",
        min_length=1,
        max_length=100,
        description="Redis list used by the taskiq broker",
    )
    redis_result_ttl_seconds: int = Field(
        default=86400,  # 24 hours
        ge=60,
        le=604800,  # Max 7 days
        description="TTL for task results in Redis (seconds)",
    )
    cleanup_hour: int = Field(
        default=3,
        ge=0,
        le=23,
        description="UTC hour at which the in-app cleanup runs",
    )

    model_config = SettingsConfigDict(
        env_prefix="TASK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )
