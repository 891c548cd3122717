"""Notification channel, in-app store and delivery queue settings.

Each concern has its own env prefix:
- PUSH_: Web Push (VAPID) credentials and limits
- IN_APP_: in-app store capacity and retention
- QUEUE_: Redis delivery queue retry/backoff behaviour
- NOTIFY_: dispatcher wiring (user directory, push fallback)
"""

from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class PushSettings(BaseSettings):
    """Web Push settings.

    Environment variables use PUSH_ prefix.
    Example: PUSH_VAPID_PUBLIC_KEY=..., PUSH_VAPID_PRIVATE_KEY=...
    """

    vapid_public_key: str | None = Field(
        default=None,
        description="VAPID public key handed to browsers when they subscribe",
    )
    vapid_private_key: SecretStr | None = Field(
        default=None,
        description="VAPID private key used to sign push requests",
    )
    vapid_subject: str = Field(
        default="mailto:admin@oms.local",
        description="VAPID subject claim (mailto: or https: URL)",
    )
    ttl: int = Field(
        default=86400,
        ge=0,
        le=2_419_200,
        description="Seconds the push service keeps an undelivered message",
    )
    send_timeout_seconds: float = Field(
        default=10.0,
        ge=0.5,
        le=120.0,
        description="Upper bound for a single push send",
    )

    model_config = SettingsConfigDict(
        env_prefix="PUSH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @property
    def is_configured(self) -> bool:
        """Push is usable only when both VAPID keys are present."""
        return bool(self.vapid_public_key) and self.vapid_private_key is not None


class InAppSettings(BaseSettings):
    """In-app notification store settings.

    Environment variables use IN_APP_ prefix.
    """

    max_per_user: int = Field(
        default=500,
        ge=1,
        le=100_000,
        description="Maximum stored notifications per user; older rows are evicted first",
    )
    retention_days: int = Field(
        default=90,
        ge=1,
        le=3650,
        description="Read notifications older than this are removed by cleanup",
    )
    mark_read_batch_size: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Chunk size for bulk read/delete operations",
    )
    default_page_size: int = Field(default=20, ge=1, le=100, description="Default listing page size")
    max_page_size: int = Field(default=100, ge=1, le=500, description="Maximum listing page size")

    model_config = SettingsConfigDict(
        env_prefix="IN_APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )


class DeliveryQueueSettings(BaseSettings):
    """Redis delivery queue settings.

    Environment variables use QUEUE_ prefix.
    Example: QUEUE_MAX_ATTEMPTS=5, QUEUE_BASE_DELAY_MS=2000
    """

    key_prefix: str = Field(
        default="delivery:",
        min_length=1,
        max_length=50,
        description="Key namespace for queue structures (appended to the Redis key prefix)",
    )
    max_attempts: int = Field(
        default=3,
        ge=1,
        le=20,
        description="Attempts before a job becomes a terminal failure",
    )
    base_delay_ms: int = Field(
        default=1000,
        ge=1,
        le=3_600_000,
        description="Backoff base; retry n waits base * 2^(n-1) milliseconds",
    )
    batch_size: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Maximum jobs handled per processing tick",
    )
    process_interval_seconds: int = Field(
        default=5,
        ge=1,
        le=3600,
        description="Interval between processing ticks",
    )
    job_timeout_seconds: float = Field(
        default=30.0,
        ge=0.5,
        le=600.0,
        description="Upper bound for a single channel send",
    )
    completed_ttl_seconds: int = Field(
        default=86400,
        ge=60,
        description="Retention of completion records (24 hours)",
    )
    failed_ttl_seconds: int = Field(
        default=604800,
        ge=60,
        description="Retention of terminal failure records (7 days)",
    )

    model_config = SettingsConfigDict(
        env_prefix="QUEUE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )


class NotificationSettings(BaseSettings):
    """Dispatcher wiring.

    Environment variables use NOTIFY_ prefix.
    """

    push_queue_fallback: bool = Field(
        default=False,
        description="Re-send transient push failures through the delivery queue",
    )
    directory_url: str | None = Field(
        default=None,
        description="Base URL of the user directory service (users, emails, active flags)",
    )
    directory_timeout: float = Field(
        default=5.0,
        ge=0.1,
        le=60.0,
        description="HTTP timeout for user directory calls",
    )
    directory_token: SecretStr | None = Field(
        default=None,
        description="Bearer token for the user directory service",
    )

    model_config = SettingsConfigDict(
        env_prefix="NOTIFY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )
