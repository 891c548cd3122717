"""LRU-cached settings loaders.

Settings are loaded and validated once, then cached for the lifetime of the process.

Usage:
    from notification_service.core.settings import get_queue_settings

    settings = get_queue_settings()  # First call: loads and validates
    settings = get_queue_settings()  # Subsequent calls: returns cached instance

Testing:
    In tests, clear the cache to force reload:
    get_queue_settings.cache_clear()

    Or construct a model directly:
    settings = DeliveryQueueSettings(max_attempts=2)
"""

from __future__ import annotations

from functools import lru_cache

from .app import AppSettings
from .email import EmailSettings
from .logs import LoggingSettings
from .notifications import (
    DeliveryQueueSettings,
    InAppSettings,
    NotificationSettings,
    PushSettings,
)
from .postgres import PostgresSettings
from .redis import RedisSettings
from .tasks import TaskSettings


@lru_cache(maxsize=1)
def get_app_settings() -> AppSettings:
    """Get cached application settings.

    Returns:
        Validated and frozen AppSettings instance.
    """
    return AppSettings()


@lru_cache(maxsize=1)
def get_db_settings() -> PostgresSettings:
    """Get cached database settings.

    Returns:
        Validated and frozen PostgresSettings instance.
    """
    return PostgresSettings()


@lru_cache(maxsize=1)
def get_redis_settings() -> RedisSettings:
    """Get cached Redis settings.

    Returns:
        Validated and frozen RedisSettings instance.
    """
    return RedisSettings()


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    """Get cached logging settings.

    Returns:
        Validated and frozen LoggingSettings instance.
    """
    return LoggingSettings()


@lru_cache(maxsize=1)
def get_email_settings() -> EmailSettings:
    """Get cached email channel settings.

    Returns:
        Validated and frozen EmailSettings instance.
    """
    return EmailSettings()


@lru_cache(maxsize=1)
def get_push_settings() -> PushSettings:
    """Get cached push channel settings.

    Returns:
        Validated and frozen PushSettings instance.
    """
    return PushSettings()


@lru_cache(maxsize=1)
def get_in_app_settings() -> InAppSettings:
    """Get cached in-app store settings.

    Returns:
        Validated and frozen InAppSettings instance.
    """
    return InAppSettings()


@lru_cache(maxsize=1)
def get_queue_settings() -> DeliveryQueueSettings:
    """Get cached delivery queue settings.

    Returns:
        Validated and frozen DeliveryQueueSettings instance.
    """
    return DeliveryQueueSettings()


@lru_cache(maxsize=1)
def get_notification_settings() -> NotificationSettings:
    """Get cached dispatcher settings.

    Returns:
        Validated and frozen NotificationSettings instance.
    """
    return NotificationSettings()


@lru_cache(maxsize=1)
def get_task_settings() -> TaskSettings:
    """Get cached background task settings.

    Returns:
        Validated and frozen TaskSettings instance.
    """
    return TaskSettings()


def clear_all_caches() -> None:
    """Clear every cached settings instance (tests and reloads)."""
    for loader in (
        get_app_settings,
        get_db_settings,
        get_redis_settings,
        get_logging_settings,
        get_email_settings,
        get_push_settings,
        get_in_app_settings,
        get_queue_settings,
        get_notification_settings,
        get_task_settings,
    ):
        loader.cache_clear()
