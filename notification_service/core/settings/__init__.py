"""Modular Pydantic Settings v2 configuration.

Settings are split by domain (app, db, redis, logging, channels, queue, tasks),
each read from its own environment prefix and cached by an LRU loader:

    from notification_service.core.settings import get_push_settings

Configuration precedence (highest to lowest):
    1. init kwargs (testing/overrides)
    2. Environment variables (production)
    3. .env file (development only)
"""

from __future__ import annotations

from .app import AppSettings
from .email import EmailSettings
from .loader import (
    clear_all_caches,
    get_app_settings,
    get_db_settings,
    get_email_settings,
    get_in_app_settings,
    get_logging_settings,
    get_notification_settings,
    get_push_settings,
    get_queue_settings,
    get_redis_settings,
    get_task_settings,
)
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

__all__ = [
    "AppSettings",
    "DeliveryQueueSettings",
    "EmailSettings",
    "InAppSettings",
    "LoggingSettings",
    "NotificationSettings",
    "PostgresSettings",
    "PushSettings",
    "RedisSettings",
    "TaskSettings",
    "clear_all_caches",
    "get_app_settings",
    "get_db_settings",
    "get_email_settings",
    "get_in_app_settings",
    "get_logging_settings",
    "get_notification_settings",
    "get_push_settings",
    "get_queue_settings",
    "get_redis_settings",
    "get_task_settings",
]
