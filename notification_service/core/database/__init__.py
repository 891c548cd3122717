"""Database primitives: declarative base, mixins, repository and errors."""

from notification_service.core.database.base import (
    NAMING_CONVENTION,
    Base,
    JSONType,
    TenantMixin,
    TimestampMixin,
    UUIDv7PKMixin,
    UUIDv7TimestampedBase,
    as_utc,
)
from notification_service.core.database.exceptions import NotFoundError, RepositoryError
from notification_service.core.database.repository import BaseRepository, SearchResult

__all__ = [
    "NAMING_CONVENTION",
    "Base",
    "BaseRepository",
    "JSONType",
    "NotFoundError",
    "RepositoryError",
    "SearchResult",
    "TenantMixin",
    "TimestampMixin",
    "UUIDv7PKMixin",
    "UUIDv7TimestampedBase",
    "as_utc",
]
