"""User directory: resolves user ids to addresses and lists active users.

The directory is owned by another service. ``HttpUserDirectory`` calls it
over HTTP; ``StaticUserDirectory`` serves a fixed mapping for development
and tests.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from notification_service.core.settings import get_notification_settings
from notification_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from notification_service.core.settings import NotificationSettings

logger = logging.getLogger(__name__)
lazy_logger = get_lazy_logger(__name__)


class UserDirectoryError(Exception):
    """The directory could not be reached or answered with an error."""


@dataclass(frozen=True, slots=True)
class UserIdentity:
    id: str
    email: str | None = None
    display_name: str | None = None
    is_active: bool = True


class UserDirectory(Protocol):
    async def get_users(self, tenant_id: str, user_ids: Sequence[str]) -> list[UserIdentity]: ...

    async def get_active_user_ids(self, tenant_id: str) -> list[str]: ...


class StaticUserDirectory:
    """In-memory directory keyed by tenant."""

    def __init__(self, users: Mapping[str, Iterable[UserIdentity]] | None = None) -> None:
        self._users: dict[str, dict[str, UserIdentity]] = {
            tenant_id: {user.id: user for user in tenant_users}
            for tenant_id, tenant_users in (users or {}).items()
        }

    def add(self, tenant_id: str, user: UserIdentity) -> None:
        self._users.setdefault(tenant_id, {})[user.id] = user

    async def get_users(self, tenant_id: str, user_ids: Sequence[str]) -> list[UserIdentity]:
        tenant_users = self._users.get(tenant_id, {})
        return [tenant_users[user_id] for user_id in user_ids if user_id in tenant_users]

    async def get_active_user_ids(self, tenant_id: str) -> list[str]:
        return [user.id for user in self._users.get(tenant_id, {}).values() if user.is_active]


class HttpUserDirectory:
    """Directory client over HTTP.

    Endpoints (relative to ``NOTIFY_DIRECTORY_URL``):
        GET /internal/users?ids=a,b   -> {"users": [{"id", "email", "displayName", "isActive"}]}
        GET /internal/users/active    -> {"userIds": [...]}

    The tenant travels in the ``X-Tenant-ID`` header.
    """

    def __init__(
        self,
        settings: NotificationSettings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or get_notification_settings()
        if not self._settings.directory_url:
            msg = "NOTIFY_DIRECTORY_URL is required for the HTTP user directory"
            raise ValueError(msg)

        headers = {"User-Agent": "notification-service/1.0"}
        if self._settings.directory_token is not None:
            headers["Authorization"] = f"Bearer {self._settings.directory_token.get_secret_value()}"

        self._client = client or httpx.AsyncClient(
            base_url=self._settings.directory_url.rstrip("/"),
            headers=headers,
            timeout=self._settings.directory_timeout,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, tenant_id: str, path: str, params: dict[str, Any] | None = None) -> Any:
        try:
            response = await self._client.get(path, params=params, headers={"X-Tenant-ID": tenant_id})
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(
                "User directory request failed",
                extra={"path": path, "tenant_id": tenant_id, "error": str(e)},
            )
            raise UserDirectoryError(str(e)) from e
        return response.json()

    async def get_users(self, tenant_id: str, user_ids: Sequence[str]) -> list[UserIdentity]:
        if not user_ids:
            return []
        body = await self._get(tenant_id, "/internal/users", {"ids": ",".join(user_ids)})
        users = [
            UserIdentity(
                id=str(item["id"]),
                email=item.get("email"),
                display_name=item.get("displayName") or item.get("name"),
                is_active=item.get("isActive", True),
            )
            for item in body.get("users", [])
        ]
        lazy_logger.debug(lambda: f"directory.get_users({tenant_id}) -> {len(users)}/{len(user_ids)}")
        return users

    async def get_active_user_ids(self, tenant_id: str) -> list[str]:
        body = await self._get(tenant_id, "/internal/users/active")
        return [str(user_id) for user_id in body.get("userIds", [])]


_directory: UserDirectory | None = None


def get_user_directory() -> UserDirectory:
    """HTTP directory when ``NOTIFY_DIRECTORY_URL`` is set, otherwise an empty static one."""
    global _directory
    if _directory is None:
        if get_notification_settings().directory_url:
            _directory = HttpUserDirectory()
        else:
            logger.warning("NOTIFY_DIRECTORY_URL not set; email and announcements have no recipients")
            _directory = StaticUserDirectory()
    return _directory


async def close_user_directory() -> None:
    global _directory
    if isinstance(_directory, HttpUserDirectory):
        await _directory.aclose()
    _directory = None
