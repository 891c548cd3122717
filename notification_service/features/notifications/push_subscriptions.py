"""Push subscription registration and lifecycle."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from notification_service.core.exceptions import ServiceUnavailableException
from notification_service.core.services import BaseService
from notification_service.core.settings import get_push_settings
from notification_service.features.notifications.models import PushSubscription
from notification_service.features.notifications.repository import PushSubscriptionRepository
from notification_service.infra.database.session import AsyncSessionLocal

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from notification_service.core.settings import PushSettings
    from notification_service.features.notifications.schemas import PushSubscriptionCreate


class PushSubscriptionService(BaseService):
    """Registers, lists and removes a user's browser subscriptions."""

    def __init__(
        self,
        repository: PushSubscriptionRepository | None = None,
        settings: PushSettings | None = None,
    ) -> None:
        super().__init__()
        self._repository = repository or PushSubscriptionRepository()
        self._settings = settings or get_push_settings()

    def get_vapid_public_key(self) -> str:
        """Public key browsers need to subscribe.

        Raises:
            ServiceUnavailableException: If push is not configured
        """
        if not self._settings.vapid_public_key:
            raise ServiceUnavailableException(
                detail="Push notifications are not configured",
                type="push-not-configured",
            )
        return self._settings.vapid_public_key

    async def register(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
        data: PushSubscriptionCreate,
    ) -> PushSubscription:
        """Create or refresh the subscription for (user, endpoint); always re-activates."""
        subscription = await self._repository.get_by_endpoint(session, user_id, data.endpoint)
        if subscription is None:
            subscription = await self._repository.create(
                session,
                PushSubscription(
                    tenant_id=tenant_id,
                    user_id=user_id,
                    endpoint=data.endpoint,
                    p256dh=data.keys.p256dh,
                    auth=data.keys.auth,
                    user_agent=data.user_agent,
                    device_name=data.device_name,
                    is_active=True,
                ),
            )
            self.logger.info(
                "Push subscription registered",
                extra={"tenant_id": tenant_id, "user_id": user_id, "subscription_id": str(subscription.id)},
            )
            return subscription

        subscription.tenant_id = tenant_id
        subscription.p256dh = data.keys.p256dh
        subscription.auth = data.keys.auth
        subscription.user_agent = data.user_agent or subscription.user_agent
        subscription.device_name = data.device_name or subscription.device_name
        subscription.is_active = True
        await session.flush()
        self._lazy.debug(lambda: f"push.register refreshed {subscription.id}")
        return subscription

    async def unregister(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
        endpoint: str,
    ) -> bool:
        """Delete the owner's subscription; False when it did not exist."""
        subscription = await self._repository.get_by_endpoint(session, user_id, endpoint)
        if subscription is None or subscription.tenant_id != tenant_id:
            return False
        await self._repository.delete(session, subscription)
        return True

    async def list_active(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
    ) -> Sequence[PushSubscription]:
        return await self._repository.list_active(session, tenant_id, user_id)

    async def mark_used(self, session: AsyncSession, subscription_id: UUID) -> None:
        await self._repository.touch(session, subscription_id, datetime.now(UTC))


class SqlSubscriptionStore:
    """Deactivates subscriptions in their own short transaction.

    The push sender may run inside a queue worker with no request session,
    so it opens one per call.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        repository: PushSubscriptionRepository | None = None,
    ) -> None:
        self._session_factory = session_factory or AsyncSessionLocal
        self._repository = repository or PushSubscriptionRepository()

    async def deactivate(self, subscription_id: str) -> None:
        async with self._session_factory() as session:
            await self._repository.set_active(session, UUID(subscription_id), active=False)
            await session.commit()


_service: PushSubscriptionService | None = None


def get_push_subscription_service() -> PushSubscriptionService:
    """Get or create the singleton PushSubscriptionService instance."""
    global _service
    if _service is None:
        _service = PushSubscriptionService()
    return _service
