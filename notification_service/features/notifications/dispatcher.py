"""Main notification dispatcher coordinating all channels.

One event fans out to email, push and in-app independently:

- email: preference filter, directory lookup, render, enqueue a delivery job
- push: preference filter, active subscriptions, send inline (optional queue fallback)
- in_app: preference filter, store, live frame

A failing channel is logged and counted; it never aborts the others.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any
from uuid import UUID

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from notification_service.core.exceptions import ServiceUnavailableException, ValidationException
from notification_service.core.services import BaseService
from notification_service.core.settings import get_email_settings, get_notification_settings
from notification_service.features.notifications.channels import (
    EmailSender,
    InAppWriter,
    PushSender,
    SubscriptionInfo,
)
from notification_service.features.notifications.content import (
    EmailContentBuilder,
    build_push_payload,
)
from notification_service.features.notifications.identity import (
    UserDirectoryError,
    get_user_directory,
)
from notification_service.features.notifications.in_app import get_in_app_service
from notification_service.features.notifications.metrics import (
    notification_deliveries_total,
    notifications_dispatched_total,
)
from notification_service.features.notifications.preferences import get_preference_service
from notification_service.features.notifications.push_subscriptions import (
    SqlSubscriptionStore,
    get_push_subscription_service,
)
from notification_service.features.notifications.queue import DeliveryJob, get_delivery_queue
from notification_service.features.notifications.schemas import (
    ChannelCounts,
    InAppCounts,
    NotificationEvent,
    NotificationResult,
)
from notification_service.features.notifications.types import Channel, NotificationType
from notification_service.infra.email import EmailMessage, TemplateRenderer

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from notification_service.core.settings import NotificationSettings
    from notification_service.features.notifications.channels import DeliveryResult
    from notification_service.features.notifications.content import PushPayload
    from notification_service.features.notifications.identity import UserDirectory
    from notification_service.features.notifications.preferences import PreferenceService
    from notification_service.features.notifications.push_subscriptions import (
        PushSubscriptionService,
    )
    from notification_service.features.notifications.queue import DeliveryQueue


class NotificationDispatcher(BaseService):
    """Routes one notification event to every requested channel.

    Example:
        dispatcher = get_dispatcher()
        result = await dispatcher.notify(
            session,
            tenant_id="acme",
            notification_type="task.assigned",
            user_ids=["u1", "u2"],
            data={"taskTitle": "Write report", "taskId": "42"},
        )
        await session.commit()
    """

    def __init__(
        self,
        preferences: PreferenceService,
        in_app_writer: InAppWriter,
        email_builder: EmailContentBuilder,
        directory: UserDirectory,
        push_sender: PushSender,
        subscriptions: PushSubscriptionService,
        queue: DeliveryQueue | None = None,
        settings: NotificationSettings | None = None,
    ) -> None:
        super().__init__()
        self._preferences = preferences
        self._in_app_writer = in_app_writer
        self._email_builder = email_builder
        self._directory = directory
        self._push_sender = push_sender
        self._subscriptions = subscriptions
        self._queue = queue
        self._settings = settings or get_notification_settings()

    @property
    def queue(self) -> DeliveryQueue | None:
        return self._queue or get_delivery_queue()

    async def notify(
        self,
        session: AsyncSession,
        tenant_id: str,
        notification_type: str,
        user_ids: Iterable[str],
        data: dict[str, Any] | None = None,
        channels: Sequence[Channel] | None = None,
    ) -> NotificationResult:
        """Validate a loosely typed request and dispatch it.

        Raises:
            ValidationException: Unknown notification type or no recipients
        """
        try:
            resolved = NotificationType(notification_type)
        except ValueError:
            raise ValidationException(
                detail=f"Unknown notification type '{notification_type}'",
                type="unknown-notification-type",
                extra={"notification_type": notification_type},
            ) from None

        event = NotificationEvent(
            type=resolved,
            tenant_id=tenant_id,
            recipient_user_ids=list(user_ids),
            data=data or {},
            channels=list(channels) if channels is not None else None,
        )
        return await self.dispatch(session, event)

    async def dispatch(self, session: AsyncSession, event: NotificationEvent) -> NotificationResult:
        """Deliver an event on each requested channel and summarise the outcome.

        The caller owns the transaction: in-app rows are flushed, not committed.

        Raises:
            ValidationException: The event has no recipients
        """
        recipients = list(dict.fromkeys(event.recipient_user_ids))
        if not recipients:
            raise ValidationException(
                detail="At least one recipient is required",
                type="no-recipients",
                extra={"notification_type": event.type.value},
            )

        requested = set(event.channels) if event.channels else set(Channel)
        result = NotificationResult()
        notifications_dispatched_total.labels(notification_type=event.type.value).inc()

        self.logger.info(
            "Dispatching notification",
            extra={
                "tenant_id": event.tenant_id,
                "notification_type": event.type.value,
                "recipients": len(recipients),
                "channels": sorted(c.value for c in requested),
            },
        )

        if Channel.EMAIL in requested:
            try:
                result.email = await self._dispatch_email(session, event, recipients)
            except Exception:
                self._channel_failed(Channel.EMAIL, event)
                result.email = ChannelCounts(failed=len(recipients))

        if Channel.PUSH in requested:
            try:
                result.push = await self._dispatch_push(session, event, recipients)
            except Exception:
                self._channel_failed(Channel.PUSH, event)
                result.push = ChannelCounts(failed=len(recipients))

        if Channel.IN_APP in requested:
            try:
                result.in_app = await self._dispatch_in_app(session, event, recipients)
            except Exception:
                self._channel_failed(Channel.IN_APP, event)

        self._lazy.debug(lambda: f"dispatch({event.type}) -> {result.model_dump()}")
        return result

    def _channel_failed(self, channel: Channel, event: NotificationEvent) -> None:
        self.logger.exception(
            f"{channel.value} channel failed",
            extra={"tenant_id": event.tenant_id, "notification_type": event.type.value},
        )

    # ------------------------------------------------------------------
    # Email
    # ------------------------------------------------------------------

    async def _dispatch_email(
        self,
        session: AsyncSession,
        event: NotificationEvent,
        recipients: list[str],
    ) -> ChannelCounts:
        allowed = await self._preferences.filter_recipients(
            session, event.tenant_id, recipients, event.type, Channel.EMAIL
        )
        if not allowed:
            return ChannelCounts()

        queue = self.queue
        if queue is None:
            self.logger.warning(
                "Delivery queue unavailable; email not sent",
                extra={"tenant_id": event.tenant_id, "recipients": len(allowed)},
            )
            return self._count(Channel.EMAIL, ChannelCounts(failed=len(allowed)))

        try:
            users = await self._directory.get_users(event.tenant_id, allowed)
        except UserDirectoryError:
            return self._count(Channel.EMAIL, ChannelCounts(failed=len(allowed)))
        by_id = {user.id: user for user in users}

        async def submit(user_id: str) -> bool:
            user = by_id.get(user_id)
            if user is None or not user.email:
                self.logger.debug("No email address for recipient", extra={"user_id": user_id})
                return False

            content = self._email_builder.build(event.type, event.data, user.display_name)
            message = EmailMessage(
                to=[user.email],
                subject=content.subject,
                body_html=content.html,
                body_text=content.text,
                headers={"X-Notification-Type": event.type.value},
            )
            job = DeliveryJob(
                channel=Channel.EMAIL,
                tenant_id=event.tenant_id,
                payload={
                    "message": message.model_dump(mode="json"),
                    "user_id": user_id,
                    "notification_type": event.type.value,
                },
            )
            try:
                await queue.enqueue(job)
            except RedisError as e:
                self.logger.warning(
                    "Email job could not be enqueued",
                    extra={"user_id": user_id, "error": str(e)},
                )
                return False
            return True

        outcomes = await asyncio.gather(*(submit(user_id) for user_id in allowed), return_exceptions=True)
        counts = ChannelCounts()
        for user_id, outcome in zip(allowed, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                self.logger.error(
                    "Email submission failed",
                    exc_info=outcome,
                    extra={"user_id": user_id},
                )
                counts.failed += 1
            elif outcome:
                counts.sent += 1
            else:
                counts.failed += 1
        return self._count(Channel.EMAIL, counts)

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    async def _dispatch_push(
        self,
        session: AsyncSession,
        event: NotificationEvent,
        recipients: list[str],
    ) -> ChannelCounts:
        allowed = await self._preferences.filter_recipients(
            session, event.tenant_id, recipients, event.type, Channel.PUSH
        )
        if not allowed:
            return ChannelCounts()

        targets: list[SubscriptionInfo] = []
        for user_id in allowed:
            subscriptions = await self._subscriptions.list_active(session, event.tenant_id, user_id)
            targets.extend(SubscriptionInfo.from_model(sub) for sub in subscriptions)
        if not targets:
            return ChannelCounts()

        payload = build_push_payload(event.type, event.data)
        outcomes = await asyncio.gather(
            *(self._push_sender.send(target, payload) for target in targets),
            return_exceptions=True,
        )

        counts = ChannelCounts()
        for target, outcome in zip(targets, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                self.logger.error(
                    "Push send raised",
                    exc_info=outcome,
                    extra={"subscription_id": target.id},
                )
                counts.failed += 1
                continue
            if outcome.success:
                counts.sent += 1
                await self._subscriptions.mark_used(session, UUID(target.id))
                continue
            counts.failed += 1
            await self._push_fallback(event, target, payload, outcome)
        return self._count(Channel.PUSH, counts)

    async def _push_fallback(
        self,
        event: NotificationEvent,
        target: SubscriptionInfo,
        payload: PushPayload,
        outcome: DeliveryResult,
    ) -> None:
        queue = self.queue
        if not (self._settings.push_queue_fallback and outcome.retryable and queue is not None):
            return
        job = DeliveryJob(
            channel=Channel.PUSH,
            tenant_id=event.tenant_id,
            payload={"subscription": target.to_dict(), "notification": payload.to_dict()},
            attempts=1,
            last_error=outcome.error_message,
        )
        try:
            await queue.enqueue(job, scheduled_for=_due_after(queue.backoff_delay_ms(1)))
        except RedisError as e:
            self.logger.warning(
                "Push fallback could not be enqueued",
                extra={"subscription_id": target.id, "error": str(e)},
            )

    # ------------------------------------------------------------------
    # In-app
    # ------------------------------------------------------------------

    async def _dispatch_in_app(
        self,
        session: AsyncSession,
        event: NotificationEvent,
        recipients: list[str],
    ) -> InAppCounts:
        allowed = await self._preferences.filter_recipients(
            session, event.tenant_id, recipients, event.type, Channel.IN_APP
        )
        counts = InAppCounts()
        # Sequential: every write shares the request session. Sorted so
        # concurrent dispatches take per-user locks in the same order.
        for user_id in sorted(allowed):
            try:
                async with session.begin_nested():
                    await self._in_app_writer.write(session, event.tenant_id, user_id, event.type, event.data)
            except SQLAlchemyError:
                self.logger.exception(
                    "In-app notification not stored",
                    extra={"tenant_id": event.tenant_id, "user_id": user_id},
                )
                notification_deliveries_total.labels(channel=Channel.IN_APP.value, outcome="failed").inc()
                continue
            counts.created += 1
        if counts.created:
            notification_deliveries_total.labels(channel=Channel.IN_APP.value, outcome="created").inc(
                counts.created
            )
        return counts

    @staticmethod
    def _count(channel: Channel, counts: ChannelCounts) -> ChannelCounts:
        sent_outcome = "queued" if channel is Channel.EMAIL else "sent"
        if counts.sent:
            notification_deliveries_total.labels(channel=channel.value, outcome=sent_outcome).inc(counts.sent)
        if counts.failed:
            notification_deliveries_total.labels(channel=channel.value, outcome="failed").inc(counts.failed)
        return counts

    # ------------------------------------------------------------------
    # Broadcasts
    # ------------------------------------------------------------------

    async def send_announcement(
        self,
        session: AsyncSession,
        tenant_id: str,
        title: str,
        message: str,
        url: str | None = None,
        channels: Sequence[Channel] | None = None,
    ) -> NotificationResult:
        """Announce to every active user of the tenant.

        Raises:
            ServiceUnavailableException: The user directory cannot be reached
        """
        try:
            user_ids = await self._directory.get_active_user_ids(tenant_id)
        except UserDirectoryError as e:
            raise ServiceUnavailableException(
                detail="User directory is unavailable",
                type="directory-unavailable",
            ) from e
        if not user_ids:
            self.logger.info("Announcement skipped: no active users", extra={"tenant_id": tenant_id})
            return NotificationResult()

        data: dict[str, Any] = {"title": title, "message": message}
        if url:
            data["url"] = url
            data["actionUrl"] = url
        return await self.notify(
            session, tenant_id, NotificationType.SYSTEM_ANNOUNCEMENT, user_ids, data, channels
        )

    async def send_maintenance_notice(
        self,
        session: AsyncSession,
        tenant_ids: Sequence[str],
        message: str,
        scheduled_at: datetime,
        duration_minutes: int,
    ) -> dict[str, NotificationResult]:
        """Warn every active user of each tenant about planned downtime."""
        data = {
            "message": message,
            "scheduledAt": scheduled_at.isoformat(),
            "durationMinutes": duration_minutes,
        }
        results: dict[str, NotificationResult] = {}
        for tenant_id in tenant_ids:
            try:
                user_ids = await self._directory.get_active_user_ids(tenant_id)
            except UserDirectoryError:
                results[tenant_id] = NotificationResult()
                continue
            if not user_ids:
                results[tenant_id] = NotificationResult()
                continue
            results[tenant_id] = await self.notify(
                session, tenant_id, NotificationType.SYSTEM_MAINTENANCE, user_ids, data
            )
        return results


def _due_after(delay_ms: int) -> datetime:
    return datetime.now(UTC) + timedelta(milliseconds=delay_ms)


_email_sender: EmailSender | None = None
_push_sender: PushSender | None = None
_dispatcher: NotificationDispatcher | None = None


def get_email_sender() -> EmailSender:
    global _email_sender
    if _email_sender is None:
        _email_sender = EmailSender()
    return _email_sender


def get_push_sender() -> PushSender:
    """Push sender that deactivates gone subscriptions in its own transaction."""
    global _push_sender
    if _push_sender is None:
        _push_sender = PushSender(store=SqlSubscriptionStore())
    return _push_sender


def get_dispatcher() -> NotificationDispatcher:
    """Get or create the singleton NotificationDispatcher instance.

    The delivery queue is resolved on each dispatch, so the dispatcher can be
    created before Redis is started.
    """
    global _dispatcher
    if _dispatcher is None:
        email_settings = get_email_settings()
        _dispatcher = NotificationDispatcher(
            preferences=get_preference_service(),
            in_app_writer=InAppWriter(get_in_app_service()),
            email_builder=EmailContentBuilder(
                TemplateRenderer(email_settings.template_dir),
                email_settings.platform_url,
            ),
            directory=get_user_directory(),
            push_sender=get_push_sender(),
            subscriptions=get_push_subscription_service(),
        )
    return _dispatcher
