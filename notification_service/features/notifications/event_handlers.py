"""Business event handlers.

Upstream services (tasks, leave, projects, HR) publish domain events; this
module maps each one to a notification type and its recipients, then hands
it to the dispatcher.

Mapping:
    task.created / task.assigned  -> task.assigned     (assigneeIds)
    task.mentioned                -> task.mentioned    (mentionedEmployeeIds)
    task.commented                -> task.commented    (reporterId + assigneeIds, minus the commenter)
    leave.requested               -> leave.requested   (managerIds)
    leave.approved / rejected     -> same type         (employeeUserId)
    project.member_added          -> project.added     (employeeUserId)
    employee.created              -> employee.onboarded (userId, email + in-app only)

Unknown events are ignored. Events that resolve to no recipients are skipped.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any

from notification_service.features.notifications.dispatcher import get_dispatcher
from notification_service.features.notifications.types import Channel, NotificationType

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from notification_service.features.notifications.dispatcher import NotificationDispatcher
    from notification_service.features.notifications.schemas import NotificationResult

logger = logging.getLogger(__name__)

RecipientResolver = Callable[[dict[str, Any]], list[str]]


def _ids(payload: dict[str, Any], key: str) -> list[str]:
    value = payload.get(key)
    if value is None:
        return []
    if isinstance(value, str | int):
        return [str(value)]
    return [str(item) for item in value if item is not None]


def _field(key: str) -> RecipientResolver:
    return lambda payload: _ids(payload, key)


def _comment_recipients(payload: dict[str, Any]) -> list[str]:
    commenter = set(_ids(payload, "commentedByUserId"))
    candidates = _ids(payload, "reporterId") + _ids(payload, "assigneeIds")
    return [user_id for user_id in dict.fromkeys(candidates) if user_id not in commenter]


@dataclass(frozen=True, slots=True)
class EventRoute:
    notification_type: NotificationType
    recipients: RecipientResolver
    channels: tuple[Channel, ...] | None = None


EVENT_ROUTES: dict[str, EventRoute] = {
    "task.created": EventRoute(NotificationType.TASK_ASSIGNED, _field("assigneeIds")),
    "task.assigned": EventRoute(NotificationType.TASK_ASSIGNED, _field("assigneeIds")),
    "task.mentioned": EventRoute(NotificationType.TASK_MENTIONED, _field("mentionedEmployeeIds")),
    "task.commented": EventRoute(NotificationType.TASK_COMMENTED, _comment_recipients),
    "leave.requested": EventRoute(NotificationType.LEAVE_REQUESTED, _field("managerIds")),
    "leave.approved": EventRoute(NotificationType.LEAVE_APPROVED, _field("employeeUserId")),
    "leave.rejected": EventRoute(NotificationType.LEAVE_REJECTED, _field("employeeUserId")),
    "project.member_added": EventRoute(NotificationType.PROJECT_ADDED, _field("employeeUserId")),
    "employee.created": EventRoute(
        NotificationType.EMPLOYEE_ONBOARDED,
        _field("userId"),
        channels=(Channel.EMAIL, Channel.IN_APP),
    ),
}


class NotificationEventHandler:
    """Turns upstream business events into notification dispatches."""

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        routes: dict[str, EventRoute] | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._routes = routes if routes is not None else EVENT_ROUTES

    def handles(self, event_name: str) -> bool:
        return event_name in self._routes

    async def handle(
        self,
        session: AsyncSession,
        tenant_id: str,
        event_name: str,
        payload: dict[str, Any],
    ) -> NotificationResult | None:
        """Dispatch the notification for one event.

        Returns:
            The dispatch result, or None when the event was ignored
        """
        route = self._routes.get(event_name)
        if route is None:
            logger.debug("No notification mapping for event", extra={"event_name": event_name})
            return None

        recipients = route.recipients(payload)
        if not recipients:
            logger.debug(
                "Event has no recipients, skipped",
                extra={"event_name": event_name, "tenant_id": tenant_id},
            )
            return None

        logger.info(
            "Handling business event",
            extra={
                "event_name": event_name,
                "tenant_id": tenant_id,
                "notification_type": route.notification_type.value,
                "recipients": len(recipients),
            },
        )
        return await self._dispatcher.notify(
            session,
            tenant_id,
            route.notification_type,
            recipients,
            payload,
            route.channels,
        )


_handler: NotificationEventHandler | None = None


def get_event_handler() -> NotificationEventHandler:
    """Get or create the singleton NotificationEventHandler instance."""
    global _handler
    if _handler is None:
        _handler = NotificationEventHandler(get_dispatcher())
    return _handler
