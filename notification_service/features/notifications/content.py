"""Per-type content for every channel.

Each builder is an exhaustive ``match`` over ``NotificationType``; adding a
type without content fails type checking via ``assert_never``. Event data
keys follow the upstream services (camelCase). Missing or empty values fall
back to neutral wording.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
import logging
from typing import TYPE_CHECKING, Any, assert_never

from notification_service.features.notifications.types import NotificationType, Priority
from notification_service.infra.email.templates import html_to_text

if TYPE_CHECKING:
    from notification_service.infra.email.templates import TemplateRenderer

logger = logging.getLogger(__name__)

T = NotificationType

HEADER_TITLE = "Office Management System"
DEFAULT_ICON = "/icons/notification.png"
DEFAULT_BADGE = "/icons/badge.png"


def _v(data: dict[str, Any], key: str, default: str = "") -> str:
    """String value for ``key``, or ``default`` when missing or empty."""
    value = data.get(key)
    return str(value) if value not in (None, "", 0, False) else default


def _first(data: dict[str, Any], *keys: str, default: str = "") -> str:
    for key in keys:
        value = _v(data, key)
        if value:
            return value
    return default


def _path(prefix: str, identifier: Any) -> str | None:
    return f"{prefix}{identifier}" if identifier not in (None, "") else None


# =============================================================================
# In-app
# =============================================================================


@dataclass(frozen=True, slots=True)
class InAppContent:
    title: str
    message: str
    priority: Priority = Priority.NORMAL
    action_url: str | None = None


def build_in_app_content(notification_type: NotificationType, data: dict[str, Any]) -> InAppContent:
    """Title, message and priority for the in-app feed."""
    action_url = _first(data, "actionUrl", "url") or None
    task = _v(data, "taskNumber")

    def content(title: str, message: str, priority: Priority = Priority.NORMAL) -> InAppContent:
        return InAppContent(title, message, priority, action_url)

    match notification_type:
        case T.TASK_ASSIGNED:
            return content(
                "New Task Assigned",
                f"You have been assigned to {task or 'a task'}: {_v(data, 'taskTitle')}",
            )
        case T.TASK_MENTIONED:
            return content(
                "You were mentioned",
                f"{_v(data, 'mentionedBy', 'Someone')} mentioned you in {task or 'a task'}",
            )
        case T.TASK_COMMENTED:
            return content(
                "New Comment",
                f"{_v(data, 'commentedBy', 'Someone')} commented on {task or 'your task'}",
            )
        case T.TASK_STATUS_CHANGED:
            return content(
                "Task Status Changed",
                f"{task or 'Task'} status changed to {_v(data, 'newStatus', 'updated')}",
                Priority.LOW,
            )
        case T.TASK_DUE_SOON:
            return content(
                "Task Due Soon",
                f"{task or 'A task'} is due {_v(data, 'dueIn', 'soon')}",
                Priority.HIGH,
            )
        case T.TASK_OVERDUE:
            return content("Task Overdue!", f"{task or 'A task'} is now overdue", Priority.URGENT)
        case T.LEAVE_REQUESTED:
            return content(
                "Leave Request Pending",
                f"{_v(data, 'employeeName', 'An employee')} has requested "
                f"{_v(data, 'days')} day(s) of {_v(data, 'leaveType', 'leave')}",
            )
        case T.LEAVE_APPROVED:
            return content(
                "Leave Request Approved",
                f"Your {_v(data, 'leaveType', 'leave')} request has been approved",
            )
        case T.LEAVE_REJECTED:
            return content(
                "Leave Request Rejected",
                f"Your {_v(data, 'leaveType', 'leave')} request was rejected. "
                f"Reason: {_v(data, 'reason', 'See details')}",
            )
        case T.LEAVE_CANCELLED:
            return content(
                "Leave Cancelled",
                f"{_v(data, 'leaveType', 'Leave')} request has been cancelled",
                Priority.LOW,
            )
        case T.ATTENDANCE_REMINDER:
            return content("Check-in Reminder", "Don't forget to check in for today!")
        case T.ATTENDANCE_MISSED:
            return content(
                "Missed Check-in",
                "You missed check-in today. Please contact HR if needed.",
                Priority.HIGH,
            )
        case T.PROJECT_ADDED:
            return content(
                "Added to Project",
                f"You've been added to project: {_v(data, 'projectName', 'New Project')}",
            )
        case T.PROJECT_MILESTONE:
            return content(
                "Milestone Reached",
                f"{_v(data, 'projectName', 'Project')}: "
                f"{_v(data, 'milestoneName', 'Milestone')} has been completed!",
            )
        case T.TIMESHEET_REMINDER:
            return content("Timesheet Reminder", "Please submit your timesheet for this week")
        case T.TIMESHEET_APPROVED:
            return content(
                "Timesheet Approved",
                f"Your timesheet for {_v(data, 'period', 'this period')} has been approved",
            )
        case T.TIMESHEET_REJECTED:
            return content(
                "Timesheet Rejected",
                f"Your timesheet needs revision: {_v(data, 'reason', 'See comments')}",
                Priority.HIGH,
            )
        case T.SYSTEM_ANNOUNCEMENT:
            return content(
                _v(data, "title", "System Announcement"),
                _first(data, "message", "body"),
                Priority.HIGH,
            )
        case T.SYSTEM_MAINTENANCE:
            return content(
                "Scheduled Maintenance",
                _v(data, "message", "System maintenance is scheduled. Please save your work."),
                Priority.URGENT,
            )
        case T.EMPLOYEE_ONBOARDED:
            return content("New Team Member", f"Welcome {_v(data, 'employeeName')} to the team!")
        case T.EMPLOYEE_BIRTHDAY:
            return content(
                "Birthday Today! 🎂",
                f"It's {_v(data, 'employeeName', 'a colleague')}'s birthday today!",
                Priority.LOW,
            )
        case T.EMPLOYEE_ANNIVERSARY:
            return content(
                "Work Anniversary! 🎉",
                f"{_v(data, 'employeeName', 'A colleague')} celebrates {_v(data, 'years')} years with us!",
                Priority.LOW,
            )
        case _:
            assert_never(notification_type)


# =============================================================================
# Push
# =============================================================================


@dataclass(frozen=True, slots=True)
class PushPayload:
    """Notification options handed to the service worker's ``showNotification``."""

    title: str
    body: str
    icon: str = DEFAULT_ICON
    badge: str = DEFAULT_BADGE
    image: str | None = None
    tag: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    actions: list[dict[str, str]] = field(default_factory=list)
    require_interaction: bool = False
    silent: bool = False
    vibrate: list[int] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Browser-facing JSON (camelCase, unset options omitted)."""
        payload: dict[str, Any] = {
            "title": self.title,
            "body": self.body,
            "icon": self.icon,
            "badge": self.badge,
            "data": {k: v for k, v in self.data.items() if v is not None},
        }
        if self.image:
            payload["image"] = self.image
        if self.tag:
            payload["tag"] = self.tag
        if self.actions:
            payload["actions"] = self.actions
        if self.require_interaction:
            payload["requireInteraction"] = True
        if self.silent:
            payload["silent"] = True
        if self.vibrate:
            payload["vibrate"] = self.vibrate
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> PushPayload:
        return cls(
            title=payload["title"],
            body=payload.get("body", ""),
            icon=payload.get("icon", DEFAULT_ICON),
            badge=payload.get("badge", DEFAULT_BADGE),
            image=payload.get("image"),
            tag=payload.get("tag"),
            data=payload.get("data", {}),
            actions=payload.get("actions", []),
            require_interaction=payload.get("requireInteraction", False),
            silent=payload.get("silent", False),
            vibrate=payload.get("vibrate"),
        )


def build_push_payload(notification_type: NotificationType, data: dict[str, Any]) -> PushPayload:
    """Web Push notification for one event."""
    kind = notification_type.value
    task_id = data.get("taskId")
    task = _v(data, "taskNumber")
    task_data = {"type": kind, "taskId": task_id, "url": _path("/tasks/", task_id)}
    leave_id = data.get("leaveRequestId")
    leave_data = {"type": kind, "leaveRequestId": leave_id, "url": _path("/leaves/", leave_id)}
    project_id = data.get("projectId")
    project_data = {"type": kind, "projectId": project_id, "url": _path("/projects/", project_id)}

    match notification_type:
        case T.TASK_ASSIGNED:
            return PushPayload(
                title="Task Assigned",
                body=f"You have been assigned to {task or 'a task'}: {_v(data, 'taskTitle')}",
                icon="/icons/task.png",
                tag=f"task-{task_id}",
                data=task_data,
                actions=[
                    {"action": "view", "title": "View Task"},
                    {"action": "dismiss", "title": "Dismiss"},
                ],
            )
        case T.TASK_MENTIONED:
            return PushPayload(
                title="You were mentioned",
                body=f"{_v(data, 'mentionedBy', 'Someone')} mentioned you in {task or 'a task'}",
                icon="/icons/mention.png",
                tag=f"mention-{data.get('commentId') or task_id}",
                data={**task_data, "commentId": data.get("commentId")},
            )
        case T.TASK_COMMENTED:
            return PushPayload(
                title="New Comment",
                body=f"{_v(data, 'commentedBy', 'Someone')} commented on {task or 'a task'}",
                icon="/icons/comment.png",
                tag=f"comment-{task_id}",
                data=task_data,
            )
        case T.TASK_STATUS_CHANGED:
            return PushPayload(
                title="Task Status Updated",
                body=f"{task or 'Task'} moved to {_v(data, 'newStatus', 'new status')}",
                icon="/icons/status.png",
                tag=f"status-{task_id}",
                data=task_data,
                silent=True,
            )
        case T.TASK_DUE_SOON:
            return PushPayload(
                title="⏰ Task Due Soon",
                body=f"{task or 'Task'}: {_v(data, 'taskTitle')} is due {_v(data, 'dueIn', 'soon')}",
                icon="/icons/clock.png",
                tag=f"due-{task_id}",
                data=task_data,
                require_interaction=True,
            )
        case T.TASK_OVERDUE:
            return PushPayload(
                title="🚨 Task Overdue",
                body=f"{task or 'Task'}: {_v(data, 'taskTitle')} is overdue!",
                icon="/icons/alert.png",
                tag=f"overdue-{task_id}",
                data=task_data,
                require_interaction=True,
                vibrate=[200, 100, 200],
            )
        case T.LEAVE_REQUESTED:
            return PushPayload(
                title="Leave Request",
                body=f"{_v(data, 'employeeName', 'An employee')} has requested {_v(data, 'leaveType', 'leave')}",
                icon="/icons/leave.png",
                data=leave_data,
            )
        case T.LEAVE_APPROVED:
            return PushPayload(
                title="✅ Leave Approved",
                body=f"Your {_v(data, 'leaveType', 'leave')} request has been approved",
                icon="/icons/approved.png",
                data=leave_data,
            )
        case T.LEAVE_REJECTED:
            return PushPayload(
                title="❌ Leave Rejected",
                body=f"Your {_v(data, 'leaveType', 'leave')} request has been rejected",
                icon="/icons/rejected.png",
                data=leave_data,
            )
        case T.LEAVE_CANCELLED:
            return PushPayload(
                title="Leave Cancelled",
                body="Leave request has been cancelled",
                icon="/icons/cancelled.png",
                data={"type": kind, "leaveRequestId": leave_id},
            )
        case T.ATTENDANCE_REMINDER:
            return PushPayload(
                title="⏰ Check-in Reminder",
                body="Don't forget to check in for today!",
                icon="/icons/clock.png",
                tag="attendance-reminder",
                data={"type": kind, "url": "/attendance"},
            )
        case T.ATTENDANCE_MISSED:
            return PushPayload(
                title="⚠️ Missed Check-in",
                body="You missed check-in for today. Please contact HR if needed.",
                icon="/icons/warning.png",
                tag="attendance-missed",
                data={"type": kind, "url": "/attendance"},
            )
        case T.PROJECT_ADDED:
            return PushPayload(
                title="Added to Project",
                body=f"You've been added to {_v(data, 'projectName', 'a project')}",
                icon="/icons/project.png",
                data=project_data,
            )
        case T.PROJECT_MILESTONE:
            return PushPayload(
                title="🎯 Milestone Reached",
                body=f"{_v(data, 'projectName', 'Project')}: {_v(data, 'milestoneName', 'Milestone')} completed!",
                icon="/icons/milestone.png",
                data=project_data,
            )
        case T.TIMESHEET_REMINDER:
            return PushPayload(
                title="📝 Timesheet Reminder",
                body="Please submit your timesheet for this week",
                icon="/icons/timesheet.png",
                tag="timesheet-reminder",
                data={"type": kind, "url": "/timesheets"},
            )
        case T.TIMESHEET_APPROVED:
            return PushPayload(
                title="✅ Timesheet Approved",
                body=f"Your timesheet for {_v(data, 'period', 'this period')} has been approved",
                icon="/icons/approved.png",
                data={"type": kind, "url": "/timesheets"},
            )
        case T.TIMESHEET_REJECTED:
            return PushPayload(
                title="❌ Timesheet Rejected",
                body=f"Your timesheet needs revision: {_v(data, 'reason', 'See comments')}",
                icon="/icons/rejected.png",
                data={"type": kind, "url": "/timesheets"},
            )
        case T.SYSTEM_ANNOUNCEMENT:
            return PushPayload(
                title=_v(data, "title", "📢 Announcement"),
                body=_first(data, "message", "body"),
                icon="/icons/announcement.png",
                tag="announcement",
                data={"type": kind, "announcementId": data.get("announcementId"), "url": data.get("url")},
            )
        case T.SYSTEM_MAINTENANCE:
            return PushPayload(
                title="🔧 Scheduled Maintenance",
                body=_v(data, "message", "System maintenance scheduled. Please save your work."),
                icon="/icons/maintenance.png",
                tag="maintenance",
                data={"type": kind},
                require_interaction=True,
            )
        case T.EMPLOYEE_ONBOARDED:
            employee_id = data.get("employeeId")
            return PushPayload(
                title="👋 New Team Member",
                body=f"Welcome {_v(data, 'employeeName', 'new colleague')} to the team!",
                icon="/icons/welcome.png",
                data={"type": kind, "employeeId": employee_id, "url": _path("/employees/", employee_id)},
            )
        case T.EMPLOYEE_BIRTHDAY:
            return PushPayload(
                title="🎂 Birthday Today",
                body=f"It's {_v(data, 'employeeName', 'a colleague')}'s birthday! Wish them well!",
                icon="/icons/birthday.png",
                data={"type": kind, "employeeId": data.get("employeeId")},
            )
        case T.EMPLOYEE_ANNIVERSARY:
            return PushPayload(
                title="🎉 Work Anniversary",
                body=f"{_v(data, 'employeeName', 'A colleague')} celebrates {_v(data, 'years')} years with us!",
                icon="/icons/anniversary.png",
                data={"type": kind, "employeeId": data.get("employeeId")},
            )
        case _:
            assert_never(notification_type)


# =============================================================================
# Email
# =============================================================================


def email_subject(notification_type: NotificationType, data: dict[str, Any]) -> str:
    task = _v(data, "taskNumber")
    name = _v(data, "employeeName")

    match notification_type:
        case T.TASK_ASSIGNED:
            return f"Task Assigned: {_first(data, 'taskNumber', 'taskTitle', default='New Task')}"
        case T.TASK_MENTIONED:
            return f"You were mentioned in {task or 'a task'}"
        case T.TASK_COMMENTED:
            return f"New comment on {task or 'a task'}"
        case T.TASK_STATUS_CHANGED:
            return f"Task {task} status changed to {_v(data, 'newStatus', 'updated')}"
        case T.TASK_DUE_SOON:
            return f"Task {task} is due soon"
        case T.TASK_OVERDUE:
            return f"Task {task} is overdue"
        case T.LEAVE_REQUESTED:
            return "New Leave Request"
        case T.LEAVE_APPROVED:
            return "Your Leave Request was Approved"
        case T.LEAVE_REJECTED:
            return "Your Leave Request was Rejected"
        case T.LEAVE_CANCELLED:
            return "Leave Request Cancelled"
        case T.ATTENDANCE_REMINDER:
            return "Attendance Reminder"
        case T.ATTENDANCE_MISSED:
            return "Missed Attendance Alert"
        case T.PROJECT_ADDED:
            return f"You've been added to project: {_v(data, 'projectName', 'New Project')}"
        case T.PROJECT_MILESTONE:
            return f"Milestone reached: {_v(data, 'milestoneName', 'Project Milestone')}"
        case T.TIMESHEET_REMINDER:
            return "Timesheet Submission Reminder"
        case T.TIMESHEET_APPROVED:
            return "Your Timesheet was Approved"
        case T.TIMESHEET_REJECTED:
            return "Your Timesheet was Rejected"
        case T.SYSTEM_ANNOUNCEMENT:
            return _v(data, "title", "System Announcement")
        case T.SYSTEM_MAINTENANCE:
            return "Scheduled Maintenance Notice"
        case T.EMPLOYEE_ONBOARDED:
            return f"Welcome {name} to the team!"
        case T.EMPLOYEE_BIRTHDAY:
            return f"🎂 Happy Birthday {name}!"
        case T.EMPLOYEE_ANNIVERSARY:
            return f"🎉 Work Anniversary: {name}"
        case _:
            assert_never(notification_type)


_FALLBACK_LAYOUT = """\
<html>
  <body style="font-family: Arial, sans-serif; color: #1f2933;">
    <h2>{{ header_title }}</h2>
    <p>{{ body }}</p>
    {% if action_url %}
    <p><a href="{{ action_url }}">{{ action_text }}</a></p>
    {% endif %}
    <p style="font-size: 12px; color: #7b8794;">This is an automated message. Please do not reply.</p>
  </body>
</html>
"""


@dataclass(frozen=True, slots=True)
class EmailContent:
    subject: str
    html: str
    text: str


class EmailContentBuilder:
    """Renders subject, HTML and text bodies for a notification email.

    Lookup order: ``{type with . replaced by /}.html``, then ``default.html``,
    then a built-in layout. Compiled templates are cached by the renderer.
    """

    def __init__(self, renderer: TemplateRenderer, platform_url: str) -> None:
        self.renderer = renderer
        self.platform_url = platform_url.rstrip("/")

    @staticmethod
    def template_name(notification_type: NotificationType) -> str:
        return notification_type.value.replace(".", "/", 1) + ".html"

    def build(
        self,
        notification_type: NotificationType,
        data: dict[str, Any],
        recipient_name: str | None = None,
    ) -> EmailContent:
        subject = email_subject(notification_type, data)
        summary = build_in_app_content(notification_type, data)
        action_url = self._absolute(_first(data, "actionUrl", "url"))

        context = {
            **data,
            "notificationType": notification_type.value,
            "subject": subject,
            "body": summary.message,
            "recipient_name": recipient_name,
            "action_url": action_url,
            "action_text": _v(data, "actionText", "View Details"),
            "header_title": HEADER_TITLE,
            "platform_url": self.platform_url,
            "year": datetime.now(UTC).year,
        }

        html = self.renderer.render(self.template_name(notification_type), context)
        if html is None:
            html = self.renderer.render("default.html", context)
        if html is None:
            logger.debug(
                "Using built-in email layout",
                extra={"notification_type": notification_type.value},
            )
            html = self.renderer.render_string(_FALLBACK_LAYOUT, context)

        return EmailContent(subject=subject, html=html, text=html_to_text(html))

    def _absolute(self, url: str) -> str | None:
        if not url:
            return None
        if url.startswith(("http://", "https://")):
            return url
        return f"{self.platform_url}/{url.lstrip('/')}"
