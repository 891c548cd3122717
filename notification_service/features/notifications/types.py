"""Closed vocabularies of the notification engine.

``NotificationType`` is the single source of truth for what can be sent;
the catalogue below groups the types for the preferences UI.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import assert_never


class NotificationType(StrEnum):
    """Every notification the engine knows how to render."""

    TASK_ASSIGNED = "task.assigned"
    TASK_MENTIONED = "task.mentioned"
    TASK_COMMENTED = "task.commented"
    TASK_STATUS_CHANGED = "task.status_changed"
    TASK_DUE_SOON = "task.due_soon"
    TASK_OVERDUE = "task.overdue"
    LEAVE_REQUESTED = "leave.requested"
    LEAVE_APPROVED = "leave.approved"
    LEAVE_REJECTED = "leave.rejected"
    LEAVE_CANCELLED = "leave.cancelled"
    ATTENDANCE_REMINDER = "attendance.reminder"
    ATTENDANCE_MISSED = "attendance.missed"
    PROJECT_ADDED = "project.added"
    PROJECT_MILESTONE = "project.milestone"
    TIMESHEET_REMINDER = "timesheet.reminder"
    TIMESHEET_APPROVED = "timesheet.approved"
    TIMESHEET_REJECTED = "timesheet.rejected"
    SYSTEM_ANNOUNCEMENT = "system.announcement"
    SYSTEM_MAINTENANCE = "system.maintenance"
    EMPLOYEE_ONBOARDED = "employee.onboarded"
    EMPLOYEE_BIRTHDAY = "employee.birthday"
    EMPLOYEE_ANNIVERSARY = "employee.anniversary"


class Channel(StrEnum):
    EMAIL = "email"
    PUSH = "push"
    IN_APP = "in_app"


class Priority(StrEnum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        """Sort rank, higher is more important."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {Priority.LOW: 0, Priority.NORMAL: 1, Priority.HIGH: 2, Priority.URGENT: 3}


class Digest(StrEnum):
    IMMEDIATE = "immediate"
    DAILY = "daily"
    WEEKLY = "weekly"
    NEVER = "never"


ALL_TYPES = "all"
"""Sentinel for an in-app allow-list that admits every type."""


@dataclass(frozen=True, slots=True)
class TypeInfo:
    type: NotificationType
    label: str
    description: str


def describe(notification_type: NotificationType) -> str:
    """Human description shown in the preferences screen."""
    match notification_type:
        case NotificationType.TASK_ASSIGNED:
            return "When you are assigned to a task"
        case NotificationType.TASK_MENTIONED:
            return "When you are mentioned in a task or comment"
        case NotificationType.TASK_COMMENTED:
            return "When someone comments on your task"
        case NotificationType.TASK_STATUS_CHANGED:
            return "When a task status changes"
        case NotificationType.TASK_DUE_SOON:
            return "Reminder for tasks due soon"
        case NotificationType.TASK_OVERDUE:
            return "Alert for overdue tasks"
        case NotificationType.LEAVE_REQUESTED:
            return "When someone requests leave (for managers)"
        case NotificationType.LEAVE_APPROVED:
            return "When your leave request is approved"
        case NotificationType.LEAVE_REJECTED:
            return "When your leave request is rejected"
        case NotificationType.LEAVE_CANCELLED:
            return "When a leave request is cancelled"
        case NotificationType.ATTENDANCE_REMINDER:
            return "Daily check-in reminder"
        case NotificationType.ATTENDANCE_MISSED:
            return "Alert for missed check-ins"
        case NotificationType.PROJECT_ADDED:
            return "When you are added to a project"
        case NotificationType.PROJECT_MILESTONE:
            return "When a project milestone is reached"
        case NotificationType.TIMESHEET_REMINDER:
            return "Timesheet submission reminder"
        case NotificationType.TIMESHEET_APPROVED:
            return "When your timesheet is approved"
        case NotificationType.TIMESHEET_REJECTED:
            return "When your timesheet is rejected"
        case NotificationType.SYSTEM_ANNOUNCEMENT:
            return "Important system announcements"
        case NotificationType.SYSTEM_MAINTENANCE:
            return "Scheduled maintenance notices"
        case NotificationType.EMPLOYEE_ONBOARDED:
            return "When new team members join"
        case NotificationType.EMPLOYEE_BIRTHDAY:
            return "Team member birthdays"
        case NotificationType.EMPLOYEE_ANNIVERSARY:
            return "Work anniversaries"
        case _:
            assert_never(notification_type)


def _label(notification_type: NotificationType) -> str:
    return notification_type.value.split(".", 1)[1].replace("_", " ").title()


def _info(*types: NotificationType) -> list[TypeInfo]:
    return [TypeInfo(t, _label(t), describe(t)) for t in types]


T = NotificationType

CATALOGUE: dict[str, list[TypeInfo]] = {
    "tasks": _info(
        T.TASK_ASSIGNED,
        T.TASK_MENTIONED,
        T.TASK_COMMENTED,
        T.TASK_STATUS_CHANGED,
        T.TASK_DUE_SOON,
        T.TASK_OVERDUE,
    ),
    "leave": _info(T.LEAVE_REQUESTED, T.LEAVE_APPROVED, T.LEAVE_REJECTED, T.LEAVE_CANCELLED),
    "attendance": _info(T.ATTENDANCE_REMINDER, T.ATTENDANCE_MISSED),
    "projects": _info(
        T.PROJECT_ADDED,
        T.PROJECT_MILESTONE,
        T.TIMESHEET_REMINDER,
        T.TIMESHEET_APPROVED,
        T.TIMESHEET_REJECTED,
    ),
    "system": _info(T.SYSTEM_ANNOUNCEMENT, T.SYSTEM_MAINTENANCE),
    "team": _info(T.EMPLOYEE_ONBOARDED, T.EMPLOYEE_BIRTHDAY, T.EMPLOYEE_ANNIVERSARY),
}

del T
