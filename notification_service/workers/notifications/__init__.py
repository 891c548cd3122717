"""Notification background tasks: delivery queue processing and in-app cleanup."""

from notification_service.workers.notifications.tasks import (
    cleanup_in_app_notifications,
    process_delivery_queue,
)

__all__ = ["cleanup_in_app_notifications", "process_delivery_queue"]
