"""Prometheus metrics for the notification engine.

Covers the dispatch fan-out, per-channel deliveries, preference suppression,
in-app eviction and the Redis delivery queue.

Usage:
    from notification_service.features.notifications.metrics import (
        notification_deliveries_total,
    )

    notification_deliveries_total.labels(channel="push", outcome="sent").inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# =============================================================================
# Dispatch
# =============================================================================

notifications_dispatched_total = Counter(
    "notifications_dispatched_total",
    "Total number of notification events dispatched",
    labelnames=["notification_type"],
)
"""
Counter for dispatched events (one per event, not per recipient).

Labels:
    notification_type: Notification type (task.assigned, leave.approved, ...)

Example:
    notifications_dispatched_total.labels(notification_type="task.assigned").inc()
"""

notification_deliveries_total = Counter(
    "notification_deliveries_total",
    "Total number of per-recipient deliveries by channel and outcome",
    labelnames=["channel", "outcome"],
)
"""
Counter for per-recipient delivery outcomes.

Labels:
    channel: email, push or in_app
    outcome: sent, failed, queued or created

Example:
    notification_deliveries_total.labels(channel="email", outcome="queued").inc()
"""

notifications_suppressed_total = Counter(
    "notifications_suppressed_total",
    "Total number of recipients filtered out by preferences",
    labelnames=["channel", "reason"],
)
"""
Counter for preference suppression.

Labels:
    channel: email, push or in_app
    reason: quiet_hours, channel_disabled, digest_never or type_not_allowed
"""

notification_send_duration_seconds = Histogram(
    "notification_send_duration_seconds",
    "Duration of a single channel send",
    labelnames=["channel"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)
"""
Histogram of channel send latency.

Labels:
    channel: email or push

Example:
    notification_send_duration_seconds.labels(channel="push").observe(0.42)
"""

# =============================================================================
# In-app store
# =============================================================================

in_app_evictions_total = Counter(
    "in_app_notification_evictions_total",
    "Total number of in-app notifications evicted by the per-user cap",
)
"""Counter for rows removed to keep a user under the in-app cap."""

# =============================================================================
# Delivery queue
# =============================================================================

delivery_jobs_total = Counter(
    "delivery_queue_jobs_total",
    "Total number of delivery queue job transitions",
    labelnames=["channel", "outcome"],
)
"""
Counter for queue job transitions.

Labels:
    channel: email or push
    outcome: enqueued, completed, retried or failed

Example:
    delivery_jobs_total.labels(channel="email", outcome="retried").inc()
"""

delivery_retries_total = Counter(
    "delivery_queue_retries_total",
    "Total number of delivery retries scheduled",
    labelnames=["channel", "attempt"],
)
"""
Counter for retries, labelled by the attempt that failed.

Labels:
    channel: email or push
    attempt: attempt number (1, 2, ...)
"""

delivery_queue_depth = Gauge(
    "delivery_queue_depth",
    "Current number of jobs per delivery queue structure",
    labelnames=["state"],
)
"""
Gauge for queue depth, refreshed by each processing tick.

Labels:
    state: queued, processing, scheduled or failed
"""
