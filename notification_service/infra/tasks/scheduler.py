"""APScheduler integration for scheduled task execution.

- APScheduler triggers work on a schedule (interval, cron)
- Taskiq executes it in a worker when a broker is configured;
  otherwise the job coroutine runs inside the API process

Architecture:
    APScheduler (in-process) -> Taskiq kiq() -> Redis -> Taskiq Worker
    APScheduler (in-process) -> job coroutine           (no broker)
"""

from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from notification_service.core.settings import get_queue_settings, get_task_settings
from notification_service.infra.tasks.broker import broker
from notification_service.workers.notifications import tasks

logger = logging.getLogger(__name__)

# Initialize APScheduler (runs in same process as FastAPI)
scheduler = AsyncIOScheduler(
    timezone="UTC",
    job_defaults={
        "coalesce": True,  # Combine multiple pending executions into one
        "max_instances": 1,  # Only one instance of each job at a time
        "misfire_grace_time": 60,  # Allow 60s delay before considering job missed
    },
)


# =============================================================================
# Job wrappers
# =============================================================================
# APScheduler requires callables that properly await either the Taskiq kiq()
# call or the in-process coroutine.


async def _schedule_delivery_queue() -> None:
    if broker is not None:
        await tasks.process_delivery_queue_task.kiq()
    else:
        await tasks.process_delivery_queue()


async def _schedule_in_app_cleanup() -> None:
    if broker is not None:
        await tasks.cleanup_in_app_notifications_task.kiq()
    else:
        await tasks.cleanup_in_app_notifications()


def setup_scheduled_jobs() -> None:
    """Register all scheduled jobs with APScheduler.

    Call during application startup AFTER the Taskiq broker is initialized.
    """
    task_settings = get_task_settings()
    if not task_settings.scheduler_enabled:
        logger.info("Scheduler disabled (TASK_SCHEDULER_ENABLED=false), skipping job scheduling")
        return

    logger.info(
        "Setting up scheduled jobs with APScheduler",
        extra={"mode": "taskiq" if broker is not None else "in-process"},
    )

    # Drain the delivery queue every few seconds
    scheduler.add_job(
        func=_schedule_delivery_queue,
        trigger=IntervalTrigger(seconds=get_queue_settings().process_interval_seconds),
        id="process_delivery_queue",
        name="Process delivery queue",
        replace_existing=True,
    )

    # Remove stale in-app notifications daily
    scheduler.add_job(
        func=_schedule_in_app_cleanup,
        trigger=CronTrigger(hour=task_settings.cleanup_hour, minute=0),
        id="cleanup_in_app_notifications",
        name="Cleanup in-app notifications",
        replace_existing=True,
    )

    logger.info(f"Scheduled {len(scheduler.get_jobs())} jobs")


async def start_scheduler() -> None:
    """Start the APScheduler.

    Call during application startup after setup_scheduled_jobs().
    """
    if not scheduler.running:
        logger.info("Starting APScheduler")
        scheduler.start()
        logger.info(f"APScheduler started with {len(scheduler.get_jobs())} jobs")
    else:
        logger.warning("APScheduler is already running")


async def stop_scheduler() -> None:
    """Stop the APScheduler gracefully.

    Call during application shutdown.
    """
    if scheduler.running:
        logger.info("Stopping APScheduler")
        scheduler.shutdown(wait=True)
        logger.info("APScheduler stopped")
    else:
        logger.debug("APScheduler is not running")

