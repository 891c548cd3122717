"""Logging infrastructure.

Provides structured logging with:
- JSONL format with OpenTelemetry trace correlation
- Automatic context injection (request_id, tenant_id, job_id, ...)
- QueueHandler + QueueListener for non-blocking I/O
- Lazy evaluation for expensive debug messages

Basic usage:
    import logging

    from notification_service.infra.logging import get_lazy_logger, set_log_context

    logger = logging.getLogger(__name__)
    set_log_context(tenant_id="acme")
    logger.info("Dispatching event")  # Includes tenant_id

    lazy_logger = get_lazy_logger(__name__)
    lazy_logger.debug(lambda: f"payload={payload!r}")
"""

from notification_service.infra.logging.config import configure_logging, setup_logging, shutdown
from notification_service.infra.logging.context import (
    ContextInjectingFilter,
    clear_log_context,
    get_log_context,
    set_log_context,
)
from notification_service.infra.logging.formatters import JSONFormatter
from notification_service.infra.logging.lazy import (
    LazyLoggerAdapter,
    get_lazy_logger,
)

__all__ = [
    "ContextInjectingFilter",
    "JSONFormatter",
    "LazyLoggerAdapter",
    "clear_log_context",
    "configure_logging",
    "get_lazy_logger",
    "get_log_context",
    "set_log_context",
    "setup_logging",
    "shutdown",
]
