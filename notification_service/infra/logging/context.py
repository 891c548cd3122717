"""Context management for structured logging.

Request handlers and queue workers bind identifiers (request_id, tenant_id,
user_id) once with ``set_log_context``; every record emitted in the
same async task then carries them through ``ContextInjectingFilter``.
"""

from __future__ import annotations

from contextvars import ContextVar
import logging
from typing import Any

# Each async task gets its own copy automatically
_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})


def set_log_context(**kwargs: Any) -> None:
    """Add fields to the logging context of the current task.

    Example:
        ```python
        set_log_context(tenant_id="acme", job_id="email:1700000000000:ab12cd")
        logger.info("Delivering job")  # Includes tenant_id and job_id
        ```
    """
    current = _log_context.get().copy()
    current.update(kwargs)
    _log_context.set(current)


def get_log_context() -> dict[str, Any]:
    """Get a copy of the current logging context."""
    return _log_context.get().copy()


def clear_log_context() -> None:
    """Clear all logging context for the current task.

    The request middleware calls this when a request finishes.
    """
    _log_context.set({})


class ContextInjectingFilter(logging.Filter):
    """Logging filter that copies the contextvars log context onto each LogRecord.

    Installed on the root logger by ``configure_logging`` so formatters (the
    JSONFormatter in particular) see the fields without any call-site changes.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """Inject context into log record.

        Args:
            record: The log record to enhance with context.

        Returns:
            True (always allow the record to be logged).
        """
        for key, value in _log_context.get().items():
            # Don't overwrite existing attributes
            if not hasattr(record, key):
                setattr(record, key, value)
        return True

