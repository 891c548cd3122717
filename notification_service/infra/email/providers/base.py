"""Base email provider contract.

Usage:
    class MyProvider(BaseEmailProvider):
        async def _do_send(self, message: EmailMessage) -> EmailDeliveryResult:
            ...
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
import logging
import time
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from notification_service.core.settings import EmailSettings
    from notification_service.infra.email.schemas import EmailMessage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailDeliveryResult:
    """Result of an email delivery attempt.

    Attributes:
        success: Whether delivery succeeded
        message_id: Provider-assigned message ID
        provider: Provider name (smtp, console)
        recipients_accepted: Accepted recipients
        recipients_rejected: Rejected recipients
        error: Error message if failed
        error_code: AUTH_FAILED, RECIPIENTS_REFUSED, CONNECTION_ERROR, TIMEOUT or SMTP_ERROR
        smtp_code: SMTP reply code when the server answered with one
        duration_ms: Time taken to send in milliseconds
        metadata: Provider-specific metadata
    """

    success: bool
    message_id: str | None
    provider: str
    recipients_accepted: list[str] = field(default_factory=list)
    recipients_rejected: list[str] = field(default_factory=list)
    error: str | None = None
    error_code: str | None = None
    smtp_code: int | None = None
    duration_ms: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.success and not self.error:
            object.__setattr__(self, "error", "Unknown error")

    @classmethod
    def success_result(
        cls,
        message_id: str,
        provider: str,
        recipients: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> EmailDeliveryResult:
        return cls(
            success=True,
            message_id=message_id,
            provider=provider,
            recipients_accepted=recipients or [],
            metadata=metadata or {},
        )

    @classmethod
    def failure_result(
        cls,
        provider: str,
        error: str,
        error_code: str,
        smtp_code: int | None = None,
        recipients_rejected: list[str] | None = None,
    ) -> EmailDeliveryResult:
        return cls(
            success=False,
            message_id=None,
            provider=provider,
            recipients_rejected=recipients_rejected or [],
            error=error,
            error_code=error_code,
            smtp_code=smtp_code,
        )


class BaseEmailProvider(ABC):
    """Common behaviour for email providers: sender defaults and timing."""

    def __init__(self, settings: EmailSettings) -> None:
        self._settings = settings

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Short provider identifier used in logs and results."""

    @abstractmethod
    async def _do_send(self, message: EmailMessage) -> EmailDeliveryResult:
        """Provider-specific delivery."""

    async def send(self, message: EmailMessage) -> EmailDeliveryResult:
        """Send a message and record how long the provider took."""
        start = time.perf_counter()
        result = await self._do_send(message)
        duration_ms = int((time.perf_counter() - start) * 1000)

        logger.debug(
            "Email provider call finished",
            extra={
                "provider": self.provider_name,
                "success": result.success,
                "error_code": result.error_code,
                "duration_ms": duration_ms,
            },
        )
        return replace(result, duration_ms=duration_ms)

    def sender(self, message: EmailMessage) -> str:
        """Formatted From header for a message."""
        from_email = message.from_email or str(self._settings.default_from_email)
        from_name = message.from_name or self._settings.default_from_name
        return f"{from_name} <{from_email}>" if from_name else from_email
