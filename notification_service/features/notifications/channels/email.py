"""Email channel sender.

Maps provider outcomes onto the failure taxonomy:

- authentication failure: configuration
- recipients refused or a 5xx reply: permanent (hard bounce)
- connection errors, timeouts and 4xx replies: transient
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from notification_service.core.settings import get_email_settings
from notification_service.features.notifications.channels.base import DeliveryResult, FailureKind
from notification_service.features.notifications.metrics import notification_send_duration_seconds
from notification_service.features.notifications.types import Channel
from notification_service.infra.email import EmailMessage, get_email_provider

if TYPE_CHECKING:
    from notification_service.core.settings import EmailSettings
    from notification_service.infra.email import BaseEmailProvider, EmailDeliveryResult

logger = logging.getLogger(__name__)


def classify(result: EmailDeliveryResult) -> FailureKind:
    match result.error_code:
        case "AUTH_FAILED":
            return FailureKind.CONFIGURATION
        case "RECIPIENTS_REFUSED":
            return FailureKind.PERMANENT
        case "SMTP_ERROR" if result.smtp_code is not None and result.smtp_code >= 500:
            return FailureKind.PERMANENT
        case _:
            return FailureKind.TRANSIENT


class EmailSender:
    """Sends rendered messages through the configured email provider."""

    channel = Channel.EMAIL

    def __init__(
        self,
        settings: EmailSettings | None = None,
        provider: BaseEmailProvider | None = None,
    ) -> None:
        self._settings = settings or get_email_settings()
        self._provider = provider or get_email_provider(self._settings)

    async def send(self, message: EmailMessage) -> DeliveryResult:
        if not self._settings.enabled:
            return DeliveryResult.fail(FailureKind.CONFIGURATION, "Email channel is disabled")

        start = time.perf_counter()
        result = await self._provider.send(message)
        elapsed = time.perf_counter() - start
        notification_send_duration_seconds.labels(channel=self.channel.value).observe(elapsed)
        elapsed_ms = int(elapsed * 1000)

        if result.success:
            return DeliveryResult.ok(
                response_time_ms=elapsed_ms,
                message_id=result.message_id,
                provider=result.provider,
            )

        kind = classify(result)
        logger.warning(
            "Email delivery failed",
            extra={
                "provider": result.provider,
                "error_code": result.error_code,
                "smtp_code": result.smtp_code,
                "failure": kind.value,
                "error": result.error,
            },
        )
        return DeliveryResult.fail(
            kind,
            result.error or "Email delivery failed",
            status_code=result.smtp_code,
            response_time_ms=elapsed_ms,
        )

    async def deliver(self, payload: dict[str, Any]) -> DeliveryResult:
        return await self.send(EmailMessage.model_validate(payload["message"]))
