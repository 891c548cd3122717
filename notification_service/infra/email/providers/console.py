"""Console email provider for development.

Logs emails instead of sending them. Always succeeds.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
import uuid

from .base import BaseEmailProvider, EmailDeliveryResult

if TYPE_CHECKING:
    from notification_service.infra.email.schemas import EmailMessage

logger = logging.getLogger(__name__)

_PREVIEW_CHARS = 500


class ConsoleProvider(BaseEmailProvider):
    """Writes each message to the log at INFO level."""

    @property
    def provider_name(self) -> str:
        return "console"

    async def _do_send(self, message: EmailMessage) -> EmailDeliveryResult:
        message_id = f"console-{uuid.uuid4()}"
        body = message.body_text or message.body_html or ""

        logger.info(
            "EMAIL (console backend)",
            extra={
                "message_id": message_id,
                "from": self.sender(message),
                "to": message.to,
                "subject": message.subject,
                "body_preview": body[:_PREVIEW_CHARS],
                "truncated": len(body) > _PREVIEW_CHARS,
            },
        )

        return EmailDeliveryResult.success_result(
            message_id=message_id,
            provider=self.provider_name,
            recipients=list(message.to),
            metadata={"mode": "development"},
        )


__all__ = ["ConsoleProvider"]
