"""SMTP email provider using aiosmtplib.

Supports STARTTLS (587), implicit TLS (465) and plain (25) connections with
optional authentication. Errors are reported as failure results carrying an
error code and, where the server replied, the SMTP reply code.
"""

from __future__ import annotations

from datetime import UTC, datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
import logging
import ssl
from typing import TYPE_CHECKING
import uuid

import aiosmtplib

from .base import BaseEmailProvider, EmailDeliveryResult

if TYPE_CHECKING:
    from notification_service.core.settings import EmailSettings
    from notification_service.infra.email.schemas import EmailMessage

logger = logging.getLogger(__name__)


class SMTPProvider(BaseEmailProvider):
    """SMTP email provider using native async aiosmtplib.

    Example:
        provider = SMTPProvider(get_email_settings())
        result = await provider.send(message)
    """

    def __init__(self, settings: EmailSettings) -> None:
        super().__init__(settings)
        logger.info(
            "SMTP provider initialized",
            extra={
                "smtp_url": settings.get_smtp_url(),
                "use_tls": settings.use_tls,
                "use_ssl": settings.use_ssl,
            },
        )

    @property
    def provider_name(self) -> str:
        return "smtp"

    def _create_ssl_context(self) -> ssl.SSLContext | None:
        if not (self._settings.use_tls or self._settings.use_ssl):
            return None

        context = ssl.create_default_context()
        if not self._settings.validate_certs:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    async def _do_send(self, message: EmailMessage) -> EmailDeliveryResult:
        settings = self._settings
        mime_message = self._build_mime_message(message)
        message_id = mime_message["Message-ID"]

        smtp = aiosmtplib.SMTP(
            hostname=settings.smtp_host,
            port=settings.smtp_port,
            use_tls=settings.use_ssl,
            start_tls=settings.use_tls,
            tls_context=self._create_ssl_context(),
            timeout=settings.timeout,
        )

        try:
            async with smtp:
                if settings.requires_auth and settings.smtp_password is not None:
                    await smtp.login(
                        settings.smtp_username or "",
                        settings.smtp_password.get_secret_value(),
                    )
                errors, _response = await smtp.send_message(mime_message)
        except aiosmtplib.SMTPAuthenticationError as e:
            return EmailDeliveryResult.failure_result(
                provider=self.provider_name,
                error=f"SMTP authentication failed: {e}",
                error_code="AUTH_FAILED",
                smtp_code=e.code,
            )
        except aiosmtplib.SMTPRecipientsRefused as e:
            return EmailDeliveryResult.failure_result(
                provider=self.provider_name,
                error=f"All recipients refused: {e}",
                error_code="RECIPIENTS_REFUSED",
                recipients_rejected=list(message.to),
            )
        except aiosmtplib.SMTPTimeoutError as e:
            return EmailDeliveryResult.failure_result(
                provider=self.provider_name,
                error=f"SMTP timeout: {e}",
                error_code="TIMEOUT",
            )
        except (aiosmtplib.SMTPConnectError, aiosmtplib.SMTPServerDisconnected) as e:
            return EmailDeliveryResult.failure_result(
                provider=self.provider_name,
                error=f"SMTP connection failed: {e}",
                error_code="CONNECTION_ERROR",
            )
        except aiosmtplib.SMTPResponseException as e:
            return EmailDeliveryResult.failure_result(
                provider=self.provider_name,
                error=f"SMTP error: {e}",
                error_code="SMTP_ERROR",
                smtp_code=e.code,
            )
        except aiosmtplib.SMTPException as e:
            return EmailDeliveryResult.failure_result(
                provider=self.provider_name,
                error=f"SMTP error: {e}",
                error_code="SMTP_ERROR",
            )

        rejected = list(errors.keys())
        if rejected:
            logger.warning(
                "Some SMTP recipients rejected",
                extra={
                    "message_id": message_id,
                    "rejected": rejected,
                    "errors": {k: str(v) for k, v in errors.items()},
                },
            )

        accepted = [r for r in message.to if r not in errors]
        if not accepted:
            return EmailDeliveryResult.failure_result(
                provider=self.provider_name,
                error="All recipients refused",
                error_code="RECIPIENTS_REFUSED",
                recipients_rejected=rejected,
            )

        return EmailDeliveryResult(
            success=True,
            message_id=message_id,
            provider=self.provider_name,
            recipients_accepted=accepted,
            recipients_rejected=rejected,
            metadata={"host": settings.smtp_host, "port": settings.smtp_port},
        )

    def _build_mime_message(self, message: EmailMessage) -> MIMEMultipart:
        mime_msg = MIMEMultipart("alternative")
        mime_msg["From"] = self.sender(message)
        mime_msg["To"] = ", ".join(message.to)
        mime_msg["Subject"] = message.subject
        mime_msg["Message-ID"] = f"<{uuid.uuid4()}@{self._settings.smtp_host}>"
        mime_msg["Date"] = datetime.now(UTC).strftime("%a, %d %b %Y %H:%M:%S +0000")

        for key, value in message.headers.items():
            mime_msg[key] = value

        if message.body_text:
            mime_msg.attach(MIMEText(message.body_text, "plain", "utf-8"))
        if message.body_html:
            mime_msg.attach(MIMEText(message.body_html, "html", "utf-8"))

        return mime_msg


__all__ = ["SMTPProvider"]
