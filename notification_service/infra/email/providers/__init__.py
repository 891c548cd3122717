"""Email provider backends."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import BaseEmailProvider, EmailDeliveryResult
from .console import ConsoleProvider
from .smtp import SMTPProvider

if TYPE_CHECKING:
    from notification_service.core.settings import EmailSettings


def get_email_provider(settings: EmailSettings) -> BaseEmailProvider:
    """Build the provider selected by ``settings.backend``."""
    if settings.backend == "smtp":
        return SMTPProvider(settings)
    return ConsoleProvider(settings)


__all__ = [
    "BaseEmailProvider",
    "ConsoleProvider",
    "EmailDeliveryResult",
    "SMTPProvider",
    "get_email_provider",
]
