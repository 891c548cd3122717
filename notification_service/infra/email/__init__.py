"""Email infrastructure: provider backends and Jinja2 template rendering."""

from notification_service.infra.email.providers import (
    BaseEmailProvider,
    EmailDeliveryResult,
    get_email_provider,
)
from notification_service.infra.email.schemas import EmailMessage
from notification_service.infra.email.templates import TemplateRenderer, html_to_text

__all__ = [
    "BaseEmailProvider",
    "EmailDeliveryResult",
    "EmailMessage",
    "TemplateRenderer",
    "get_email_provider",
    "html_to_text",
]
