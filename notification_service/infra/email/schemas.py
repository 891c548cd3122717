"""Email message schema handed to providers."""

from __future__ import annotations

from pydantic import BaseModel, Field


class EmailMessage(BaseModel):
    """A rendered email ready for a provider.

    Serialisable so it can travel inside a delivery job payload.
    """

    to: list[str] = Field(min_length=1, description="Recipient addresses")
    subject: str = Field(max_length=998)
    body_html: str | None = None
    body_text: str | None = None
    from_email: str | None = None
    from_name: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
