"""Email delivery settings for SMTP configuration.

Environment variables use EMAIL_ prefix.
Example: EMAIL_BACKEND=smtp, EMAIL_SMTP_HOST=smtp.example.com
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import EmailStr, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_TEMPLATE_DIR = Path(__file__).resolve().parents[2] / "features" / "notifications" / "templates" / "email"


class EmailSettings(BaseSettings):
    """Email channel configuration.

    Supports two backends:
    - smtp: Standard SMTP/SMTPS delivery through aiosmtplib
    - console: Log emails instead of sending them (development)
    """

    enabled: bool = Field(
        default=True,
        description="Enable the email channel",
    )
    backend: Literal["smtp", "console"] = Field(
        default="console",
        description="Email backend: smtp (production), console (dev)",
    )

    # SMTP Configuration
    smtp_host: str = Field(
        default="localhost",
        min_length=1,
        max_length=255,
        description="SMTP server hostname",
    )
    smtp_port: int = Field(
        default=587,
        ge=1,
        le=65535,
        description="SMTP server port (587 for TLS, 465 for SSL, 25 for plain)",
    )
    smtp_username: str | None = Field(
        default=None,
        max_length=255,
        description="SMTP authentication username",
    )
    smtp_password: SecretStr | None = Field(
        default=None,
        description="SMTP authentication password",
    )

    # TLS/SSL Configuration
    use_tls: bool = Field(
        default=True,
        description="Use STARTTLS (port 587). Set False for SSL (port 465) or plain (port 25)",
    )
    use_ssl: bool = Field(
        default=False,
        description="Use implicit SSL/TLS (port 465). Mutually exclusive with use_tls",
    )
    validate_certs: bool = Field(
        default=True,
        description="Validate SSL/TLS certificates",
    )

    # Sender Configuration
    default_from_email: EmailStr = Field(
        default="noreply@oms.local",
        description="Default sender email address",
    )
    default_from_name: str = Field(
        default="Office Management System",
        max_length=100,
        description="Default sender display name",
    )

    timeout: float = Field(
        default=30.0,
        ge=1.0,
        le=300.0,
        description="SMTP connection timeout in seconds",
    )

    # Template Configuration
    template_dir: Path = Field(
        default=DEFAULT_TEMPLATE_DIR,
        description="Directory containing Jinja2 email templates",
    )
    platform_url: str = Field(
        default="http://localhost:3000",
        description="Public URL of the web application, used for links in emails",
    )

    @model_validator(mode="after")
    def validate_tls_ssl_exclusive(self) -> EmailSettings:
        """Ensure TLS and SSL are mutually exclusive."""
        if self.use_tls and self.use_ssl:
            msg = "use_tls and use_ssl are mutually exclusive"
            raise ValueError(msg)
        return self

    @model_validator(mode="after")
    def validate_smtp_auth(self) -> EmailSettings:
        """Require username and password together."""
        if (self.smtp_username is None) != (self.smtp_password is None):
            msg = "Both smtp_username and smtp_password must be provided together"
            raise ValueError(msg)
        return self

    model_config = SettingsConfigDict(
        env_prefix="EMAIL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @property
    def requires_auth(self) -> bool:
        """Check if SMTP authentication is configured."""
        return self.smtp_username is not None and self.smtp_password is not None

    def get_smtp_url(self) -> str:
        """Get SMTP URL for debugging (without password)."""
        scheme = "smtps" if self.use_ssl else "smtp"
        auth = f"{self.smtp_username}@" if self.smtp_username else ""
        return f"{scheme}://{auth}{self.smtp_host}:{self.smtp_port}"
