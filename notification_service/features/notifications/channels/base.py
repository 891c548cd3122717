"""Common contract for channel senders."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from notification_service.features.notifications.types import Channel


class FailureKind(StrEnum):
    """How a failed delivery should be treated.

    - TRANSIENT: retry with backoff (timeouts, 5xx, connection errors)
    - PERMANENT: never retry (hard bounce, subscription gone)
    - CONFIGURATION: the channel itself is not usable (missing keys, bad credentials)
    """

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    CONFIGURATION = "configuration"


@dataclass
class DeliveryResult:
    """Result of a channel delivery attempt.

    Attributes:
        success: Whether delivery succeeded
        failure: Failure classification when unsuccessful
        error_message: Error description if failed
        status_code: Provider status (HTTP or SMTP reply code) if known
        response_time_ms: Time taken for delivery in milliseconds
        metadata: Channel-specific metadata
    """

    success: bool
    failure: FailureKind | None = None
    error_message: str | None = None
    status_code: int | None = None
    response_time_ms: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, response_time_ms: int | None = None, **metadata: Any) -> DeliveryResult:
        return cls(success=True, response_time_ms=response_time_ms, metadata=metadata)

    @classmethod
    def fail(
        cls,
        failure: FailureKind,
        error_message: str,
        *,
        status_code: int | None = None,
        response_time_ms: int | None = None,
    ) -> DeliveryResult:
        return cls(
            success=False,
            failure=failure,
            error_message=error_message,
            status_code=status_code,
            response_time_ms=response_time_ms,
        )

    @property
    def retryable(self) -> bool:
        return not self.success and self.failure is FailureKind.TRANSIENT


class ChannelSender(Protocol):
    """A sender the delivery queue can hand a job payload to.

    Senders report failures through ``DeliveryResult`` rather than raising.
    """

    channel: Channel

    async def deliver(self, payload: dict[str, Any]) -> DeliveryResult:
        """Deliver a queued job payload (the JSON form built by the dispatcher)."""
        ...
