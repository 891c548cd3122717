"""Web Push channel sender (VAPID, via pywebpush).

pywebpush is synchronous, so each send runs in a worker thread under a
bounded timeout. A 404 or 410 from the push service means the browser
subscription is gone: the sender deactivates it and reports a permanent
failure. Everything else, timeouts included, is transient.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from http import HTTPStatus
import json
import logging
import time
from typing import TYPE_CHECKING, Any, Protocol

from pywebpush import WebPushException, webpush

from notification_service.core.settings import get_push_settings
from notification_service.features.notifications.channels.base import DeliveryResult, FailureKind
from notification_service.features.notifications.content import PushPayload
from notification_service.features.notifications.metrics import notification_send_duration_seconds
from notification_service.features.notifications.types import Channel

if TYPE_CHECKING:
    from notification_service.core.settings import PushSettings
    from notification_service.features.notifications.models import PushSubscription

logger = logging.getLogger(__name__)

GONE_STATUSES = frozenset({HTTPStatus.NOT_FOUND, HTTPStatus.GONE})


@dataclass(frozen=True, slots=True)
class SubscriptionInfo:
    """Snapshot of a push subscription, safe to carry inside a queued job."""

    id: str
    endpoint: str
    p256dh: str
    auth: str

    @classmethod
    def from_model(cls, subscription: PushSubscription) -> SubscriptionInfo:
        return cls(
            id=str(subscription.id),
            endpoint=subscription.endpoint,
            p256dh=subscription.p256dh,
            auth=subscription.auth,
        )

    def to_dict(self) -> dict[str, str]:
        return asdict(self)

    def webpush_info(self) -> dict[str, Any]:
        return {"endpoint": self.endpoint, "keys": {"p256dh": self.p256dh, "auth": self.auth}}


class SubscriptionStore(Protocol):
    """Where the sender records that a subscription is no longer valid."""

    async def deactivate(self, subscription_id: str) -> None: ...


def _extract_status_code(exc: Exception) -> int | None:
    response = getattr(exc, "response", None)
    if response is None:
        return None
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


class PushSender:
    """Sends Web Push notifications to one subscription at a time.

    Example:
        sender = PushSender(store=SqlSubscriptionStore())
        result = await sender.send(SubscriptionInfo.from_model(sub), payload)
        if result.retryable:
            ...
    """

    channel = Channel.PUSH

    def __init__(
        self,
        settings: PushSettings | None = None,
        store: SubscriptionStore | None = None,
    ) -> None:
        self._settings = settings or get_push_settings()
        self._store = store
        self._warned_unconfigured = False

    @property
    def is_configured(self) -> bool:
        return self._settings.is_configured

    async def send(self, subscription: SubscriptionInfo, payload: PushPayload) -> DeliveryResult:
        if not self.is_configured:
            if not self._warned_unconfigured:
                logger.warning("Push notifications are not configured: VAPID keys missing")
                self._warned_unconfigured = True
            return DeliveryResult.fail(FailureKind.CONFIGURATION, "VAPID keys are not configured")

        start = time.perf_counter()
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._send_sync, subscription, payload),
                timeout=self._settings.send_timeout_seconds,
            )
        except TimeoutError:
            return self._failure(
                FailureKind.TRANSIENT,
                f"Push send timed out after {self._settings.send_timeout_seconds}s",
                subscription,
                start,
            )
        except WebPushException as exc:
            status = _extract_status_code(exc)
            if status in GONE_STATUSES:
                await self._deactivate(subscription, status)
                return self._failure(
                    FailureKind.PERMANENT,
                    f"Push subscription expired (status={status})",
                    subscription,
                    start,
                    status,
                )
            return self._failure(
                FailureKind.TRANSIENT,
                f"Push delivery failed (status={status or 'unknown'}): {exc}",
                subscription,
                start,
                status,
            )
        except OSError as exc:
            # requests' connection errors derive from OSError.
            return self._failure(FailureKind.TRANSIENT, f"Push connection error: {exc}", subscription, start)

        elapsed = time.perf_counter() - start
        notification_send_duration_seconds.labels(channel=self.channel.value).observe(elapsed)
        return DeliveryResult.ok(response_time_ms=int(elapsed * 1000), subscription_id=subscription.id)

    async def deliver(self, payload: dict[str, Any]) -> DeliveryResult:
        subscription = SubscriptionInfo(**payload["subscription"])
        return await self.send(subscription, PushPayload.from_dict(payload["notification"]))

    def _send_sync(self, subscription: SubscriptionInfo, payload: PushPayload) -> None:
        private_key = self._settings.vapid_private_key
        webpush(
            subscription_info=subscription.webpush_info(),
            data=json.dumps(payload.to_dict()),
            vapid_private_key=private_key.get_secret_value() if private_key else None,
            # pywebpush adds aud/exp to the claims dict, so build a fresh one per call.
            vapid_claims={"sub": self._settings.vapid_subject},
            ttl=self._settings.ttl,
            timeout=self._settings.send_timeout_seconds,
        )

    async def _deactivate(self, subscription: SubscriptionInfo, status: int) -> None:
        logger.info(
            "Deactivating expired push subscription",
            extra={"subscription_id": subscription.id, "status": status},
        )
        if self._store is not None:
            await self._store.deactivate(subscription.id)

    def _failure(
        self,
        kind: FailureKind,
        message: str,
        subscription: SubscriptionInfo,
        start: float,
        status: int | None = None,
    ) -> DeliveryResult:
        elapsed = time.perf_counter() - start
        notification_send_duration_seconds.labels(channel=self.channel.value).observe(elapsed)
        logger.warning(
            "Push delivery failed",
            extra={
                "subscription_id": subscription.id,
                "failure": kind.value,
                "status": status,
                "error": message,
            },
        )
        return DeliveryResult.fail(
            kind,
            message,
            status_code=status,
            response_time_ms=int(elapsed * 1000),
        )
