"""Base service class for business logic."""

from __future__ import annotations

import logging

from notification_service.infra.logging import get_lazy_logger


class BaseService:
    """Base class for notification services.

    Loggers:
        - self.logger: Standard logger for INFO/WARNING/ERROR (always evaluated)
        - self._lazy: Lazy logger for DEBUG (zero overhead when DEBUG disabled)

    Example:
        class PreferenceService(BaseService):
            def __init__(self, repository: NotificationPreferenceRepository):
                super().__init__()
                self._repository = repository

            async def reset(self, session, tenant_id, user_id):
                self.logger.info("Resetting preferences", extra={"user_id": user_id})
                self._lazy.debug(lambda: f"defaults={default_preferences()!r}")
    """

    def __init__(self) -> None:
        class_name = self.__class__.__name__
        self.logger = logging.getLogger(f"service.{class_name}")
        self._lazy = get_lazy_logger(f"service.{class_name}")
