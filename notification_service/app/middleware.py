"""Request context middleware.

For every HTTP request this middleware:
1. Takes the request ID from X-Request-ID, or generates a UUID
2. Stores it in request.state.request_id
3. Adds request_id, tenant_id and user_id (from X-Tenant-ID / X-User-ID) to the logging context
4. Echoes X-Request-ID on the response
5. Clears the logging context when the request completes

Pure ASGI, so it wraps streaming responses without buffering.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import uuid4

from fastapi.middleware.cors import CORSMiddleware

from notification_service.infra.logging import clear_log_context, set_log_context

if TYPE_CHECKING:
    from fastapi import FastAPI
    from starlette.types import ASGIApp, Message, Receive, Scope, Send

    from notification_service.core.settings import AppSettings

REQUEST_ID_HEADER = b"x-request-id"
CONTEXT_HEADERS = {b"x-tenant-id": "tenant_id", b"x-user-id": "user_id"}


class RequestContextMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers") or [])
        raw_id = headers.get(REQUEST_ID_HEADER)
        request_id = raw_id.decode("latin-1") if raw_id else str(uuid4())

        scope.setdefault("state", {})["request_id"] = request_id
        context = {"request_id": request_id}
        for header, key in CONTEXT_HEADERS.items():
            if value := headers.get(header):
                context[key] = value.decode("latin-1")
        set_log_context(**context)

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                message.setdefault("headers", [])
                message["headers"].append((REQUEST_ID_HEADER, request_id.encode("latin-1")))
            await send(message)

        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            clear_log_context()


def configure_middleware(app: FastAPI, settings: AppSettings) -> None:
    """Register middleware. The last one added runs first."""
    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=settings.cors_allow_credentials,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["X-Request-ID"],
        )
    app.add_middleware(RequestContextMiddleware)
