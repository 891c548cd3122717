from notification_service.infra.realtime.manager import (
    ConnectionInfo,
    ConnectionManager,
    get_connection_manager,
    start_connection_manager,
    stop_connection_manager,
)

__all__ = [
    "ConnectionInfo",
    "ConnectionManager",
    "get_connection_manager",
    "start_connection_manager",
    "stop_connection_manager",
]
