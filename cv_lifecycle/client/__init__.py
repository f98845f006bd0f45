"""
Remote content server clients.

Provides the RemoteStateClient protocol and its backends:
- ForemanClient: Katello REST API over httpx
- InMemoryContentServer: in-process server for tests
"""

from .base import RemoteStateClient
from .errors import (
    ContentManagerError,
    HealthCheckFailedError,
    NotFoundError,
    RemoteOperationError,
    ServerConnectionError,
    TaskStatusUnavailableError,
)
from .foreman import ForemanClient
from .memory import InMemoryContentServer
from .settings import ForemanSettings

__all__ = [
    "RemoteStateClient",
    "ForemanClient",
    "ForemanSettings",
    "InMemoryContentServer",
    "ContentManagerError",
    "HealthCheckFailedError",
    "NotFoundError",
    "RemoteOperationError",
    "ServerConnectionError",
    "TaskStatusUnavailableError",
]
