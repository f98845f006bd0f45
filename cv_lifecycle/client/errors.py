"""
Error types for the content server client.

This module defines all exception types raised while talking to the
content-management server:
- ContentManagerError: Base exception
- ServerConnectionError: Server unreachable or timed out
- NotFoundError: Entity, version or endpoint does not exist
- TaskStatusUnavailableError: Task status endpoint is not supported
- RemoteOperationError: Server rejected a call (4xx/5xx)
- HealthCheckFailedError: Health check retries exhausted (fatal)

Invariants:
    - All errors inherit from ContentManagerError
    - Errors include context for the run summary
    - TaskStatusUnavailableError is never used for "zero tasks running"
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ContentManagerError(Exception):
    """Base exception for all content server errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "CONTENT_MANAGER_ERROR"
        self.details = details or {}


class ServerConnectionError(ContentManagerError):
    """Failed to reach the content server.

    Raised when:
    - Server is unreachable
    - Connection times out
    """

    def __init__(
        self,
        message: str,
        address: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="CONNECTION_ERROR",
            details={"address": address},
        )
        self.address = address


class NotFoundError(ContentManagerError):
    """Resource not found.

    Raised when:
    - Content view doesn't exist
    - Version doesn't exist
    - Lifecycle environment doesn't exist
    - Endpoint is not served (HTTP 404)
    """

    def __init__(
        self,
        message: str,
        resource_type: str,
        resource_id: str,
    ) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={
                "resource_type": resource_type,
                "resource_id": resource_id,
            },
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class TaskStatusUnavailableError(ContentManagerError):
    """The server cannot report background task status.

    Distinct from a running-task count of zero: callers must not
    treat this as "all work finished" without another safeguard.
    """

    def __init__(self, message: str, label: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="TASK_STATUS_UNAVAILABLE",
            details={"label": label},
        )
        self.label = label


class RemoteOperationError(ContentManagerError):
    """The server rejected or failed an operation.

    Raised when:
    - Publish, promote or delete returns an error status
    - Server answers 5xx
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        operation: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="REMOTE_OPERATION_ERROR",
            details={"status_code": status_code, "operation": operation},
        )
        self.status_code = status_code
        self.operation = operation


class HealthCheckFailedError(ContentManagerError):
    """Server stayed unhealthy after every health check attempt."""

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(
            message,
            code="HEALTH_CHECK_FAILED",
            details={"attempts": attempts},
        )
        self.attempts = attempts
