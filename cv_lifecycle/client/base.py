"""
Base protocol for the remote content server client.

This module defines the RemoteStateClient protocol that every backend
(the Katello REST client, the in-memory server) must implement.

Invariants:
    - Every call reflects server state at call time; nothing is cached
      across mutating calls except id lookups
    - count_running_tasks() raises TaskStatusUnavailableError when the
      server cannot report status, it never returns 0 in that case
    - Failures raise ContentManagerError subclasses

How to change safely:
    - Protocol changes require updating all implementations
    - Keep the in-memory server in step with the REST client
"""

from __future__ import annotations

from abc import abstractmethod
from typing import List, Optional, Protocol, runtime_checkable

from ..models import ComponentRef, Entity, OperationHandle, VersionLike


@runtime_checkable
class RemoteStateClient(Protocol):
    """Protocol for content server backends.

    Example:
        >>> client = ForemanClient(settings)
        >>> if await client.health_check():
        ...     entities = await client.list_entities("ACME")
    """

    @abstractmethod
    async def health_check(self) -> bool:
        """Check whether the server answers and reports healthy.

        Returns:
            True when healthy

        Raises:
            ServerConnectionError: If the server is unreachable
        """
        ...

    @abstractmethod
    async def list_entities(self, organization: str) -> List[Entity]:
        """List every content view in the organization.

        Raises:
            NotFoundError: If the organization does not exist
        """
        ...

    @abstractmethod
    async def get_entity_components(self, composite_name: str) -> List[ComponentRef]:
        """Member versions embedded in a composite's current version.

        Raises:
            NotFoundError: If the composite does not exist
        """
        ...

    @abstractmethod
    async def trigger_publish(
        self,
        entity_name: str,
        description: Optional[str] = None,
    ) -> OperationHandle:
        """Start publishing a new version. Not idempotent."""
        ...

    @abstractmethod
    async def trigger_promote(
        self,
        entity_name: str,
        version: VersionLike,
        environment: str,
    ) -> OperationHandle:
        """Start promoting a version into a lifecycle environment."""
        ...

    @abstractmethod
    async def delete_version(self, entity_name: str, version: VersionLike) -> None:
        """Delete one version.

        Raises:
            NotFoundError: If the version does not exist
            RemoteOperationError: If the server refuses
        """
        ...

    @abstractmethod
    async def count_running_tasks(self, label: str) -> int:
        """Number of running background tasks with this label.

        Raises:
            TaskStatusUnavailableError: If task status is not supported
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release connections."""
        ...
