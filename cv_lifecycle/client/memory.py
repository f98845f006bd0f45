"""
In-memory content server implementation for testing.

This module provides a RemoteStateClient that keeps content views,
versions and environments in memory. Useful for:
- Unit tests of the watcher and orchestrator
- Integration tests of the full workflow
- Failure injection (unhealthy server, failing publishes, unsupported
  task status endpoint)

Invariants:
    - Publish always creates a new version (major + 1), never reuses one
    - Composite publish embeds the latest version of every member
    - Promotion into an environment already holding the version is a no-op
    - Deleting a version embedded in a composite version is refused

How to change safely:
    - This is test-only code, changes don't affect the REST client
    - Keep interface compatible with the RemoteStateClient protocol
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from ..models import (
    ComponentRef,
    Entity,
    OperationHandle,
    Version,
    VersionLike,
    format_version,
    version_key,
)
from .errors import (
    NotFoundError,
    RemoteOperationError,
    ServerConnectionError,
    TaskStatusUnavailableError,
)

logger = logging.getLogger(__name__)

LIBRARY = "Library"
PUBLISH_LABEL = "Actions::Katello::ContentView::Publish"
PROMOTE_LABEL = "Actions::Katello::ContentView::Promote"


@dataclass
class _StoredVersion:
    number: str
    environments: Set[str] = field(default_factory=set)
    components: Tuple[ComponentRef, ...] = ()
    version_id: int = 0


@dataclass
class _StoredView:
    name: str
    composite: bool
    entity_id: int
    members: List[str] = field(default_factory=list)
    versions: Dict[Tuple[int, int], _StoredVersion] = field(default_factory=dict)

    def latest(self) -> Optional[_StoredVersion]:
        if not self.versions:
            return None
        return self.versions[max(self.versions)]


class InMemoryContentServer:
    """In-memory implementation of RemoteStateClient.

    Attributes:
        organization: The only organization this server knows
        environments: Known lifecycle environments
        calls: Log of (method, args) for every protocol call
        health_failures: Number of upcoming health checks that fail
        publish_failures: Entity names whose publish always fails
        promote_failures: Entity name -> number of upcoming failing promotes
        delete_failures: (entity name, version) pairs whose delete fails
        task_status_supported: False makes count_running_tasks unsupported
        running_tasks: Label -> scripted counts returned by successive polls

    Example:
        >>> server = InMemoryContentServer()
        >>> server.add_entity("OS-Base", versions=["1.0", "2.0"])
        >>> handle = await server.trigger_publish("OS-Base")
    """

    def __init__(
        self,
        organization: str = "Default Organization",
        environments: Iterable[str] = (LIBRARY, "Production"),
    ) -> None:
        self.organization = organization
        self.environments = set(environments) | {LIBRARY}
        self.calls: List[Tuple[str, Tuple[Any, ...]]] = []
        self.health_failures = 0
        self.publish_failures: Set[str] = set()
        self.promote_failures: Dict[str, int] = defaultdict(int)
        self.delete_failures: Set[Tuple[str, Tuple[int, int]]] = set()
        self.task_status_supported = True
        self.running_tasks: Dict[str, List[int]] = defaultdict(list)
        self.closed = False
        self._views: Dict[str, _StoredView] = {}
        self._next_id = 1
        self._next_task = 1

    # Seeding helpers

    def add_entity(
        self,
        name: str,
        composite: bool = False,
        versions: Iterable[VersionLike] = (),
        members: Iterable[str] = (),
    ) -> None:
        """Create a content view with existing versions (all in Library)."""
        view = _StoredView(
            name=name,
            composite=composite,
            entity_id=self._new_id(),
            members=list(members),
        )
        self._views[name] = view
        for number in versions:
            self.add_version(name, number)

    def add_version(
        self,
        name: str,
        number: VersionLike,
        environments: Iterable[str] = (LIBRARY,),
        components: Iterable[Tuple[str, VersionLike]] = (),
    ) -> None:
        """Add a version with explicit placement and embedded components."""
        view = self._view(name)
        view.versions[version_key(number)] = _StoredVersion(
            number=format_version(number),
            environments=set(environments),
            components=tuple(
                ComponentRef(member_name=m, member_version=format_version(v))
                for m, v in components
            ),
            version_id=self._new_id(),
        )

    def version_numbers(self, name: str) -> List[str]:
        """Existing version numbers of an entity, ascending."""
        view = self._view(name)
        return [view.versions[key].number for key in sorted(view.versions)]

    def version_environments(self, name: str, number: VersionLike) -> Set[str]:
        return set(self._version(name, number).environments)

    def calls_to(self, method: str) -> List[Tuple[Any, ...]]:
        return [args for name, args in self.calls if name == method]

    # RemoteStateClient protocol

    async def health_check(self) -> bool:
        self.calls.append(("health_check", ()))
        if self.health_failures > 0:
            self.health_failures -= 1
            raise ServerConnectionError("Server unreachable", address="memory://")
        return True

    async def list_entities(self, organization: str) -> List[Entity]:
        self.calls.append(("list_entities", (organization,)))
        if organization != self.organization:
            raise NotFoundError(
                f"Organization '{organization}' not found", "organization", organization
            )
        return [self._to_entity(view) for view in self._views.values()]

    async def get_entity_components(self, composite_name: str) -> List[ComponentRef]:
        self.calls.append(("get_entity_components", (composite_name,)))
        latest = self._view(composite_name).latest()
        return list(latest.components) if latest else []

    async def trigger_publish(
        self,
        entity_name: str,
        description: Optional[str] = None,
    ) -> OperationHandle:
        self.calls.append(("trigger_publish", (entity_name, description)))
        view = self._view(entity_name)
        if entity_name in self.publish_failures:
            raise RemoteOperationError(
                f"Publish of '{entity_name}' failed", status_code=500, operation="publish"
            )

        latest = view.latest()
        major = version_key(latest.number)[0] + 1 if latest else 1
        components = []
        if view.composite:
            for member in view.members:
                member_latest = self._view(member).latest()
                if member_latest is not None:
                    components.append((member, member_latest.number))
        self.add_version(entity_name, f"{major}.0", components=components)
        logger.debug(f"Published {entity_name} version {major}.0")
        return self._task(PUBLISH_LABEL)

    async def trigger_promote(
        self,
        entity_name: str,
        version: VersionLike,
        environment: str,
    ) -> OperationHandle:
        self.calls.append(("trigger_promote", (entity_name, format_version(version), environment)))
        if self.promote_failures[entity_name] > 0:
            self.promote_failures[entity_name] -= 1
            raise RemoteOperationError(
                f"Promotion of '{entity_name}' failed", status_code=503, operation="promote"
            )
        if environment not in self.environments:
            raise NotFoundError(
                f"Lifecycle environment '{environment}' not found", "environment", environment
            )
        self._version(entity_name, version).environments.add(environment)
        return self._task(PROMOTE_LABEL)

    async def delete_version(self, entity_name: str, version: VersionLike) -> None:
        self.calls.append(("delete_version", (entity_name, format_version(version))))
        key = version_key(version)
        stored = self._version(entity_name, version)
        if (entity_name, key) in self.delete_failures:
            raise RemoteOperationError(
                f"Delete of '{entity_name}' {stored.number} failed",
                status_code=500,
                operation="delete",
            )
        for view in self._views.values():
            for candidate in view.versions.values():
                if any(ref.key == (entity_name, key) for ref in candidate.components):
                    raise RemoteOperationError(
                        f"Version {stored.number} of '{entity_name}' is a component "
                        f"of '{view.name}' {candidate.number}",
                        status_code=422,
                        operation="delete",
                    )
        del self._view(entity_name).versions[key]

    async def count_running_tasks(self, label: str) -> int:
        self.calls.append(("count_running_tasks", (label,)))
        if not self.task_status_supported:
            raise TaskStatusUnavailableError("Task status endpoint not available", label=label)
        scripted = self.running_tasks[label]
        return scripted.pop(0) if scripted else 0

    async def close(self) -> None:
        self.closed = True

    # Internals

    def _new_id(self) -> int:
        value = self._next_id
        self._next_id += 1
        return value

    def _task(self, label: str) -> OperationHandle:
        task_id = f"task-{self._next_task}"
        self._next_task += 1
        return OperationHandle(task_id=task_id, label=label, state="running")

    def _view(self, name: str) -> _StoredView:
        if name not in self._views:
            raise NotFoundError(f"Content view '{name}' not found", "content_view", name)
        return self._views[name]

    def _version(self, name: str, number: VersionLike) -> _StoredVersion:
        view = self._view(name)
        key = version_key(number)
        if key not in view.versions:
            raise NotFoundError(
                f"Version {format_version(number)} of '{name}' not found",
                "content_view_version",
                f"{name}:{format_version(number)}",
            )
        return view.versions[key]

    @staticmethod
    def _to_entity(view: _StoredView) -> Entity:
        latest = view.latest()
        return Entity(
            name=view.name,
            composite=view.composite,
            latest_version=latest.number if latest else None,
            version_environments=frozenset(latest.environments) if latest else frozenset(),
            versions=tuple(
                Version(
                    entity_name=view.name,
                    version_number=stored.number,
                    environments=frozenset(stored.environments),
                    version_id=stored.version_id,
                )
                for stored in view.versions.values()
            ),
            entity_id=view.entity_id,
        )
