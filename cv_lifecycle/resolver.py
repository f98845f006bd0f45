"""
Version set resolution and typed snapshots.

Turns a fetched entity list into the facts the workflow decides on:
latest version, composite flag, environments holding the latest
version, and (for composites) the member versions it embeds.

Snapshots are typed by when they were taken. Publishing makes every
earlier snapshot stale, so promotion and cleanup only accept a
PostPublishSnapshot, fetched after the publish waits returned.

Invariants:
    - Reserved (server-managed) content views never appear in a ResolvedSet
    - A snapshot is never updated; a new fetch produces a new snapshot
    - PostPublishSnapshot.sequence is greater than that of any snapshot
      taken before it in the same run
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .client.base import RemoteStateClient
from .models import ComponentRef, Entity, version_key
from .watcher import WaitOutcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedEntity:
    """Decision-ready view of one content view.

    Attributes:
        name: Content view name
        composite: True for composite content views
        latest_version: Latest version number, None if never published
        environments: Environments holding the latest version
        versions: Every existing version number, ascending
        components: Member versions embedded in the latest version
            (composites only, empty until components are resolved)
    """

    name: str
    composite: bool
    latest_version: Optional[str]
    environments: frozenset[str] = frozenset()
    versions: Tuple[str, ...] = ()
    components: Tuple[ComponentRef, ...] = ()

    def latest_in(self, environment: str) -> bool:
        """Whether the latest version is already in the environment."""
        return environment in self.environments


@dataclass(frozen=True)
class ResolvedSet:
    """Resolved entities of one fetch, reserved views removed."""

    entities: Tuple[ResolvedEntity, ...] = ()
    excluded: Tuple[str, ...] = ()

    def get(self, name: str) -> Optional[ResolvedEntity]:
        for entity in self.entities:
            if entity.name == name:
                return entity
        return None

    def composites(self) -> List[ResolvedEntity]:
        return [e for e in self.entities if e.composite]

    def non_composites(self) -> List[ResolvedEntity]:
        return [e for e in self.entities if not e.composite]

    def names(self) -> List[str]:
        return [e.name for e in self.entities]


class VersionSetResolver:
    """Builds ResolvedSets from fetched entities.

    Example:
        >>> resolver = VersionSetResolver(["Default Organization View"])
        >>> resolved = resolver.resolve(await client.list_entities("ACME"))
        >>> [e.name for e in resolved.composites()]
        ['OS-Stack']
    """

    def __init__(self, reserved_names: Iterable[str] = ("Default Organization View",)) -> None:
        self.reserved_names = tuple(reserved_names)

    def is_reserved(self, name: str) -> bool:
        """Reserved names match anywhere in the content view name."""
        return any(reserved in name for reserved in self.reserved_names)

    def resolve(
        self,
        entities: Iterable[Entity],
        components: Optional[Mapping[str, Iterable[ComponentRef]]] = None,
    ) -> ResolvedSet:
        """Resolve fetched entities.

        Args:
            entities: Entities from list_entities()
            components: Optional composite name -> embedded member versions

        Returns:
            ResolvedSet without reserved views
        """
        components = components or {}
        resolved = []
        excluded = []
        for entity in entities:
            if self.is_reserved(entity.name):
                excluded.append(entity.name)
                continue
            numbers = sorted(
                {v.version_number for v in entity.versions}, key=version_key
            )
            resolved.append(
                ResolvedEntity(
                    name=entity.name,
                    composite=entity.composite,
                    latest_version=entity.latest_version,
                    environments=frozenset(entity.version_environments),
                    versions=tuple(numbers),
                    components=tuple(components.get(entity.name, ()))
                    if entity.composite
                    else (),
                )
            )
        return ResolvedSet(entities=tuple(resolved), excluded=tuple(excluded))


@dataclass(frozen=True)
class EntitySnapshot:
    """Entities as fetched at one point of the run.

    Attributes:
        entities: Raw fetched entities
        resolved: Resolved view of the same fetch
        taken_at: time.monotonic() at fetch
        sequence: Fetch order within the run
    """

    entities: Tuple[Entity, ...]
    resolved: ResolvedSet
    taken_at: float
    sequence: int


@dataclass(frozen=True)
class InitialSnapshot(EntitySnapshot):
    """Fetched before any publish. Valid for publish decisions only."""


@dataclass(frozen=True)
class PostPublishSnapshot(EntitySnapshot):
    """Fetched after the publish waits. Required for promote and cleanup.

    Attributes:
        after_waits: Wait outcomes that preceded this fetch
    """

    after_waits: Tuple[WaitOutcome, ...] = field(default=())


async def fetch_initial(
    client: RemoteStateClient,
    organization: str,
    resolver: VersionSetResolver,
    sequence: int = 1,
) -> InitialSnapshot:
    """Fetch the pre-publish snapshot."""
    entities = tuple(await client.list_entities(organization))
    logger.info(f"Fetched {len(entities)} content views (initial)")
    return InitialSnapshot(
        entities=entities,
        resolved=resolver.resolve(entities),
        taken_at=time.monotonic(),
        sequence=sequence,
    )


async def fetch_post_publish(
    client: RemoteStateClient,
    organization: str,
    resolver: VersionSetResolver,
    after_waits: Iterable[WaitOutcome] = (),
    sequence: int = 2,
) -> PostPublishSnapshot:
    """Re-fetch entities after publishing has been awaited."""
    entities = tuple(await client.list_entities(organization))
    logger.info(f"Re-fetched {len(entities)} content views after publish")
    return PostPublishSnapshot(
        entities=entities,
        resolved=resolver.resolve(entities),
        taken_at=time.monotonic(),
        sequence=sequence,
        after_waits=tuple(after_waits),
    )


def require_post_publish(snapshot: EntitySnapshot) -> PostPublishSnapshot:
    """Reject snapshots taken before publishing finished.

    Raises:
        TypeError: If the snapshot is not a PostPublishSnapshot
    """
    if not isinstance(snapshot, PostPublishSnapshot):
        raise TypeError(
            f"{type(snapshot).__name__} predates publishing; re-fetch entities first"
        )
    return snapshot


def with_components(
    snapshot: PostPublishSnapshot,
    resolver: VersionSetResolver,
    components: Dict[str, List[ComponentRef]],
) -> PostPublishSnapshot:
    """Same fetch, with composite components resolved."""
    return PostPublishSnapshot(
        entities=snapshot.entities,
        resolved=resolver.resolve(snapshot.entities, components),
        taken_at=snapshot.taken_at,
        sequence=snapshot.sequence,
        after_waits=snapshot.after_waits,
    )
