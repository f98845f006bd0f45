"""
Data model for content view lifecycle management.

These are point-in-time copies of server state. The server owns every
entity and version; nothing here is written back except through the
client's trigger/delete calls.

Invariants:
    - Version numbers compare numerically via version_key(), never lexically
    - A Version never changes after it is fetched; a newer fetch replaces it
    - Entity names are unique within an organization
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Tuple, Union

VersionLike = Union[int, float, str]


def version_key(value: VersionLike) -> Tuple[int, int]:
    """Numeric ordering key for a version number.

    Katello versions are "major.minor" strings ("3.0", "10.1"). Ints and
    floats are accepted too. The result is an integer tuple so that
    "10.0" sorts after "9.0" and "1.10" sorts after "1.9".

    Raises:
        ValueError: If the value is not a version number
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid version number: {value!r}")
    if isinstance(value, int):
        return (value, 0)
    text = str(value).strip()
    major, _, minor = text.partition(".")
    try:
        return (int(major), int(minor or 0))
    except ValueError:
        raise ValueError(f"Invalid version number: {value!r}") from None


def format_version(value: VersionLike) -> str:
    """Canonical "major.minor" string for a version number."""
    major, minor = version_key(value)
    return f"{major}.{minor}"


@dataclass(frozen=True)
class Version:
    """An immutable numbered snapshot of an entity.

    Attributes:
        entity_name: Owning content view
        version_number: Version as reported by the server ("3.0")
        environments: Lifecycle environments holding this version
        version_id: Server id, needed for promote/delete calls
    """

    entity_name: str
    version_number: str
    environments: frozenset[str] = frozenset()
    version_id: Optional[int] = None

    @property
    def key(self) -> Tuple[int, int]:
        return version_key(self.version_number)


@dataclass(frozen=True)
class Entity:
    """A publishable content view.

    Attributes:
        name: Unique name within the organization
        composite: True for composite content views
        latest_version: Highest version number, None if never published
        version_environments: Environments holding the latest version
        versions: Every existing version, any order
        entity_id: Server id
    """

    name: str
    composite: bool
    latest_version: Optional[str] = None
    version_environments: frozenset[str] = frozenset()
    versions: Tuple[Version, ...] = ()
    entity_id: Optional[int] = None

    def find_version(self, number: VersionLike) -> Optional[Version]:
        key = version_key(number)
        for version in self.versions:
            if version.key == key:
                return version
        return None


@dataclass(frozen=True)
class ComponentRef:
    """A member version embedded in a composite's current version."""

    member_name: str
    member_version: str

    @property
    def key(self) -> Tuple[str, Tuple[int, int]]:
        return (self.member_name, version_key(self.member_version))


@dataclass
class OperationHandle:
    """Server-side background task created by a trigger call.

    Attributes:
        task_id: Task id, None when the server ran the operation inline
        label: Operation kind (task label)
        state: Last known task state
        details: Raw extra fields from the server
    """

    task_id: Optional[str]
    label: str
    state: str = "planned"
    details: dict[str, Any] = field(default_factory=dict)
