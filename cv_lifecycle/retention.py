"""
Retention planning for content view versions.

Decides which versions of one content view may be deleted, given how
many of the newest to keep and which versions composites still embed.

The cutoff is positional: versions are sorted ascending and the first
n - keep are candidates. Version numbers are sparse after deletions
(1.0, 4.0, 9.0), so "latest - keep" arithmetic does not name an
existing version and is not used.

Invariants:
    - Numbers are ordered with version_key(), never as strings
    - A protected version is never returned, whatever keep is
    - keep <= 0 makes every unprotected version a candidate (no error)
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Set, Tuple

from .models import ComponentRef, VersionLike, format_version, version_key

logger = logging.getLogger(__name__)


class ProtectedVersions:
    """(content view, version) pairs embedded in composite versions."""

    def __init__(self, refs: Iterable[ComponentRef] = ()) -> None:
        self._keys: Dict[str, Set[Tuple[int, int]]] = {}
        for ref in refs:
            self.add(ref)

    def add(self, ref: ComponentRef) -> None:
        self._keys.setdefault(ref.member_name, set()).add(version_key(ref.member_version))

    def for_entity(self, name: str) -> Set[Tuple[int, int]]:
        return set(self._keys.get(name, set()))

    def __contains__(self, item: Tuple[str, VersionLike]) -> bool:
        name, version = item
        return version_key(version) in self._keys.get(name, set())

    def __len__(self) -> int:
        return sum(len(keys) for keys in self._keys.values())

    def to_list(self) -> List[Dict[str, str]]:
        return [
            {"entity": name, "version": f"{major}.{minor}"}
            for name in sorted(self._keys)
            for major, minor in sorted(self._keys[name])
        ]


def plan_deletions(
    versions: Iterable[VersionLike],
    keep: int,
    protected: Iterable[VersionLike] = (),
) -> List[VersionLike]:
    """Versions of one content view to delete, oldest first.

    Args:
        versions: Every existing version number of the content view
        keep: How many of the newest versions to keep
        protected: Version numbers that must survive

    Returns:
        Version numbers (as given) eligible for deletion, ascending

    Example:
        >>> plan_deletions([1, 2, 3, 4, 5], keep=2, protected=[])
        [1, 2, 3]
        >>> plan_deletions([1, 2, 3, 4, 5], keep=1, protected=[4])
        [1, 2, 3]
    """
    by_key: Dict[Tuple[int, int], VersionLike] = {}
    for version in versions:
        by_key.setdefault(version_key(version), version)

    ordered = sorted(by_key)
    keep = max(keep, 0)
    if len(ordered) <= keep:
        return []

    protected_keys = {version_key(v) for v in protected}
    cutoff = len(ordered) - keep
    deletions = []
    for key in ordered[:cutoff]:
        if key in protected_keys:
            logger.debug(f"Keeping protected version {format_version(by_key[key])}")
            continue
        deletions.append(by_key[key])
    return deletions
