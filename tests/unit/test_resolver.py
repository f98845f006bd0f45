"""
Unit tests for version set resolution and snapshots.

Tests cover:
- Reserved content view exclusion
- Latest version and environment placement
- Composite components
- Snapshot typing and ordering
"""

import pytest

from cv_lifecycle.models import ComponentRef, Entity, Version
from cv_lifecycle.resolver import (
    InitialSnapshot,
    PostPublishSnapshot,
    VersionSetResolver,
    fetch_initial,
    fetch_post_publish,
    require_post_publish,
)


def make_entity(name, composite=False, versions=("1.0",), environments=("Library",)):
    """Helper to build a fetched entity."""
    return Entity(
        name=name,
        composite=composite,
        latest_version=versions[-1] if versions else None,
        version_environments=frozenset(environments),
        versions=tuple(Version(name, v) for v in versions),
    )


class TestVersionSetResolver:
    """Tests for VersionSetResolver."""

    @pytest.fixture
    def resolver(self):
        return VersionSetResolver(["Default Organization View"])

    def test_excludes_reserved_view(self, resolver):
        """The default organization view is never resolved."""
        resolved = resolver.resolve(
            [make_entity("Default Organization View"), make_entity("OS-Base")]
        )

        assert resolved.names() == ["OS-Base"]
        assert resolved.excluded == ("Default Organization View",)
        assert resolved.get("Default Organization View") is None

    def test_reserved_name_matches_as_substring(self, resolver):
        """Suffixed reserved names are excluded too."""
        assert resolver.is_reserved("Default Organization View")
        assert resolver.is_reserved("ACME Default Organization View")
        assert not resolver.is_reserved("OS-Base")

    def test_latest_version_and_placement(self, resolver):
        """Latest version and its environments are exposed."""
        resolved = resolver.resolve(
            [
                make_entity(
                    "OS-Stack",
                    composite=True,
                    versions=("10.0", "9.0", "11.0"),
                    environments=("Library", "Production"),
                )
            ]
        )
        stack = resolved.get("OS-Stack")

        assert stack.composite is True
        assert stack.latest_version == "11.0"
        assert stack.versions == ("9.0", "10.0", "11.0")
        assert stack.latest_in("Production")
        assert not stack.latest_in("Test")

    def test_splits_composites(self, resolver):
        """Composite and non-composite views are listed separately."""
        resolved = resolver.resolve(
            [
                make_entity("OS-Base"),
                make_entity("OS-Stack", composite=True),
                make_entity("Apps"),
            ]
        )

        assert [e.name for e in resolved.composites()] == ["OS-Stack"]
        assert [e.name for e in resolved.non_composites()] == ["OS-Base", "Apps"]

    def test_components_only_on_composites(self, resolver):
        """Components attach to composites, never to plain views."""
        refs = [ComponentRef("OS-Base", "4.0")]
        resolved = resolver.resolve(
            [make_entity("OS-Stack", composite=True), make_entity("OS-Base")],
            components={"OS-Stack": refs, "OS-Base": refs},
        )

        assert resolved.get("OS-Stack").components == (ComponentRef("OS-Base", "4.0"),)
        assert resolved.get("OS-Base").components == ()

    def test_never_published_entity(self, resolver):
        """An entity without versions has no latest version."""
        resolved = resolver.resolve([make_entity("Empty", versions=(), environments=())])

        assert resolved.get("Empty").latest_version is None
        assert resolved.get("Empty").versions == ()


class TestSnapshots:
    """Tests for typed snapshots."""

    @pytest.mark.asyncio
    async def test_post_publish_snapshot_sees_new_version(self, server):
        """A re-fetch after publishing carries the new latest version."""
        server.add_entity("OS-Base", versions=["1.0"])
        resolver = VersionSetResolver()

        initial = await fetch_initial(server, "ACME", resolver)
        await server.trigger_publish("OS-Base")
        current = await fetch_post_publish(server, "ACME", resolver)

        assert isinstance(initial, InitialSnapshot)
        assert isinstance(current, PostPublishSnapshot)
        assert initial.resolved.get("OS-Base").latest_version == "1.0"
        assert current.resolved.get("OS-Base").latest_version == "2.0"
        assert current.sequence > initial.sequence
        assert current.taken_at >= initial.taken_at

    @pytest.mark.asyncio
    async def test_require_post_publish_rejects_initial(self, server):
        """Initial snapshots cannot drive promotion or cleanup."""
        initial = await fetch_initial(server, "ACME", VersionSetResolver())

        with pytest.raises(TypeError):
            require_post_publish(initial)

    @pytest.mark.asyncio
    async def test_require_post_publish_accepts_post_publish(self, server):
        """Post-publish snapshots pass through unchanged."""
        current = await fetch_post_publish(server, "ACME", VersionSetResolver())

        assert require_post_publish(current) is current

    @pytest.mark.asyncio
    async def test_sequence_is_not_shared_between_fetches(self, server):
        """Sequence numbers come from the caller, not from module state."""
        resolver = VersionSetResolver()

        first = await fetch_initial(server, "ACME", resolver)
        second = await fetch_initial(server, "ACME", resolver)
        numbered = await fetch_post_publish(server, "ACME", resolver, sequence=7)

        assert first.sequence == second.sequence == 1
        assert numbered.sequence == 7
