"""
Unit tests for the Katello REST client.

Uses httpx.MockTransport to stand in for the server.

Tests cover:
- Entity parsing
- Publish, promote and delete requests
- Component lookup
- Running task counts and unsupported task status
- Error mapping, including bodies that are not the expected JSON
- Lifecycle runs over the REST client surviving bad responses
"""

import json

import httpx
import pytest

from cv_lifecycle.client.errors import (
    NotFoundError,
    RemoteOperationError,
    ServerConnectionError,
    TaskStatusUnavailableError,
)
from cv_lifecycle.client.foreman import ForemanClient
from cv_lifecycle.client.settings import ForemanSettings
from cv_lifecycle.config import LifecycleConfig, ManagerConfig
from cv_lifecycle.orchestrator import Orchestrator, Stage

CONTENT_VIEWS = [
    {
        "id": 3,
        "name": "OS-Base",
        "composite": False,
        "latest_version": "5.0",
        "latest_version_id": 17,
        "latest_version_environments": [{"id": 1, "name": "Library"}],
        "environments": [{"id": 1, "name": "Library"}, {"id": 2, "name": "Production"}],
        "versions": [
            {"id": 15, "version": "4.0", "environment_ids": [2]},
            {"id": 17, "version": "5.0", "environment_ids": [1]},
        ],
    },
    {
        "id": 7,
        "name": "OS-Stack",
        "composite": True,
        "latest_version": "2.0",
        "latest_version_id": 30,
        "latest_version_environments": [{"id": 1, "name": "Library"}],
        "environments": [{"id": 1, "name": "Library"}],
        "versions": [{"id": 30, "version": "2.0", "environment_ids": [1]}],
    },
]


class FakeKatello:
    """Routes requests to canned Katello responses."""

    def __init__(self):
        self.requests = []
        self.tasks_supported = True
        self.fail_publish = False
        self.html_publish = False
        self.broken_views = False
        self.orphan_component = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        params = request.url.params

        if path == "/katello/api/ping":
            return httpx.Response(200, json={"status": "ok"})
        if path == "/api/organizations":
            return httpx.Response(200, json={"results": [{"id": 1, "name": "ACME"}]})
        if path == "/katello/api/content_views":
            if self.broken_views:
                return httpx.Response(200, json={"results": [{"id": "three"}]})
            results = CONTENT_VIEWS
            if "name" in params:
                results = [cv for cv in results if cv["name"] == params["name"]]
            return httpx.Response(200, json={"results": results})
        if path == "/katello/api/content_views/3/publish":
            if self.fail_publish:
                return httpx.Response(500, text="Internal Server Error")
            if self.html_publish:
                return httpx.Response(200, text="<html>maintenance</html>")
            return httpx.Response(
                202,
                json={"id": "t-1", "label": "Actions::Katello::ContentView::Publish", "state": "planned"},
            )
        if path == "/katello/api/organizations/1/environments":
            return httpx.Response(200, json={"results": [{"id": 2, "name": "Production"}]})
        if path == "/katello/api/content_view_versions/30/promote":
            return httpx.Response(
                202,
                json={"id": "t-2", "label": "Actions::Katello::ContentView::Promote", "state": "planned"},
            )
        if path == "/katello/api/content_view_versions/30" and request.method == "GET":
            if self.orphan_component:
                return httpx.Response(
                    200,
                    json={
                        "id": 30,
                        "version": "2.0",
                        "component_view_versions": [
                            {"id": 15, "version": "4.0", "content_view_id": 99}
                        ],
                    },
                )
            return httpx.Response(
                200,
                json={
                    "id": 30,
                    "version": "2.0",
                    "component_view_versions": [
                        {"id": 15, "version": "4.0", "content_view": {"id": 3, "name": "OS-Base"}},
                        {"id": 40, "version": "1.0", "content_view_id": 3},
                    ],
                },
            )
        if path == "/katello/api/content_view_versions/15" and request.method == "DELETE":
            return httpx.Response(202, json={"id": "t-3", "state": "planned"})
        if path == "/foreman_tasks/api/tasks":
            if not self.tasks_supported:
                return httpx.Response(404)
            return httpx.Response(200, json={"total": 9, "subtotal": 2, "results": []})
        return httpx.Response(404)


@pytest.fixture
def katello():
    return FakeKatello()


@pytest.fixture
def client(katello):
    settings = ForemanSettings(
        server_url="https://foreman.test", username="admin", password="secret"
    )
    return ForemanClient(settings, organization="ACME", transport=httpx.MockTransport(katello))


class TestForemanClient:
    """Tests for ForemanClient."""

    @pytest.mark.asyncio
    async def test_health_check(self, client):
        """Ping status ok is healthy."""
        assert await client.health_check() is True
        await client.close()

    @pytest.mark.asyncio
    async def test_list_entities(self, client):
        """Content views are parsed into entities."""
        entities = {e.name: e for e in await client.list_entities("ACME")}

        base = entities["OS-Base"]
        assert base.composite is False
        assert base.latest_version == "5.0"
        assert base.version_environments == frozenset({"Library"})
        assert base.find_version("4.0").environments == frozenset({"Production"})
        assert base.find_version("4.0").version_id == 15
        assert entities["OS-Stack"].composite is True
        await client.close()

    @pytest.mark.asyncio
    async def test_unknown_organization(self, client):
        """Missing organization raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await client.list_entities("Initech")
        await client.close()

    @pytest.mark.asyncio
    async def test_trigger_publish(self, client, katello):
        """Publish posts to the content view with a description."""
        handle = await client.trigger_publish("OS-Base", "nightly")

        assert handle.task_id == "t-1"
        assert handle.label == "Actions::Katello::ContentView::Publish"
        publish = katello.requests[-1]
        assert publish.method == "POST"
        assert json.loads(publish.content) == {"description": "nightly"}
        await client.close()

    @pytest.mark.asyncio
    async def test_publish_server_error(self, client, katello):
        """5xx maps to RemoteOperationError with status."""
        katello.fail_publish = True

        with pytest.raises(RemoteOperationError) as exc_info:
            await client.trigger_publish("OS-Base")

        assert exc_info.value.status_code == 500
        await client.close()

    @pytest.mark.asyncio
    async def test_trigger_promote(self, client, katello):
        """Promotion resolves version and environment ids."""
        handle = await client.trigger_promote("OS-Stack", "2.0", "Production")

        assert handle.task_id == "t-2"
        promote = katello.requests[-1]
        assert promote.url.path == "/katello/api/content_view_versions/30/promote"
        assert json.loads(promote.content) == {"environment_ids": [2], "force": False}
        await client.close()

    @pytest.mark.asyncio
    async def test_promote_unknown_environment(self, client):
        """Unknown environment raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await client.trigger_promote("OS-Stack", "2.0", "Staging")
        await client.close()

    @pytest.mark.asyncio
    async def test_delete_version(self, client, katello):
        """Delete targets the version id."""
        await client.delete_version("OS-Base", 4)

        delete = katello.requests[-1]
        assert delete.method == "DELETE"
        assert delete.url.path == "/katello/api/content_view_versions/15"
        await client.close()

    @pytest.mark.asyncio
    async def test_delete_missing_version(self, client):
        """Missing version raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await client.delete_version("OS-Base", "1.0")
        await client.close()

    @pytest.mark.asyncio
    async def test_components(self, client):
        """Components come from the composite's latest version."""
        refs = await client.get_entity_components("OS-Stack")

        assert [(r.member_name, r.member_version) for r in refs] == [
            ("OS-Base", "4.0"),
            ("OS-Base", "1.0"),
        ]
        await client.close()

    @pytest.mark.asyncio
    async def test_count_running_tasks(self, client, katello):
        """Running count is the search subtotal."""
        count = await client.count_running_tasks("Actions::Katello::ContentView::Publish")

        assert count == 2
        search = katello.requests[-1].url.params["search"]
        assert search == "label = Actions::Katello::ContentView::Publish and state = running"
        await client.close()

    @pytest.mark.asyncio
    async def test_task_status_unavailable(self, client, katello):
        """404 from the tasks endpoint is not a zero count."""
        katello.tasks_supported = False

        with pytest.raises(TaskStatusUnavailableError):
            await client.count_running_tasks("Actions::Katello::ContentView::Publish")
        await client.close()

    @pytest.mark.asyncio
    async def test_connection_error(self):
        """Transport failures map to ServerConnectionError."""

        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = ForemanClient(
            ForemanSettings(server_url="https://foreman.test"),
            organization="ACME",
            transport=httpx.MockTransport(refuse),
        )
        with pytest.raises(ServerConnectionError):
            await client.health_check()
        await client.close()

    @pytest.mark.asyncio
    async def test_publish_non_json_body(self, client, katello):
        """A 2xx body that is not JSON maps to RemoteOperationError."""
        katello.html_publish = True

        with pytest.raises(RemoteOperationError) as exc_info:
            await client.trigger_publish("OS-Base")

        assert exc_info.value.status_code == 200
        assert "non-JSON" in str(exc_info.value)
        await client.close()

    @pytest.mark.asyncio
    async def test_malformed_content_view(self, client, katello):
        """A content view payload of the wrong shape maps to RemoteOperationError."""
        katello.broken_views = True

        with pytest.raises(RemoteOperationError):
            await client.list_entities("ACME")
        await client.close()

    @pytest.mark.asyncio
    async def test_component_with_unknown_content_view(self, client, katello):
        """A component whose content view cannot be found is an error, not a blank name."""
        katello.orphan_component = True

        with pytest.raises(NotFoundError):
            await client.get_entity_components("OS-Stack")
        await client.close()


class TestLifecycleOverRest:
    """Lifecycle runs over ForemanClient with misbehaving responses."""

    @staticmethod
    def config():
        return ManagerConfig(lifecycle=LifecycleConfig(organization="ACME", keep_versions=1))

    @pytest.mark.asyncio
    async def test_html_publish_response_is_item_failure(self, client, katello, sleeper):
        """An HTML maintenance page on publish fails the item, not the run."""
        katello.html_publish = True

        summary = await Orchestrator(
            client, self.config(), stages={Stage.PUBLISH_CV}, sleep=sleeper
        ).run()

        assert summary.aborted is False
        assert summary.stage("publish-cv").failed == 1
        assert summary.finished_at is not None
        await client.close()

    @pytest.mark.asyncio
    async def test_unresolved_component_blocks_cv_cleanup(self, client, katello, sleeper):
        """An unresolvable component leaves protection incomplete, so nothing is deleted."""
        katello.orphan_component = True

        summary = await Orchestrator(
            client, self.config(), stages={Stage.CLEANUP_CV}, sleep=sleeper
        ).run()

        assert summary.stage("protect").failed == 1
        assert any("cleanup-cv" in w for w in summary.warnings)
        assert not [r for r in katello.requests if r.method == "DELETE"]
        await client.close()
