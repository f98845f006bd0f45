"""
Katello REST client for content view lifecycle operations.

This module implements RemoteStateClient against the Foreman/Katello API:
- /katello/api/ping for health
- /katello/api/content_views for entities, publish and components
- /katello/api/content_view_versions for promote and delete
- /foreman_tasks/api/tasks for background task status

Invariants:
    - Content view and version ids are looked up fresh for every mutating
      call, so a publish can never leave a stale version id behind
    - Organization and lifecycle environment ids are cached (the workflow
      never mutates them)
    - Secrets are never logged

How to change safely:
    - Keep response parsing in the pydantic models below
    - Map every new HTTP failure mode onto the errors module
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, Field, ValidationError

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
from .settings import ForemanSettings

logger = logging.getLogger(__name__)

KATELLO_API = "/katello/api"
TASKS_API = "/foreman_tasks/api/tasks"

_Payload = TypeVar("_Payload", bound=BaseModel)


class _NamedRef(BaseModel):
    id: int
    name: str = ""


class _VersionPayload(BaseModel):
    id: int
    version: str
    environment_ids: List[int] = Field(default_factory=list)


class _ContentViewPayload(BaseModel):
    id: int
    name: str
    composite: bool = False
    latest_version: Optional[str] = None
    latest_version_id: Optional[int] = None
    latest_version_environments: List[_NamedRef] = Field(default_factory=list)
    environments: List[_NamedRef] = Field(default_factory=list)
    versions: List[_VersionPayload] = Field(default_factory=list)

    def to_entity(self) -> Entity:
        env_names = {env.id: env.name for env in self.environments}
        env_names.update({env.id: env.name for env in self.latest_version_environments})
        versions = tuple(
            Version(
                entity_name=self.name,
                version_number=v.version,
                environments=frozenset(
                    env_names[env_id] for env_id in v.environment_ids if env_id in env_names
                ),
                version_id=v.id,
            )
            for v in self.versions
        )
        return Entity(
            name=self.name,
            composite=self.composite,
            latest_version=self.latest_version,
            version_environments=frozenset(env.name for env in self.latest_version_environments),
            versions=versions,
            entity_id=self.id,
        )


class _ComponentVersionPayload(BaseModel):
    id: int
    version: str
    content_view_id: Optional[int] = None
    content_view: Optional[_NamedRef] = None


class _TaskPayload(BaseModel):
    id: Optional[str] = None
    label: str = ""
    state: str = "planned"


def _parse(model: Type[_Payload], raw: Any, operation: str) -> _Payload:
    """Validate a response payload, mapping schema mismatches to RemoteOperationError."""
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise RemoteOperationError(
            f"Unexpected {model.__name__.lstrip('_')} in response to {operation}: {e}",
            operation=operation,
        ) from e


class ForemanClient:
    """
    Async Katello API client.

    Example:
        >>> client = ForemanClient(ForemanSettings(), organization="ACME")
        >>> entities = await client.list_entities("ACME")
        >>> await client.close()
    """

    def __init__(
        self,
        settings: ForemanSettings,
        organization: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            settings: Connection settings
            organization: Organization all calls are scoped to
            transport: Optional httpx transport (tests use MockTransport)
        """
        self._settings = settings
        self._organization = organization
        self._http = httpx.AsyncClient(
            base_url=settings.api_base,
            auth=(settings.username, settings.password.get_secret_value()),
            verify=settings.validate_certs,
            timeout=settings.timeout,
            headers={"Accept": "application/json"},
            transport=transport,
        )
        self._org_ids: Dict[str, int] = {}
        self._env_ids: Dict[str, int] = {}

    async def __aenter__(self) -> ForemanClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._http.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        resource: str = "resource",
    ) -> Any:
        try:
            response = await self._http.request(method, path, params=params, json=json)
        except (httpx.ConnectError, httpx.TimeoutException) as e:
            raise ServerConnectionError(
                f"Cannot reach {self._settings.api_base}: {e}",
                address=self._settings.api_base,
            ) from e
        except httpx.HTTPError as e:
            raise RemoteOperationError(f"{method} {path} failed: {e}", operation=path) from e

        if response.status_code == 404:
            raise NotFoundError(f"{method} {path} returned 404", resource, path)
        if response.status_code >= 400:
            raise RemoteOperationError(
                f"{method} {path} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
                operation=path,
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise RemoteOperationError(
                f"{method} {path} returned a non-JSON body: {response.text[:200]}",
                status_code=response.status_code,
                operation=path,
            ) from e

    async def health_check(self) -> bool:
        data = await self._request("GET", f"{KATELLO_API}/ping", resource="ping")
        status = data.get("status", "ok") if isinstance(data, dict) else "ok"
        if status != "ok":
            logger.warning(f"Server reports status {status!r}")
        return status == "ok"

    async def _organization_id(self, organization: str) -> int:
        if organization in self._org_ids:
            return self._org_ids[organization]

        data = await self._request(
            "GET",
            "/api/organizations",
            params={"search": f'name="{organization}"'},
            resource="organization",
        )
        for result in data.get("results", []):
            if result.get("name") == organization:
                self._org_ids[organization] = int(result["id"])
                return self._org_ids[organization]
        raise NotFoundError(
            f"Organization '{organization}' not found", "organization", organization
        )

    async def _environment_id(self, environment: str) -> int:
        if environment in self._env_ids:
            return self._env_ids[environment]

        org_id = await self._organization_id(self._organization)
        data = await self._request(
            "GET",
            f"{KATELLO_API}/organizations/{org_id}/environments",
            params={"name": environment},
            resource="environment",
        )
        for result in data.get("results", []):
            if result.get("name") == environment:
                self._env_ids[environment] = int(result["id"])
                return self._env_ids[environment]
        raise NotFoundError(
            f"Lifecycle environment '{environment}' not found", "environment", environment
        )

    async def _content_views(
        self, organization: str, name: Optional[str] = None
    ) -> List[_ContentViewPayload]:
        org_id = await self._organization_id(organization)
        params: Dict[str, Any] = {"organization_id": org_id, "full_result": "true"}
        if name is not None:
            params["name"] = name
        path = f"{KATELLO_API}/content_views"
        data = await self._request("GET", path, params=params, resource="content_view")
        return [_parse(_ContentViewPayload, r, path) for r in data.get("results", [])]

    async def _content_view(self, name: str) -> _ContentViewPayload:
        for cv in await self._content_views(self._organization, name=name):
            if cv.name == name:
                return cv
        raise NotFoundError(f"Content view '{name}' not found", "content_view", name)

    async def list_entities(self, organization: str) -> List[Entity]:
        views = await self._content_views(organization)
        logger.debug(f"Fetched {len(views)} content views for {organization}")
        return [cv.to_entity() for cv in views]

    async def get_entity_components(self, composite_name: str) -> List[ComponentRef]:
        cv = await self._content_view(composite_name)
        if cv.latest_version_id is None:
            return []

        path = f"{KATELLO_API}/content_view_versions/{cv.latest_version_id}"
        data = await self._request("GET", path, resource="content_view_version")
        names: Dict[int, str] = {}
        components = []
        for raw in data.get("component_view_versions", []):
            component = _parse(_ComponentVersionPayload, raw, path)
            ref = component.content_view
            member = ref.name if ref is not None else ""
            if not member:
                view_id = ref.id if ref is not None else component.content_view_id
                if not names:
                    names = {
                        view.id: view.name for view in await self._content_views(self._organization)
                    }
                member = names.get(view_id, "")
            # Every component must resolve to a member content view
            if not member:
                raise NotFoundError(
                    f"Content view of component version {component.id} "
                    f"({component.version}) in '{composite_name}' not found",
                    "content_view",
                    str(view_id),
                )
            components.append(ComponentRef(member_name=member, member_version=component.version))
        return components

    async def trigger_publish(
        self,
        entity_name: str,
        description: Optional[str] = None,
    ) -> OperationHandle:
        cv = await self._content_view(entity_name)
        body = {"description": description} if description else {}
        data = await self._request(
            "POST",
            f"{KATELLO_API}/content_views/{cv.id}/publish",
            json=body,
            resource="content_view",
        )
        return self._handle(data, "publish")

    async def trigger_promote(
        self,
        entity_name: str,
        version: VersionLike,
        environment: str,
    ) -> OperationHandle:
        version_id = await self._version_id(entity_name, version)
        env_id = await self._environment_id(environment)
        data = await self._request(
            "POST",
            f"{KATELLO_API}/content_view_versions/{version_id}/promote",
            json={"environment_ids": [env_id], "force": False},
            resource="content_view_version",
        )
        return self._handle(data, "promote")

    async def delete_version(self, entity_name: str, version: VersionLike) -> None:
        version_id = await self._version_id(entity_name, version)
        await self._request(
            "DELETE",
            f"{KATELLO_API}/content_view_versions/{version_id}",
            resource="content_view_version",
        )

    async def count_running_tasks(self, label: str) -> int:
        try:
            data = await self._request(
                "GET",
                TASKS_API,
                params={"search": f"label = {label} and state = running", "per_page": 1},
                resource="tasks",
            )
        except NotFoundError as e:
            raise TaskStatusUnavailableError(
                "Task status endpoint not available", label=label
            ) from e
        if "subtotal" in data:
            return int(data["subtotal"])
        return len(data.get("results", []))

    async def _version_id(self, entity_name: str, version: VersionLike) -> int:
        cv = await self._content_view(entity_name)
        key = version_key(version)
        for v in cv.versions:
            if version_key(v.version) == key:
                return v.id
        raise NotFoundError(
            f"Version {format_version(version)} of '{entity_name}' not found",
            "content_view_version",
            f"{entity_name}:{format_version(version)}",
        )

    @staticmethod
    def _handle(data: Any, operation: str) -> OperationHandle:
        task = _parse(_TaskPayload, data if isinstance(data, dict) else {}, operation)
        return OperationHandle(
            task_id=task.id,
            label=task.label or operation,
            state=task.state,
            details={"operation": operation},
        )
