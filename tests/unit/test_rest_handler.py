"""Tests for the generic REST handler and its HTTP client."""

from __future__ import annotations

import json
from typing import Annotated, ClassVar

import httpx
import pytest
import respx
from httpx import Response

from saas_provisioner.core.scope import Scope
from saas_provisioner.core.secret import Secret, secret
from saas_provisioner.core.state import MemoryStateStore
from saas_provisioner.engine.engine import ResourceEngine
from saas_provisioner.engine.registry import ResourceKindRegistry
from saas_provisioner.errors import ConflictError, NotFoundError, ProviderError
from saas_provisioner.providers.http import ApiClient
from saas_provisioner.providers.rest import RestResourceHandler
from saas_provisioner.resources.base import Resource, ResourceOutput
from saas_provisioner.resources.markers import Immutable, NaturalKey

BASE = "https://api.example.test/v1"
PROJECTS = f"{BASE}/orgs/acme/projects"


class Project(Resource):
    kind: ClassVar[str] = "acme::Project"
    org: str
    name: Annotated[str, NaturalKey()]
    platform: Annotated[str, Immutable()] = "python"
    description: str | None = None
    webhook_secret: Secret | None = None


class ProjectOutput(Project, ResourceOutput):
    id: str
    created: str | None = None


class ProjectHandler(RestResourceHandler[Project]):
    collection_path = "/orgs/{org}/projects"


class Label(Resource):
    kind: ClassVar[str] = "acme::Label"
    text: str


class LabelOutput(Label, ResourceOutput):
    id: str


class LabelHandler(RestResourceHandler[Label]):
    collection_path = "/labels"


def _engine(client: ApiClient) -> tuple[ResourceEngine, MemoryStateStore]:
    registry = ResourceKindRegistry()
    registry.register(Project, ProjectHandler(client), output=ProjectOutput)
    registry.register(Label, LabelHandler(client), output=LabelOutput)
    store = MemoryStateStore()
    return ResourceEngine(store=store, registry=registry), store


def _body(route: respx.Route) -> dict:
    return json.loads(route.calls.last.request.content)


@pytest.mark.asyncio
class TestRestResourceHandler:
    @respx.mock
    async def test_create_posts_payload(self) -> None:
        route = respx.post(PROJECTS).mock(
            return_value=Response(
                201, json={"id": "p-1", "created": "2024-05-01", "status": "active"}
            )
        )
        async with ApiClient(BASE, token=secret("api-token")) as client:
            engine, _ = _engine(client)
            out = await engine.apply(
                Scope("run"), "acme::Project", "web", Project(org="acme", name="web")
            )

        assert out.id == "p-1"
        assert out.created == "2024-05-01"
        assert out.platform == "python"
        assert _body(route) == {"org": "acme", "name": "web", "platform": "python"}
        assert route.calls.last.request.headers["Authorization"] == "Bearer api-token"

    @respx.mock
    async def test_secrets_revealed_only_in_request(self) -> None:
        route = respx.post(PROJECTS).mock(return_value=Response(201, json={"id": "p-1"}))
        async with ApiClient(BASE) as client:
            engine, _ = _engine(client)
            out = await engine.apply(
                Scope("run"),
                "acme::Project",
                "web",
                Project(org="acme", name="web", webhook_secret=secret("whsec-123")),
            )

        assert _body(route)["webhook_secret"] == "whsec-123"
        assert "whsec-123" not in out.model_dump_json()
        assert out.webhook_secret.reveal() == "whsec-123"

    @respx.mock
    async def test_update_excludes_immutable_fields(self) -> None:
        respx.post(PROJECTS).mock(return_value=Response(201, json={"id": "p-1"}))
        patch = respx.patch(f"{PROJECTS}/p-1").mock(
            return_value=Response(200, json={"id": "p-1", "platform": "node"})
        )
        async with ApiClient(BASE) as client:
            engine, store = _engine(client)
            await engine.apply(
                Scope("run"), "acme::Project", "web", Project(org="acme", name="web")
            )
            out = await engine.apply(
                Scope("run"),
                "acme::Project",
                "web",
                Project(org="acme", name="web", platform="node", description="Web app"),
            )

        assert _body(patch) == {"org": "acme", "name": "web", "description": "Web app"}
        assert out.platform == "node"
        assert out.id == "p-1"
        inst = store.get("run", "acme::Project", "web")
        assert inst is not None
        assert inst.output["description"] == "Web app"

    @respx.mock
    async def test_conflict_with_adopt_fetches_existing(self) -> None:
        respx.post(PROJECTS).mock(return_value=Response(409, json={"detail": "exists"}))
        get = respx.get(f"{PROJECTS}/web").mock(
            return_value=Response(200, json={"id": "p-9", "created": "2023-01-01"})
        )
        async with ApiClient(BASE) as client:
            engine, store = _engine(client)
            out = await engine.apply(
                Scope("run"),
                "acme::Project",
                "web",
                Project(org="acme", name="web", adopt=True),
            )

        assert get.called
        assert out.id == "p-9"
        assert store.get("run", "acme::Project", "web") is not None

    @respx.mock
    async def test_conflict_without_adopt_propagates(self) -> None:
        respx.post(PROJECTS).mock(return_value=Response(409, json={"detail": "exists"}))
        async with ApiClient(BASE) as client:
            engine, store = _engine(client)
            with pytest.raises(ConflictError) as exc_info:
                await engine.apply(
                    Scope("run"), "acme::Project", "web", Project(org="acme", name="web")
                )

        assert exc_info.value.status_code == 409
        assert store.list_declared("run") == []

    @respx.mock
    async def test_adopt_requires_natural_key(self) -> None:
        respx.post(f"{BASE}/labels").mock(return_value=Response(409))
        async with ApiClient(BASE) as client:
            engine, _ = _engine(client)
            with pytest.raises(ProviderError, match="NaturalKey"):
                await engine.apply(Scope("run"), "acme::Label", "l", Label(text="x", adopt=True))

    @respx.mock
    async def test_delete_treats_404_as_success(self) -> None:
        respx.post(PROJECTS).mock(return_value=Response(201, json={"id": "p-1"}))
        delete = respx.delete(f"{PROJECTS}/p-1").mock(return_value=Response(404))
        async with ApiClient(BASE) as client:
            engine, store = _engine(client)
            scope = Scope("run")
            await engine.apply(scope, "acme::Project", "web", Project(org="acme", name="web"))
            result = await engine.destroy(scope)

        assert delete.called
        assert result.ok
        assert result.deleted == ["web"]
        assert store.list_scopes() == []

    @respx.mock
    async def test_delete_failure_is_reported(self) -> None:
        respx.post(PROJECTS).mock(return_value=Response(201, json={"id": "p-1"}))
        respx.delete(f"{PROJECTS}/p-1").mock(return_value=Response(500, text="internal"))
        async with ApiClient(BASE) as client:
            engine, store = _engine(client)
            scope = Scope("run")
            await engine.apply(scope, "acme::Project", "web", Project(org="acme", name="web"))
            result = await engine.destroy(scope)

        assert not result.ok
        assert "500" in result.failures[0].error
        assert store.list_scopes() == []


@pytest.mark.asyncio
class TestApiClient:
    @respx.mock
    async def test_status_mapping(self) -> None:
        respx.get(f"{BASE}/missing").mock(return_value=Response(404, text="no such thing"))
        respx.get(f"{BASE}/taken").mock(return_value=Response(409))
        respx.get(f"{BASE}/broken").mock(return_value=Response(503, text="unavailable"))

        async with ApiClient(BASE) as client:
            with pytest.raises(NotFoundError, match="no such thing"):
                await client.get("/missing")
            with pytest.raises(ConflictError):
                await client.get("/taken")
            with pytest.raises(ProviderError) as exc_info:
                await client.get("/broken")

        assert exc_info.value.status_code == 503
        assert not isinstance(exc_info.value, (NotFoundError, ConflictError))

    @respx.mock
    async def test_transport_error(self) -> None:
        respx.get(f"{BASE}/down").mock(side_effect=httpx.ConnectError("connection refused"))
        async with ApiClient(BASE) as client:
            with pytest.raises(ProviderError, match="connection refused") as exc_info:
                await client.get("/down")
        assert exc_info.value.status_code is None

    @respx.mock
    async def test_empty_body_returns_none(self) -> None:
        respx.delete(f"{BASE}/things/1").mock(return_value=Response(204))
        async with ApiClient(BASE) as client:
            assert await client.delete("/things/1") is None

    @respx.mock
    async def test_params_and_json(self) -> None:
        route = respx.put(f"{BASE}/things/1").mock(return_value=Response(200, json={"ok": True}))
        async with ApiClient(BASE, headers={"X-Org": "acme"}) as client:
            assert await client.put("/things/1", json={"key": secret("v")}) == {"ok": True}

        request = route.calls.last.request
        assert json.loads(request.content) == {"key": "v"}
        assert request.headers["X-Org"] == "acme"
