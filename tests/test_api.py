"""
API tests for the resolution, staging, cache, graph and curation endpoints.

Every trigger endpoint requires the internal bearer token; graph reads are
public. Error bodies follow the unified APIError schema.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

from app.core.config import get_settings

ENTITY = {
    "name": "Sam Altman",
    "type": "Person",
    "episodeId": "ep-1",
    "episodeTitle": "Episode 1",
}
RELATIONSHIP = {
    "sourceName": "Sam Altman",
    "targetName": "OpenAI",
    "description": "CEO of",
    "episodeId": "ep-1",
    "episodeTitle": "Episode 1",
}


async def _stage_relationship(client: AsyncClient, headers: dict[str, str]) -> None:
    response = await client.post(
        "/api/staging/relationships",
        json={"relationships": [RELATIONSHIP]},
        headers=headers,
    )
    assert response.status_code == 200


class TestHealth:
    """Test /health endpoint."""

    @pytest.mark.asyncio
    async def test_health(self, async_client: AsyncClient) -> None:
        response = await async_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestAuthentication:
    """Bearer token checks on protected endpoints."""

    @pytest.mark.asyncio
    async def test_missing_token_rejected_without_work(
        self, async_client: AsyncClient, auth_headers: dict[str, str]
    ) -> None:
        """An unauthenticated trigger returns 401 and processes nothing."""
        await _stage_relationship(async_client, auth_headers)

        response = await async_client.post("/api/resolve-relationships", json={})

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert response.json()["detail"]["error"]["code"] == "UNAUTHORIZED"

        stats = await async_client.get("/api/staging-stats", headers=auth_headers)
        assert stats.json()["stagedRelationships"] == 1

    @pytest.mark.asyncio
    async def test_wrong_token_rejected(self, async_client: AsyncClient) -> None:
        response = await async_client.get(
            "/api/staging-stats", headers={"Authorization": "Bearer wrong"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_token_checked_before_body(self, async_client: AsyncClient) -> None:
        """An invalid body without a token is still a 401."""
        response = await async_client.post(
            "/api/fix-relationships", json={"action": "nonsense"}
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_fails_closed_without_configured_key(
        self, app_env: None, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """With no key configured every protected call is rejected."""
        from app.main import app
        from app.services import services_lifespan

        monkeypatch.delenv("APP_INTERNAL_API_KEY")
        get_settings.cache_clear()

        async with services_lifespan(MagicMock()):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                response = await client.get(
                    "/api/staging-stats", headers={"Authorization": "Bearer some-token"}
                )
                public = await client.get("/api/graph")

        assert response.status_code == 401
        assert public.status_code == 200

    @pytest.mark.asyncio
    async def test_graph_reads_are_public(self, async_client: AsyncClient) -> None:
        response = await async_client.get("/api/graph")
        assert response.status_code == 200
        assert response.json() == {"nodes": [], "links": []}


class TestResolutionEndpoints:
    """Tests for resolution trigger endpoints."""

    @pytest.mark.asyncio
    async def test_resolve_relationships(
        self, async_client: AsyncClient, auth_headers: dict[str, str]
    ) -> None:
        await _stage_relationship(async_client, auth_headers)

        response = await async_client.post(
            "/api/resolve-relationships", json={"batchSize": 10}, headers=auth_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["result"]["processed"] == 1
        assert data["result"]["created"] == 1
        assert data["stats"]["processedRelationships"] == 1

        rerun = await async_client.post(
            "/api/resolve-relationships", json={}, headers=auth_headers
        )
        assert rerun.json()["result"]["processed"] == 0

    @pytest.mark.asyncio
    async def test_fix_relationships_invalid_action(
        self, async_client: AsyncClient, auth_headers: dict[str, str]
    ) -> None:
        response = await async_client.post(
            "/api/fix-relationships", json={"action": "nonsense"}, headers=auth_headers
        )
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_fix_relationships_both(
        self, async_client: AsyncClient, auth_headers: dict[str, str]
    ) -> None:
        await _stage_relationship(async_client, auth_headers)

        response = await async_client.post(
            "/api/fix-relationships", json={"action": "both"}, headers=auth_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["action"] == "both"
        assert data["stagedResult"]["created"] == 1
        assert data["obviousResult"]["created"] == 0
        assert data["result"] is None
        assert data["message"] == (
            "Fixed 1 staged relationships and created 0 obvious relationships"
        )

    @pytest.mark.asyncio
    async def test_fix_relationships_single_action(
        self, async_client: AsyncClient, auth_headers: dict[str, str]
    ) -> None:
        response = await async_client.post(
            "/api/fix-relationships", json={"action": "fix-staged"}, headers=auth_headers
        )
        data = response.json()
        assert data["message"] == "Fixed 0 relationships, 0 errors"
        assert data["result"]["processed"] == 0

    @pytest.mark.asyncio
    async def test_resolve_entities(
        self, async_client: AsyncClient, auth_headers: dict[str, str]
    ) -> None:
        await async_client.post(
            "/api/staging/entities",
            json={"entities": [ENTITY, {**ENTITY, "name": "sam  altman"}]},
            headers=auth_headers,
        )

        response = await async_client.post(
            "/api/resolve-entities", json={"entityBatchSize": 10}, headers=auth_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["entityResult"]["created"] == 1
        assert data["entityResult"]["merged"] == 1
        assert data["stats"]["stagedEntities"] == 0
        assert "cacheStats" in data

    @pytest.mark.asyncio
    async def test_staging_stats(
        self, async_client: AsyncClient, auth_headers: dict[str, str]
    ) -> None:
        response = await async_client.get("/api/staging-stats", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["stagedEntities"] == 0
        assert data["cacheStats"] == {"size": 0, "hits": 0, "misses": 0}


class TestStagingEndpoints:
    """Tests for staging intake and maintenance endpoints."""

    @pytest.mark.asyncio
    async def test_stage_entities(
        self, async_client: AsyncClient, auth_headers: dict[str, str]
    ) -> None:
        response = await async_client.post(
            "/api/staging/entities", json={"entities": [ENTITY]}, headers=auth_headers
        )
        assert response.status_code == 200
        assert response.json()["count"] == 1

    @pytest.mark.asyncio
    async def test_stage_rejects_empty_list(
        self, async_client: AsyncClient, auth_headers: dict[str, str]
    ) -> None:
        response = await async_client.post(
            "/api/staging/entities", json={"entities": []}, headers=auth_headers
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_reset_and_purge(
        self, async_client: AsyncClient, auth_headers: dict[str, str]
    ) -> None:
        await _stage_relationship(async_client, auth_headers)
        await async_client.post(
            "/api/resolve-relationships", json={}, headers=auth_headers
        )

        reset = await async_client.post(
            "/api/staging/reset", json={"kind": "relationship"}, headers=auth_headers
        )
        assert reset.json() == {"kind": "relationship", "reset": 1}

        purge = await async_client.post(
            "/api/staging/purge", json={"olderThanDays": 0}, headers=auth_headers
        )
        assert purge.status_code == 200
        # Reset rows are unprocessed again, so nothing is purged
        assert purge.json()["relationshipsRemoved"] == 0


class TestCacheEndpoints:
    """Tests for cache invalidation endpoints."""

    @pytest.mark.asyncio
    async def test_clear_missing_key(
        self, async_client: AsyncClient, auth_headers: dict[str, str]
    ) -> None:
        response = await async_client.post(
            "/api/cache/clear", json={"key": "graph"}, headers=auth_headers
        )
        assert response.status_code == 404
        assert response.json()["detail"]["error"]["code"] == "CACHE_KEY_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_clear_cached_key(
        self, async_client: AsyncClient, auth_headers: dict[str, str]
    ) -> None:
        await async_client.get("/api/graph")
        response = await async_client.post(
            "/api/cache/clear", json={"key": "graph"}, headers=auth_headers
        )
        assert response.status_code == 200
        assert response.json()["cleared"] == 1

    @pytest.mark.asyncio
    async def test_clear_tag(
        self, async_client: AsyncClient, auth_headers: dict[str, str]
    ) -> None:
        await async_client.get("/api/graph")
        response = await async_client.post(
            "/api/cache/clear", json={"tag": "graph-data"}, headers=auth_headers
        )
        assert response.json()["cleared"] == 1

    @pytest.mark.asyncio
    async def test_clear_requires_exactly_one_target(
        self, async_client: AsyncClient, auth_headers: dict[str, str]
    ) -> None:
        response = await async_client.post(
            "/api/cache/clear",
            json={"key": "graph", "tag": "graph-data"},
            headers=auth_headers,
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_clear_all_no_store(
        self, async_client: AsyncClient, auth_headers: dict[str, str]
    ) -> None:
        response = await async_client.post("/api/cache/clear-all", headers=auth_headers)
        assert response.status_code == 200
        assert "no-store" in response.headers["Cache-Control"]

    @pytest.mark.asyncio
    async def test_force_refresh(
        self, async_client: AsyncClient, auth_headers: dict[str, str]
    ) -> None:
        await _stage_relationship(async_client, auth_headers)
        await async_client.post(
            "/api/resolve-relationships", json={}, headers=auth_headers
        )

        response = await async_client.post("/api/force-refresh", headers=auth_headers)

        data = response.json()
        assert data["entities"] == 2
        assert data["connections"] == 1
        assert "timestamp" in data


class TestGraphEndpoints:
    """Tests for public graph reads."""

    @pytest.mark.asyncio
    async def test_graph_node_and_search(
        self, async_client: AsyncClient, auth_headers: dict[str, str]
    ) -> None:
        await _stage_relationship(async_client, auth_headers)
        await async_client.post(
            "/api/resolve-relationships", json={}, headers=auth_headers
        )

        graph = (await async_client.get("/api/graph")).json()
        assert len(graph["nodes"]) == 2
        assert graph["links"][0]["value"] == 1.0

        search = (await async_client.get("/api/search", params={"q": "openai"})).json()
        assert search["results"][0]["name"] == "OpenAI"
        node_id = search["results"][0]["id"]

        node = await async_client.get(f"/api/node/{node_id}")
        assert node.status_code == 200
        data = node.json()
        assert data["relatedNodes"][0]["name"] == "Sam Altman"
        assert data["episodes"][0]["id"] == "ep-1"

    @pytest.mark.asyncio
    async def test_unknown_node(self, async_client: AsyncClient) -> None:
        response = await async_client.get("/api/node/0123456789ab")
        assert response.status_code == 404
        assert response.json()["detail"]["error"]["code"] == "RESOURCE_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_malformed_node_id(self, async_client: AsyncClient) -> None:
        response = await async_client.get("/api/node/not-an-id")
        assert response.status_code == 400


class TestCurationEndpoints:
    """Tests for manual entity and connection endpoints."""

    @pytest.mark.asyncio
    async def test_duplicate_entity_conflict(
        self, async_client: AsyncClient, auth_headers: dict[str, str]
    ) -> None:
        body = {"name": "OpenAI", "type": "Organization"}
        first = await async_client.post("/api/entity", json=body, headers=auth_headers)
        second = await async_client.post(
            "/api/entity", json={**body, "name": "Open AI"}, headers=auth_headers
        )

        assert first.status_code == 200
        assert second.status_code == 409
        assert second.json()["detail"]["error"]["code"] == "ENTITY_EXISTS"

    @pytest.mark.asyncio
    async def test_invalid_entity_name(
        self, async_client: AsyncClient, auth_headers: dict[str, str]
    ) -> None:
        response = await async_client.post(
            "/api/entity", json={"name": "...", "type": "Topic"}, headers=auth_headers
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_connection_self_loop(
        self, async_client: AsyncClient, auth_headers: dict[str, str]
    ) -> None:
        created = await async_client.post(
            "/api/entity", json={"name": "Alpha", "type": "Topic"}, headers=auth_headers
        )
        entity_id = created.json()["entityId"]

        response = await async_client.post(
            "/api/connection",
            json={"sourceEntityId": entity_id, "targetEntityId": entity_id},
            headers=auth_headers,
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_connection_lifecycle(
        self, async_client: AsyncClient, auth_headers: dict[str, str]
    ) -> None:
        ids = []
        for name in ("Alpha", "Beta"):
            created = await async_client.post(
                "/api/entity", json={"name": name, "type": "Topic"}, headers=auth_headers
            )
            ids.append(created.json()["entityId"])
        body = {"sourceEntityId": ids[0], "targetEntityId": ids[1]}

        first = await async_client.post("/api/connection", json=body, headers=auth_headers)
        second = await async_client.post("/api/connection", json=body, headers=auth_headers)

        assert first.json()["created"] is True
        assert second.json()["created"] is False
        assert second.json()["message"] == "Connection already exists"

        connection_id = first.json()["connectionId"]
        deleted = await async_client.delete(
            f"/api/connection/{connection_id}", headers=auth_headers
        )
        missing = await async_client.delete(
            f"/api/connection/{connection_id}", headers=auth_headers
        )
        assert deleted.status_code == 200
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_connection_unknown_entity(
        self, async_client: AsyncClient, auth_headers: dict[str, str]
    ) -> None:
        created = await async_client.post(
            "/api/entity", json={"name": "Alpha", "type": "Topic"}, headers=auth_headers
        )
        response = await async_client.post(
            "/api/connection",
            json={
                "sourceEntityId": created.json()["entityId"],
                "targetEntityId": "0123456789ab",
            },
            headers=auth_headers,
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_delete_entity(
        self, async_client: AsyncClient, auth_headers: dict[str, str]
    ) -> None:
        created = await async_client.post(
            "/api/entity", json={"name": "Alpha", "type": "Topic"}, headers=auth_headers
        )
        entity_id = created.json()["entityId"]

        deleted = await async_client.delete(f"/api/entity/{entity_id}", headers=auth_headers)
        node = await async_client.get(f"/api/node/{entity_id}")

        assert deleted.json() == {"success": True, "id": entity_id}
        assert node.status_code == 404
