"""Tests for the HTTP API: roadmaps, templates, embeddings and health."""
import pytest
from httpx import AsyncClient

from tests.conftest import FakeGenerator, make_items
from waypoint.config import settings
from waypoint.exceptions import GenerationError, GenerationTimeoutError, StoreError
from waypoint.services.embedding_jobs import embedding_job_manager

PROFILE = {
    "goals_text": "beginner frontend HTML CSS",
    "skills_text": "HTML, CSS",
    "experience_level": "beginner",
    "time_available": 5,
}


# ---------------------------------------------------------------------------
# Root / health
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_root(client: AsyncClient):
    resp = await client.get("/")
    assert resp.status_code == 200
    assert resp.json()["name"] == "Waypoint API"


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/api/health/")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["database"] == "ok"
    assert data["embedding_service"] == "ok"
    assert data["templates_count"] == 1
    assert "X-Process-Time" in resp.headers


# ---------------------------------------------------------------------------
# Roadmaps
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_generate_roadmap_from_template(client: AsyncClient, api_generator: FakeGenerator):
    resp = await client.post(
        "/api/roadmaps/generate", json={**PROFILE, "similarity_threshold": 0.78}
    )

    assert resp.status_code == 200
    data = resp.json()
    assert data["source"] == "template"
    assert data["template_id"] == "tpl-frontend"
    assert data["similarity"] == pytest.approx(0.82)
    assert data["phases"] == ["query_built", "searching", "hit", "customizing", "done"]
    assert data["roadmap"]["metadata"]["generation_method"] == "template_customization"
    assert api_generator.calls == []


@pytest.mark.asyncio
async def test_generate_roadmap_on_miss(client: AsyncClient, frontend_store):
    resp = await client.post(
        "/api/roadmaps/generate", json={**PROFILE, "similarity_threshold": 0.9}
    )

    assert resp.status_code == 200
    data = resp.json()
    assert data["source"] == "generated"
    assert data["template_id"] is None
    assert data["saved_template_id"] is not None
    saved = await frontend_store.get_template(data["saved_template_id"])
    assert saved.usage_count == 1


@pytest.mark.asyncio
async def test_generation_failure_maps_to_502(client: AsyncClient, api_generator: FakeGenerator):
    api_generator.error = GenerationError("model overloaded")

    resp = await client.post("/api/roadmaps/generate", json={**PROFILE, "similarity_threshold": 0.95})

    assert resp.status_code == 502
    assert resp.json()["error_type"] == "GenerationError"


@pytest.mark.asyncio
async def test_generation_timeout_maps_to_504(client: AsyncClient, api_generator: FakeGenerator):
    api_generator.error = GenerationTimeoutError("too slow")

    resp = await client.post("/api/roadmaps/generate", json={**PROFILE, "similarity_threshold": 0.95})

    assert resp.status_code == 504


@pytest.mark.asyncio
async def test_invalid_threshold_rejected(client: AsyncClient):
    resp = await client.post("/api/roadmaps/generate", json={**PROFILE, "similarity_threshold": 1.5})
    assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_search_with_profile(client: AsyncClient):
    resp = await client.post(
        "/api/templates/search", json={**PROFILE, "similarity_threshold": 0.78, "match_limit": 3}
    )

    assert resp.status_code == 200
    data = resp.json()
    assert data["total_results"] == 1
    assert data["similarity_threshold"] == 0.78
    assert data["match_limit"] == 3
    assert data["matches"][0]["template"]["template_id"] == "tpl-frontend"


@pytest.mark.asyncio
async def test_search_with_zero_threshold(client: AsyncClient):
    resp = await client.post(
        "/api/templates/search",
        json={"query_vector": [0.0, 1.0], "similarity_threshold": 0, "match_limit": 5},
    )

    assert resp.status_code == 200
    matches = resp.json()["matches"]
    assert len(matches) == 1
    assert matches[0]["similarity"] == pytest.approx(0.0, abs=1e-9)


@pytest.mark.asyncio
async def test_search_with_malformed_vector(client: AsyncClient):
    resp = await client.post(
        "/api/templates/search",
        json={"query_vector": [1.0, 0.0, 0.0], "similarity_threshold": 0.5},
    )

    assert resp.status_code == 422
    assert resp.json()["error_type"] == "SearchError"


@pytest.mark.asyncio
async def test_search_store_failure_maps_to_503(client: AsyncClient, frontend_store, monkeypatch):
    async def broken(*args, **kwargs):
        raise StoreError("connection refused")

    monkeypatch.setattr(frontend_store, "search_templates", broken)

    resp = await client.post("/api/templates/search", json={"query_vector": [1.0, 0.0]})

    assert resp.status_code == 503
    assert resp.json()["error_type"] == "SearchError"


@pytest.mark.asyncio
async def test_popular_templates(client: AsyncClient):
    resp = await client.get("/api/templates/popular", params={"limit": 5})
    assert resp.status_code == 200
    assert [t["template_id"] for t in resp.json()] == ["tpl-frontend"]


@pytest.mark.asyncio
async def test_seed_skips_non_empty_library(client: AsyncClient):
    resp = await client.post("/api/templates/seed")
    assert resp.status_code == 200
    assert resp.json()["inserted"] == 0


@pytest.mark.asyncio
async def test_template_stats(client: AsyncClient):
    resp = await client.get("/api/templates/stats")
    assert resp.status_code == 200
    data = resp.json()
    assert data["total_templates"] == 1
    assert data["stale_templates"] == 0
    assert data["embedding_model"] == "test-embed"
    assert data["most_used_template"]["template_id"] == "tpl-frontend"


@pytest.mark.asyncio
async def test_get_template(client: AsyncClient):
    resp = await client.get("/api/templates/tpl-frontend")
    assert resp.status_code == 200
    assert resp.json()["path_data"]["roadmap_title"] == "Frontend Developer Path"


@pytest.mark.asyncio
async def test_get_unknown_template(client: AsyncClient):
    resp = await client.get("/api/templates/does-not-exist")
    assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Embeddings
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_coverage(client: AsyncClient, frontend_store):
    for item in make_items(4):
        frontend_store.add_content(item)

    resp = await client.get("/api/embeddings/coverage")

    assert resp.status_code == 200
    data = resp.json()
    assert data["model"] == settings.EMBEDDING_MODEL
    assert data["content_types"][0]["total_items"] == 4
    assert data["content_types"][0]["items_with_embeddings"] == 0


@pytest.mark.asyncio
async def test_status_before_any_run(client: AsyncClient):
    resp = await client.get("/api/embeddings/status")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_stop_without_run(client: AsyncClient):
    resp = await client.post("/api/embeddings/stop")
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_embedding_run_lifecycle(client: AsyncClient, frontend_store, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "RESULTS_DIR", str(tmp_path))
    for item in make_items(3):
        frontend_store.add_content(item)

    resp = await client.post(
        "/api/embeddings/run", json={"batch_size": 10, "item_delay": 0, "batch_delay": 0}
    )
    assert resp.status_code == 202

    await embedding_job_manager.wait()

    resp = await client.get("/api/embeddings/status")
    assert resp.status_code == 200
    data = resp.json()
    assert data["phase"] == "completed"
    assert data["summary"]["success"] == 3
    assert data["artifact_path"].startswith(str(tmp_path))

    coverage = (await client.get("/api/embeddings/coverage")).json()
    assert coverage["content_types"][0]["items_with_embeddings"] == 3


@pytest.mark.asyncio
async def test_concurrent_run_rejected_and_stop(client: AsyncClient, frontend_store, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "RESULTS_DIR", str(tmp_path))
    for item in make_items(3):
        frontend_store.add_content(item)

    first = await client.post(
        "/api/embeddings/run", json={"batch_size": 1, "item_delay": 0.2, "batch_delay": 0}
    )
    assert first.status_code == 202

    second = await client.post("/api/embeddings/run", json={})
    assert second.status_code == 409

    stop = await client.post("/api/embeddings/stop")
    assert stop.status_code == 200
    assert stop.json()["stop_requested"] is True

    await embedding_job_manager.wait()
    data = (await client.get("/api/embeddings/status")).json()
    assert data["phase"] == "completed"
    assert data["summary"]["stopped_early"] is True
    assert data["summary"]["success"] < 3
