"""Tests for template similarity search on the in-process store."""
import math

import pytest

from tests.conftest import (
    Q_082,
    TEST_MODEL,
    FakeEmbedder,
    beginner_frontend_context,
    make_template,
)
from waypoint.exceptions import SearchError, StoreError
from waypoint.services.similarity_search import SimilaritySearchService
from waypoint.services.vector_store import InMemoryVectorStore


class BrokenStore(InMemoryVectorStore):
    async def search_templates(self, query_vector, similarity_threshold, match_limit, model):
        raise StoreError("database unavailable")


def _unit(angle_degrees):
    rad = math.radians(angle_degrees)
    return [math.cos(rad), math.sin(rad)]


async def _store_with_angles(angles):
    """One template per angle; similarity to [1, 0] is cos(angle)."""
    store = InMemoryVectorStore()
    for i, angle in enumerate(angles):
        await store.insert_template(make_template(template_id=f"tpl-{i}", embedding=_unit(angle)))
    return store


@pytest.mark.asyncio
async def test_hit_above_threshold(frontend_store):
    search = SimilaritySearchService(frontend_store, FakeEmbedder(default=Q_082))

    matches = await search.find_similar_templates(
        beginner_frontend_context(), similarity_threshold=0.78, match_limit=5
    )

    assert len(matches) == 1
    assert matches[0].template.template_id == "tpl-frontend"
    assert matches[0].similarity == pytest.approx(0.82, abs=1e-9)


@pytest.mark.asyncio
async def test_same_vector_misses_at_higher_threshold(frontend_store):
    search = SimilaritySearchService(frontend_store, FakeEmbedder(), dimension=2, model=TEST_MODEL)

    matches = await search.search(Q_082, similarity_threshold=0.90, match_limit=5)

    assert matches == []


@pytest.mark.asyncio
async def test_results_sorted_and_capped():
    store = await _store_with_angles([60, 10, 40, 0, 25])
    search = SimilaritySearchService(store, FakeEmbedder())

    matches = await search.search([1.0, 0.0], similarity_threshold=0.5, match_limit=3)

    scores = [m.similarity for m in matches]
    assert scores == sorted(scores, reverse=True)
    assert len(matches) == 3
    assert [m.template.template_id for m in matches] == ["tpl-3", "tpl-1", "tpl-4"]


@pytest.mark.asyncio
async def test_raising_threshold_never_adds_results():
    store = await _store_with_angles([0, 15, 30, 45, 60, 75])
    search = SimilaritySearchService(store, FakeEmbedder())

    previous = None
    for threshold in (0.0, 0.2, 0.5, 0.7, 0.9, 0.99, 1.0):
        ids = {
            m.template.template_id
            for m in await search.search([1.0, 0.0], similarity_threshold=threshold, match_limit=10)
        }
        if previous is not None:
            assert ids <= previous
        previous = ids


@pytest.mark.asyncio
async def test_zero_threshold_returns_best_n_regardless_of_score():
    store = await _store_with_angles([170, 120, 95])
    search = SimilaritySearchService(store, FakeEmbedder())

    matches = await search.search([1.0, 0.0], similarity_threshold=0, match_limit=2)

    assert [m.template.template_id for m in matches] == ["tpl-2", "tpl-1"]
    assert all(m.similarity < 0 for m in matches)


@pytest.mark.asyncio
async def test_ties_broken_by_usage_then_id(store):
    await store.insert_template(make_template(template_id="b", usage_count=1))
    await store.insert_template(make_template(template_id="c", usage_count=5))
    await store.insert_template(make_template(template_id="a", usage_count=5))
    search = SimilaritySearchService(store, FakeEmbedder())

    matches = await search.search([1.0, 0.0], similarity_threshold=0.5, match_limit=5)

    assert [m.template.template_id for m in matches] == ["a", "c", "b"]


@pytest.mark.asyncio
async def test_templates_from_other_model_are_excluded(store):
    await store.insert_template(make_template(template_id="old", model="legacy-model"))
    await store.insert_template(make_template(template_id="none", embedding=None))
    await store.insert_template(make_template(template_id="current"))
    search = SimilaritySearchService(store, FakeEmbedder())

    matches = await search.search([1.0, 0.0], similarity_threshold=0, match_limit=5)

    assert [m.template.template_id for m in matches] == ["current"]


@pytest.mark.asyncio
async def test_empty_library_is_a_miss_not_an_error(store):
    search = SimilaritySearchService(store, FakeEmbedder())
    assert await search.search([1.0, 0.0], similarity_threshold=0.78, match_limit=5) == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "vector",
    [
        [1.0, 0.0, 0.0],
        [1.0],
        [float("nan"), 1.0],
        [float("inf"), 0.0],
        [0.0, 0.0],
        ["a", "b"],
        None,
    ],
)
async def test_malformed_query_vector(frontend_store, vector):
    search = SimilaritySearchService(frontend_store, FakeEmbedder())

    with pytest.raises(SearchError) as exc_info:
        await search.search(vector, similarity_threshold=0.5, match_limit=5)

    assert exc_info.value.malformed_query is True


@pytest.mark.asyncio
async def test_store_failure_becomes_search_error():
    search = SimilaritySearchService(BrokenStore(), FakeEmbedder())

    with pytest.raises(SearchError) as exc_info:
        await search.search([1.0, 0.0], similarity_threshold=0.5, match_limit=5)

    assert exc_info.value.malformed_query is False


@pytest.mark.asyncio
@pytest.mark.parametrize("threshold,limit", [(-0.1, 5), (1.1, 5), (0.5, 0)])
async def test_invalid_threshold_or_limit(frontend_store, threshold, limit):
    search = SimilaritySearchService(frontend_store, FakeEmbedder())

    with pytest.raises(ValueError):
        await search.search([1.0, 0.0], similarity_threshold=threshold, match_limit=limit)


@pytest.mark.asyncio
async def test_results_are_copies(frontend_store):
    search = SimilaritySearchService(frontend_store, FakeEmbedder())

    matches = await search.search([1.0, 0.0], similarity_threshold=0.5, match_limit=1)
    matches[0].template.path_data["modules"].clear()

    stored = await frontend_store.get_template("tpl-frontend")
    assert len(stored.path_data["modules"]) == 2
