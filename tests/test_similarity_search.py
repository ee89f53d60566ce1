import asyncio
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.ml.similarity_search import InMemorySimilaritySearch, StorageSimilaritySearch
from fakes import FakeStorage, make_item

CATALOG = [
    make_item("a", "u1", price=100.0, category="electronics", embedding=[1.0, 0.0], lat=41.7, lng=44.8),
    make_item("b", "u2", price=20.0, category="books", embedding=[0.8, 0.6], lat=41.6, lng=41.6),
    make_item("c", "u3", price=60.0, category="books", embedding=[0.0, 1.0]),
    make_item("d", "u4", price=60.0, category="books"),
    make_item("e", "me", price=60.0, category="books", embedding=[1.0, 0.0]),
]


def _search(**kwargs):
    params = dict(min_similarity=0.0, limit=10)
    params.update(kwargs)
    return asyncio.run(InMemorySimilaritySearch(CATALOG).search([1.0, 0.0], **params))


def test_ranked_by_similarity_with_floor_and_limit():
    hits = _search(min_similarity=0.5, exclude_user_id="me")
    assert [h.item.id for h in hits] == ["a", "b"]
    assert hits[0].similarity == pytest.approx(1.0)
    assert hits[1].similarity == pytest.approx(0.8)

    assert [h.item.id for h in _search(limit=1, exclude_user_id="me")] == ["a"]


def test_hard_filters():
    assert [h.item.id for h in _search(category_ids=["books"], exclude_user_id="me")] == ["b", "c"]
    assert [h.item.id for h in _search(min_price=50, exclude_user_id="me")] == ["a", "c"]
    assert [h.item.id for h in _search(near=(41.7, 44.8), radius_km=10)] == ["a"]


def test_category_weighted_variant_blends_instead_of_filtering():
    hits = _search(category_ids=["books"], category_weight=0.5, exclude_user_id="me")
    by_id = {h.item.id: h.similarity for h in hits}
    assert set(by_id) == {"a", "b", "c"}
    assert by_id["b"] == pytest.approx(0.9)
    assert by_id["a"] == pytest.approx(0.5)
    assert by_id["c"] == pytest.approx(0.5)


def test_degenerate_queries():
    search = InMemorySimilaritySearch(CATALOG)
    assert asyncio.run(search.search([], min_similarity=0, limit=5)) == []
    assert asyncio.run(search.search([0.0, 0.0], min_similarity=0, limit=5)) == []
    assert asyncio.run(search.search([1.0, 0.0, 0.0], min_similarity=0, limit=5)) == []


def test_storage_backed_search_loads_embedded_candidates():
    storage = FakeStorage(candidates=CATALOG)
    hits = asyncio.run(
        StorageSimilaritySearch(storage).search([1.0, 0.0], min_similarity=0.5, limit=5, exclude_user_id="me")
    )
    assert [h.item.id for h in hits] == ["a", "b"]


def test_storage_backed_search_raises_on_source_error():
    storage = FakeStorage(candidates=CATALOG, failing={"get_candidate_items"})
    with pytest.raises(RuntimeError):
        asyncio.run(StorageSimilaritySearch(storage).search([1.0, 0.0], min_similarity=0.5, limit=5))


def test_price_floor_compares_in_reference_units():
    search = InMemorySimilaritySearch([
        make_item("usd", "u5", price=30.0, currency="USD", embedding=[1.0, 0.0]),
        make_item("gel", "u6", price=40.0, currency="GEL", embedding=[1.0, 0.0]),
    ])
    rates = {"GEL": 1.0, "USD": 2.7}
    hits = asyncio.run(search.search([1.0, 0.0], min_similarity=0.0, limit=5, min_price=50, rate_table=rates))
    assert [h.item.id for h in hits] == ["usd"]
