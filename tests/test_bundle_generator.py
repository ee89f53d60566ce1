import asyncio
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.bundle_generator import BASELINE_SIMILARITY, BundleGenerator, bundle_id_for
from services.ml.similarity_search import InMemorySimilaritySearch
from services.weights import RecommendationWeights
from fakes import make_item

RATES = {"GEL": 1.0, "USD": 2.7}


def _user_items():
    return [make_item("mine-1", "me", price=100.0), make_item("mine-2", "me", price=50.0)]


def test_favorite_category_scenario_emits_single_bundle():
    pool = [
        make_item("x1", "owner-x", price=90.0, category="electronics"),
        make_item("x2", "owner-x", price=70.0, category="electronics"),
        make_item("x3", "owner-x", price=80.0, category="garden"),
        make_item("y1", "owner-y", price=60.0, category="electronics"),
    ]
    bundles = asyncio.run(
        BundleGenerator().generate(_user_items(), pool, 150.0, RATES, favorites=["electronics"], exclude_user_id="me")
    )
    assert len(bundles) == 1
    bundle = bundles[0]
    assert bundle.owner_id == "owner-x"
    assert sorted(bundle.item_ids) == ["x1", "x2"]
    assert bundle.display_price == 160.0
    assert bundle.display_currency == "GEL"
    assert bundle.favorite_category is True
    assert bundle.source == "bundle"


def test_never_pairs_items_from_different_owners():
    pool = [
        make_item("a1", "owner-a", price=80.0),
        make_item("b1", "owner-b", price=80.0),
        make_item("c1", "owner-c", price=80.0),
    ]
    bundles = asyncio.run(BundleGenerator().generate(_user_items(), pool, 150.0, RATES))
    assert bundles == []


def test_fewer_than_two_owned_items_yields_nothing():
    pool = [make_item("x1", "owner-x", price=90.0), make_item("x2", "owner-x", price=70.0)]
    single = [make_item("mine-1", "me", price=150.0)]
    assert asyncio.run(BundleGenerator().generate(single, pool, 150.0, RATES)) == []
    assert asyncio.run(BundleGenerator().generate([], pool, 150.0, RATES)) == []


def test_requesting_user_items_are_never_bundled():
    pool = [make_item("m1", "me", price=90.0), make_item("m2", "me", price=70.0)]
    bundles = BundleGenerator().generate_from_pool(_user_items(), pool, 150.0, RATES, exclude_user_id="me")
    assert bundles == []


def test_discount_is_capped():
    assert BundleGenerator.discounted_test_value(100.0) == pytest.approx(90.0)
    assert BundleGenerator.discounted_test_value(1000.0) == pytest.approx(950.0)


def test_price_band_is_skipped_only_when_price_weight_is_zero():
    pool = [make_item("x1", "owner-x", price=200.0), make_item("x2", "owner-x", price=200.0)]
    generator = BundleGenerator()
    assert generator.generate_from_pool(_user_items(), pool, 100.0, RATES) == []

    no_price = RecommendationWeights(price=0)
    bundles = generator.generate_from_pool(_user_items(), pool, 100.0, RATES, weights=no_price)
    assert len(bundles) == 1


def test_bundle_count_is_capped():
    pool = [make_item(f"x{i}", "owner-x", price=75.0) for i in range(5)]
    bundles = BundleGenerator().generate_from_pool(_user_items(), pool, 150.0, RATES)
    assert len(bundles) == 5
    assert len({b.id for b in bundles}) == 5


def test_bundle_id_is_order_independent():
    assert bundle_id_for(["a", "b"]) == bundle_id_for(["b", "a"])
    assert bundle_id_for(["a", "b"]) != bundle_id_for(["a", "c"])


def test_display_currency_prefers_first_item_with_rate():
    pool = [
        make_item("x1", "owner-x", price=10.0, currency="USD"),
        make_item("x2", "owner-x", price=30.0, currency="GEL"),
    ]
    bundles = BundleGenerator().generate_from_pool(_user_items(), pool, 57.0, RATES)
    assert len(bundles) == 1
    assert bundles[0].display_currency == "USD"
    assert bundles[0].display_price == pytest.approx(57.0 / 2.7, abs=0.01)


def test_similarity_estimate():
    user_items = [
        make_item("m1", "me", embedding=[1.0, 0.0]),
        make_item("m2", "me", embedding=[0.0, 1.0]),
    ]
    pair = (make_item("x1", "x", embedding=[1.0, 0.0]), make_item("x2", "x", embedding=[2.0, 0.0]))
    assert BundleGenerator.estimate_similarity(pair, user_items) == pytest.approx(0.5)

    bare = (make_item("x1", "x"), make_item("x2", "x"))
    assert BundleGenerator.estimate_similarity(bare, user_items) == BASELINE_SIMILARITY


def test_fallback_pairs_similar_items_from_one_owner():
    user_items = [
        make_item("mine-1", "me", price=100.0, embedding=[1.0, 0.0]),
        make_item("mine-2", "me", price=50.0, embedding=[0.0, 1.0]),
    ]
    catalog = [
        make_item("z1", "owner-z", price=90.0, embedding=[1.0, 0.1]),
        make_item("z2", "owner-z", price=70.0, embedding=[0.1, 1.0]),
        make_item("w1", "owner-w", price=80.0, embedding=[1.0, 0.2]),
    ]
    generator = BundleGenerator(similarity_search=InMemorySimilaritySearch(catalog))

    bundles = asyncio.run(generator.generate(user_items, [], 150.0, RATES, exclude_user_id="me"))

    assert len(bundles) == 1
    assert sorted(bundles[0].item_ids) == ["z1", "z2"]
    assert bundles[0].source == "bundle_fallback"


def test_fallback_not_used_when_primary_path_succeeds():
    class ExplodingSearch:
        async def search(self, *args, **kwargs):
            raise AssertionError("fallback should not run")

    pool = [make_item("x1", "owner-x", price=90.0), make_item("x2", "owner-x", price=70.0)]
    generator = BundleGenerator(similarity_search=ExplodingSearch())
    bundles = asyncio.run(generator.generate(_user_items(), pool, 150.0, RATES))
    assert len(bundles) == 1


def test_similarity_estimate_is_floored_at_zero():
    user_items = [make_item("m1", "me", embedding=[1.0, 0.0]), make_item("m2", "me", embedding=[1.0, 0.0])]
    pair = (make_item("x1", "x", embedding=[-1.0, 0.0]), make_item("x2", "x", embedding=[-1.0, 0.0]))
    assert BundleGenerator.estimate_similarity(pair, user_items) == 0.0
