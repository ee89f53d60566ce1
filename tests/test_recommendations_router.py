import os
import sys
from pathlib import Path

import pytest

os.environ.setdefault("DATABASE_URL", "")
os.environ.setdefault("INIT_DB_ON_STARTUP", "false")
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fastapi.testclient import TestClient

from main import app
from services.background import BackgroundTaskSupervisor
from services.cache import CacheLayer, InMemoryKeyValueStore
from services.obs.metrics import MetricsCollector
from services.recommendation_engine import RecommendationEngine
from services.weights import WeightsStore
from settings import EngineSettings
from fakes import FakeStorage, make_item

SETTINGS = EngineSettings(
    cache_namespace="swapjoy",
    cache_ttl_seconds=300,
    cache_timeout_seconds=0.5,
    redis_url="",
    reference_currency="GEL",
    default_radius_km=50.0,
    similarity_threshold=0.6,
    pool_size=50,
    max_bundles=5,
)


def _engine():
    metrics = MetricsCollector()
    storage = FakeStorage(
        user_items={"me": [make_item("mine-1", "me", price=100.0), make_item("mine-2", "me", price=50.0)]},
        profiles={"me": {"favorite_categories": ["electronics"]}},
        candidates=[
            make_item("x1", "owner-x", price=90.0, category="electronics"),
            make_item("x2", "owner-x", price=70.0, category="electronics"),
            make_item("y1", "owner-y", price=80.0, category="books"),
        ],
        rates={"GEL": 1.0},
    )
    return RecommendationEngine(
        storage,
        cache_layer=CacheLayer(InMemoryKeyValueStore(), namespace="swapjoy", metrics=metrics),
        weights_store=WeightsStore(),
        supervisor=BackgroundTaskSupervisor(metrics=metrics),
        metrics=metrics,
        settings=SETTINGS,
    )


@pytest.fixture
def client():
    app.state.recommendation_engine = _engine()
    with TestClient(app) as test_client:
        yield test_client
    app.state.recommendation_engine = None


def test_get_recommendations(client):
    response = client.get("/api/recommendations/me", params={"limit": 5})
    assert response.status_code == 200
    body = response.json()
    assert body["user_id"] == "me"
    assert body["count"] == len(body["recommendations"]) == 4
    kinds = [r["kind"] for r in body["recommendations"]]
    assert kinds.count("bundle") == 1
    assert body["recommendations"][-1]["id"] == "y1"
    assert response.headers["X-Request-Id"]


def test_limit_is_validated(client):
    assert client.get("/api/recommendations/me", params={"limit": 0}).status_code == 422
    assert client.get("/api/recommendations/me", params={"limit": 1000}).status_code == 422


def test_weights_roundtrip_clamps_out_of_range_values(client):
    assert client.get("/api/recommendations/me/weights").json()["weights"]["category"] == 0.9

    response = client.patch("/api/recommendations/me/weights", json={"similarity": 3, "price": -1})
    assert response.status_code == 200
    weights = response.json()["weights"]
    assert weights["similarity"] == 1.0
    assert weights["price"] == 0.0
    assert weights["category"] == 0.9

    assert client.get("/api/recommendations/me/weights").json()["weights"]["similarity"] == 1.0


def test_metrics_summary(client):
    client.get("/api/recommendations/me")
    body = client.get("/api/recommendations/metrics/summary").json()
    assert body["success"] is True
    assert body["metrics"]["cache"]["miss"] == 1
    assert body["metrics"]["counters"]["total_requests"] == 1


def test_unexpected_engine_failure_is_500(client):
    class BrokenEngine:
        async def get_recommendations(self, *args, **kwargs):
            raise RuntimeError("boom")

    working = app.state.recommendation_engine
    app.state.recommendation_engine = BrokenEngine()
    try:
        response = client.get("/api/recommendations/me")
    finally:
        app.state.recommendation_engine = working
    assert response.status_code == 500
    assert response.json() == {"error": "Failed to get recommendations"}


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] in {"healthy", "degraded"}
