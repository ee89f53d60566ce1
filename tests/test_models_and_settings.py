import sys
from datetime import datetime
from decimal import Decimal
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import settings as settings_module
from services.models import Item
from settings import load_settings, sanitize_category_ids, sanitize_user_id


def test_item_from_record_drops_unknown_fields_and_defaults_missing():
    item = Item.from_record({
        "id": 7,
        "user_id": "owner",
        "price": Decimal("12.50"),
        "currency": "usd",
        "location_lat": "0",
        "location_lng": 0,
        "embedding": "[0.1, 0.2]",
        "created_at": "2024-05-01T10:00:00Z",
        "item_images": [{"image_url": "x"}],
    })
    assert item.id == "7"
    assert item.owner_id == "owner"
    assert item.price == 12.5
    assert item.currency == "USD"
    assert item.point == (0.0, 0.0)
    assert item.embedding == (0.1, 0.2)
    assert isinstance(item.created_at, datetime)
    assert item.category_id is None
    assert item.is_available
    assert not hasattr(item, "item_images")


def test_item_from_record_requires_id_and_owner():
    assert Item.from_record({"id": "a"}) is None
    assert Item.from_record({"user_id": "u"}) is None


def test_sanitizers():
    assert sanitize_user_id("  u1 ") == "u1"
    assert sanitize_user_id("   ") is None
    assert sanitize_user_id(None) is None
    assert sanitize_category_ids(["a", " a ", "", None, "b"]) == ["a", "b"]
    assert sanitize_category_ids("electronics") == []
    assert sanitize_category_ids(42) == []
    assert sanitize_category_ids(None) == []


def test_load_settings_defaults_and_invalid_values(monkeypatch):
    for name in ("CACHE_NAMESPACE", "CACHE_TTL_SECONDS", "REDIS_URL", "REFERENCE_CURRENCY", "MAX_BUNDLES"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CACHE_TIMEOUT_SECONDS", "soon")
    monkeypatch.setenv("POOL_SIZE", "25")
    settings_module.load_settings.cache_clear()
    try:
        loaded = load_settings()
        assert loaded.cache_namespace == "swapjoy"
        assert loaded.cache_ttl_seconds == 300
        assert loaded.cache_timeout_seconds == 1.5
        assert loaded.redis_url == ""
        assert loaded.reference_currency == "GEL"
        assert loaded.pool_size == 25
        assert loaded.max_bundles == 5
    finally:
        settings_module.load_settings.cache_clear()
