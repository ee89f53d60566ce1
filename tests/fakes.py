import asyncio
import sys
from pathlib import Path
from typing import Dict, Iterable, List, Optional

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.models import Item
from services.query_executor import QueryResult


def make_item(
    item_id: str,
    owner: str,
    price: Optional[float] = 100.0,
    currency: str = "GEL",
    category: Optional[str] = None,
    embedding: Optional[Iterable[float]] = None,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    status: str = "available",
) -> Item:
    return Item(
        id=item_id,
        owner_id=owner,
        title=f"Item {item_id}",
        price=price,
        currency=currency,
        category_id=category,
        latitude=lat,
        longitude=lng,
        embedding=tuple(embedding) if embedding is not None else None,
        status=status,
    )


class FakeStorage:
    """In-memory stand-in for StorageService; ``failing`` names methods that report an error."""

    def __init__(
        self,
        user_items: Optional[Dict[str, List[Item]]] = None,
        profiles: Optional[Dict[str, dict]] = None,
        candidates: Optional[List[Item]] = None,
        rates: Optional[Dict[str, float]] = None,
        failing: Iterable[str] = (),
    ):
        self.user_items = user_items or {}
        self.profiles = profiles or {}
        self.candidates = list(candidates or [])
        self.rates = dict(rates or {})
        self.failing = set(failing)
        self.calls: List[str] = []

    def _result(self, name: str, data):
        self.calls.append(name)
        if name in self.failing:
            return QueryResult(error=f"{name} unavailable")
        return QueryResult(data=data)

    async def get_user_items(self, user_id):
        return self._result("get_user_items", list(self.user_items.get(user_id, [])))

    async def get_user_profile(self, user_id):
        return self._result("get_user_profile", self.profiles.get(user_id))

    async def get_rate_table(self):
        return self._result("get_rate_table", dict(self.rates))

    async def get_candidate_items(self, exclude_user_id=None, category_ids=None, limit=50, require_embedding=False):
        items = [
            item
            for item in self.candidates
            if item.is_available
            and item.owner_id != exclude_user_id
            and (not category_ids or item.category_id in category_ids)
            and (not require_embedding or item.embedding)
        ]
        return self._result("get_candidate_items", items[:limit])


class SlowStore:
    """Key-value store whose every call outlives any reasonable timeout."""

    def __init__(self, delay: float = 5.0):
        self.delay = delay

    async def get(self, key):
        await asyncio.sleep(self.delay)

    async def set(self, key, value, ttl=None):
        await asyncio.sleep(self.delay)

    async def delete(self, key):
        await asyncio.sleep(self.delay)
        return 0

    async def delete_pattern(self, pattern):
        await asyncio.sleep(self.delay)
        return 0


class BrokenStore:
    """Key-value store that fails every call like an unreachable server."""

    async def get(self, key):
        raise ConnectionError("connection refused")

    async def set(self, key, value, ttl=None):
        raise ConnectionError("connection refused")

    async def delete(self, key):
        raise ConnectionError("connection refused")

    async def delete_pattern(self, pattern):
        raise ConnectionError("connection refused")
