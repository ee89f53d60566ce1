"""
Similarity-search providers.

The engine only depends on the ``SimilaritySearch`` protocol: given a query
embedding, a similarity floor, a result cap and optional filters, return items
annotated with a cosine similarity in [0, 1]. Price bounds are expressed in
the reference unit and compared after converting each item through ``rate_table``.

- ``InMemorySimilaritySearch`` ranks a fixed catalog with numpy (tests, local runs)
- ``StorageSimilaritySearch`` pulls embedded candidates from storage per call and
  ranks them in memory, mirroring the ``match_items`` filters of the marketplace DB
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol, Sequence, Tuple

import numpy as np

from services.currency import CurrencyNormalizer, RateTable
from services.models import Item
from services.scoring import haversine_km

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimilarItem:
    item: Item
    similarity: float


class SimilaritySearch(Protocol):
    async def search(
        self,
        embedding: Sequence[float],
        *,
        min_similarity: float,
        limit: int,
        category_ids: Optional[Sequence[str]] = None,
        category_weight: Optional[float] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        near: Optional[Tuple[float, float]] = None,
        radius_km: Optional[float] = None,
        exclude_user_id: Optional[str] = None,
        rate_table: Optional[RateTable] = None,
    ) -> List[SimilarItem]:
        ...


class InMemorySimilaritySearch:
    """Brute-force cosine ranking over a catalog of items."""

    def __init__(self, items: Sequence[Item]) -> None:
        self._items = [i for i in items if i.embedding and i.is_available]

    @staticmethod
    def _l2(matrix: np.ndarray) -> np.ndarray:
        norms = np.linalg.norm(matrix, axis=1, keepdims=True)
        norms[norms == 0] = 1.0
        return matrix / norms

    def _passes_filters(
        self,
        item: Item,
        category_ids: Optional[Sequence[str]],
        category_weight: Optional[float],
        min_price: Optional[float],
        max_price: Optional[float],
        near: Optional[Tuple[float, float]],
        radius_km: Optional[float],
        exclude_user_id: Optional[str],
        rate_table: Optional[RateTable],
    ) -> bool:
        if exclude_user_id and item.owner_id == exclude_user_id:
            return False
        # Hard category filter only when not running the category-weighted variant
        if category_ids and category_weight is None and item.category_id not in category_ids:
            return False
        if min_price is not None or max_price is not None:
            # Price bounds are in reference units
            if item.price is None:
                return False
            price = CurrencyNormalizer.normalize(item.price, item.currency, rate_table)
            if min_price is not None and price < min_price:
                return False
            if max_price is not None and price > max_price:
                return False
        if near and radius_km:
            if item.point is None or haversine_km(near, item.point) > radius_km:
                return False
        return True

    async def search(
        self,
        embedding: Sequence[float],
        *,
        min_similarity: float,
        limit: int,
        category_ids: Optional[Sequence[str]] = None,
        category_weight: Optional[float] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        near: Optional[Tuple[float, float]] = None,
        radius_km: Optional[float] = None,
        exclude_user_id: Optional[str] = None,
        rate_table: Optional[RateTable] = None,
    ) -> List[SimilarItem]:
        if not embedding or limit <= 0:
            return []
        dim = len(embedding)
        pool = [
            item
            for item in self._items
            if len(item.embedding) == dim
            and self._passes_filters(
                item,
                category_ids,
                category_weight,
                min_price,
                max_price,
                near,
                radius_km,
                exclude_user_id,
                rate_table,
            )
        ]
        if not pool:
            return []

        matrix = self._l2(np.asarray([item.embedding for item in pool], dtype=np.float64))
        query = np.asarray(embedding, dtype=np.float64)
        q_norm = np.linalg.norm(query)
        if q_norm == 0:
            return []
        sims = np.clip(matrix @ (query / q_norm), 0.0, 1.0)

        if category_ids and category_weight is not None:
            w = max(0.0, min(1.0, float(category_weight)))
            bonus = np.asarray([1.0 if item.category_id in category_ids else 0.0 for item in pool])
            sims = (1 - w) * sims + w * bonus

        order = np.argsort(-sims, kind="stable")
        results: List[SimilarItem] = []
        for idx in order:
            score = float(sims[idx])
            if score < min_similarity:
                break
            results.append(SimilarItem(item=pool[idx], similarity=score))
            if len(results) >= limit:
                break
        return results


class StorageSimilaritySearch:
    """Loads embedded candidates through the storage layer, then ranks them in memory."""

    def __init__(self, storage: Any, pool_size: int = 500) -> None:
        self.storage = storage
        self.pool_size = pool_size

    async def search(self, embedding: Sequence[float], **kwargs: Any) -> List[SimilarItem]:
        category_ids = kwargs.get("category_ids")
        hard_filter = category_ids if kwargs.get("category_weight") is None else None
        result = await self.storage.get_candidate_items(
            exclude_user_id=kwargs.get("exclude_user_id"),
            category_ids=hard_filter,
            limit=self.pool_size,
            require_embedding=True,
        )
        if result.error:
            raise RuntimeError(f"similarity candidate load failed: {result.error}")
        return await InMemorySimilaritySearch(result.data or []).search(embedding, **kwargs)
