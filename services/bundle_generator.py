"""
Bundle Generator Service
Synthesizes virtual two-item bundles from one counterpart owner, priced near the
requesting user's own inventory value and scored by embedding similarity
"""
from typing import Iterable, List, Optional, Sequence, Tuple
from collections import OrderedDict
from itertools import combinations
import hashlib
import json
import logging

from services.currency import CurrencyNormalizer, RateTable, has_rate
from services.ml.embedding_similarity import average, mean_similarity_against
from services.ml.similarity_search import SimilaritySearch
from services.models import Bundle, Item
from services.weights import RecommendationWeights

logger = logging.getLogger(__name__)

MAX_BUNDLES = 5
DISCOUNT_RATE = 0.10
DISCOUNT_CAP = 50.0  # reference units
PRICE_BAND_MIN = 0.6
PRICE_BAND_MAX = 1.6
BASELINE_SIMILARITY = 0.6
FALLBACK_SEARCH_LIMIT = 10
FALLBACK_CATEGORY_WEIGHT = 0.3


def bundle_id_for(item_ids: Iterable[str]) -> str:
    """Deterministic id for a pair, independent of item order."""
    canonical = json.dumps(sorted(item_ids), separators=(",", ":"))
    return "bundle-" + hashlib.sha256(canonical.encode()).hexdigest()[:16]


class BundleGenerator:
    """Bounded greedy sweep over owner pools; not globally optimal"""

    def __init__(
        self,
        max_bundles: int = MAX_BUNDLES,
        similarity_search: Optional[SimilaritySearch] = None,
        min_similarity: float = 0.0,
    ):
        self.max_bundles = max_bundles
        self.similarity_search = similarity_search
        self.min_similarity = min_similarity
        self.normalizer = CurrencyNormalizer()

    # ---------- price rules ----------

    @staticmethod
    def discounted_test_value(total: float) -> float:
        return total - min(total * DISCOUNT_RATE, DISCOUNT_CAP)

    @staticmethod
    def within_price_band(test_value: float, user_value: float, weights: Optional[RecommendationWeights]) -> bool:
        if weights is not None and weights.price == 0:
            return True
        return user_value * PRICE_BAND_MIN <= test_value <= user_value * PRICE_BAND_MAX

    def _display_price(self, pair: Tuple[Item, Item], total_reference: float, rate_table: RateTable) -> Tuple[float, str]:
        first, second = pair
        if has_rate(first.currency, rate_table):
            currency = first.currency
        elif has_rate(second.currency, rate_table):
            currency = second.currency
        else:
            currency = first.currency or second.currency
        return self.normalizer.from_reference(total_reference, currency, rate_table), currency

    # ---------- similarity ----------

    @staticmethod
    def estimate_similarity(pair: Sequence[Item], user_items: Sequence[Item]) -> float:
        """Cosine of the pair's mean embedding against each comparable user item, averaged and floored at 0."""
        vectors = [list(i.embedding) for i in pair if i.embedding]
        if vectors:
            dim = len(vectors[0])
            vectors = [v for v in vectors if len(v) == dim]
        pair_vector = average(vectors)
        if not pair_vector:
            return BASELINE_SIMILARITY
        user_vectors = [list(i.embedding) for i in user_items if i.embedding]
        estimate = mean_similarity_against(pair_vector, user_vectors, BASELINE_SIMILARITY)
        # Ranked and presented like item scores, so kept in [0, 1]
        return max(0.0, min(1.0, estimate))

    # ---------- bundle assembly ----------

    def _try_bundle(
        self,
        pair: Tuple[Item, Item],
        user_items: Sequence[Item],
        user_value: float,
        rate_table: RateTable,
        weights: Optional[RecommendationWeights],
        favorites: Sequence[str],
        source: str,
    ) -> Optional[Bundle]:
        first, second = pair
        if first.owner_id != second.owner_id or first.id == second.id:
            return None
        total = self.normalizer.normalize(first.price, first.currency, rate_table) + self.normalizer.normalize(
            second.price, second.currency, rate_table
        )
        if not self.within_price_band(self.discounted_test_value(total), user_value, weights):
            return None

        display_price, display_currency = self._display_price(pair, total, rate_table)
        return Bundle(
            id=bundle_id_for([first.id, second.id]),
            items=pair,
            owner_id=first.owner_id,
            display_price=round(display_price, 2),
            display_currency=display_currency,
            similarity_score=self.estimate_similarity(pair, user_items),
            favorite_category=bool(favorites)
            and all(i.category_id in favorites for i in pair),
            source=source,
        )

    @staticmethod
    def group_by_owner(pool: Iterable[Item], exclude_user_id: Optional[str] = None) -> "OrderedDict[str, List[Item]]":
        groups: "OrderedDict[str, List[Item]]" = OrderedDict()
        seen = set()
        for item in pool:
            if item.id in seen or not item.is_available:
                continue
            if exclude_user_id and item.owner_id == exclude_user_id:
                continue
            seen.add(item.id)
            groups.setdefault(item.owner_id, []).append(item)
        return groups

    def generate_from_pool(
        self,
        user_items: Sequence[Item],
        pool: Sequence[Item],
        user_value: float,
        rate_table: RateTable,
        favorites: Optional[Sequence[str]] = None,
        weights: Optional[RecommendationWeights] = None,
        exclude_user_id: Optional[str] = None,
    ) -> List[Bundle]:
        """Primary path: pair items of each counterpart owner in discovery order."""
        favorites = list(favorites or [])
        if favorites:
            pool = [i for i in pool if i.category_id in favorites]
        groups = self.group_by_owner(pool, exclude_user_id)

        bundles: List[Bundle] = []
        for owner_id, items in groups.items():
            if len(items) < 2:
                continue
            for pair in combinations(items, 2):
                bundle = self._try_bundle(pair, user_items, user_value, rate_table, weights, favorites, "bundle")
                if bundle is not None:
                    bundles.append(bundle)
                if len(bundles) >= self.max_bundles:
                    return bundles
        return bundles

    async def generate_fallback(
        self,
        user_items: Sequence[Item],
        user_value: float,
        rate_table: RateTable,
        favorites: Optional[Sequence[str]] = None,
        weights: Optional[RecommendationWeights] = None,
        exclude_user_id: Optional[str] = None,
    ) -> List[Bundle]:
        """Pair the user's items sequentially, look up similar items per half, cross-combine."""
        if self.similarity_search is None:
            return []
        favorites = list(favorites or [])
        bundles: List[Bundle] = []
        seen_ids = set()

        for index in range(0, len(user_items) - 1, 2):
            halves = (user_items[index], user_items[index + 1])
            if not all(h.embedding for h in halves):
                continue
            matches: List[List[Item]] = []
            for half in halves:
                results = await self.similarity_search.search(
                    list(half.embedding),
                    min_similarity=self.min_similarity,
                    limit=FALLBACK_SEARCH_LIMIT,
                    category_ids=favorites or None,
                    category_weight=FALLBACK_CATEGORY_WEIGHT if favorites else None,
                    exclude_user_id=exclude_user_id,
                )
                matches.append([r.item for r in results])

            for left in matches[0]:
                for right in matches[1]:
                    if left.owner_id != right.owner_id or left.id == right.id:
                        continue
                    bundle = self._try_bundle(
                        (left, right), user_items, user_value, rate_table, weights, favorites, "bundle_fallback"
                    )
                    if bundle is None or bundle.id in seen_ids:
                        continue
                    seen_ids.add(bundle.id)
                    bundles.append(bundle)
                    if len(bundles) >= self.max_bundles:
                        return bundles
        return bundles

    async def generate(
        self,
        user_items: Sequence[Item],
        pool: Sequence[Item],
        user_value: float,
        rate_table: RateTable,
        favorites: Optional[Sequence[str]] = None,
        weights: Optional[RecommendationWeights] = None,
        exclude_user_id: Optional[str] = None,
    ) -> List[Bundle]:
        """Primary owner-pool sweep, falling back to similarity-driven pairing when it yields nothing."""
        if len(user_items) < 2:
            logger.debug("Bundle generation skipped: user owns fewer than two items")
            return []

        bundles = self.generate_from_pool(
            user_items, pool, user_value, rate_table, favorites, weights, exclude_user_id
        )
        if bundles:
            logger.info(f"Generated {len(bundles)} bundles from owner pools")
            return bundles

        bundles = await self.generate_fallback(
            user_items, user_value, rate_table, favorites, weights, exclude_user_id
        )
        logger.info(f"Generated {len(bundles)} bundles via similarity fallback")
        return bundles
