"""
Recommendation Engine
Per-request orchestration: load the user's context, gather candidate pools in
parallel, score, synthesize bundles, merge and cache the ranked result
"""
from typing import Any, Awaitable, Dict, List, Mapping, Optional, Sequence, Tuple, TypeVar
import asyncio
import logging
import math
import time
import uuid
from dataclasses import dataclass, field

from services.background import BackgroundTaskSupervisor
from services.bundle_generator import BundleGenerator
from services.cache import CacheLayer
from services.currency import CurrencyNormalizer, RateTable
from services.deduplication import ResultMerger, effective_score
from services.ml.embedding_similarity import average, cosine_similarity
from services.ml.similarity_search import SimilaritySearch
from services.models import Bundle, Item, RankedRecommendation, ScoredCandidate, UserPreference
from services.obs.metrics import MetricsCollector, PhaseMetric, metrics_collector
from services.query_executor import QueryResult
from services.scoring import ScoringEngine
from services.weights import RecommendationWeights, WeightsStore
from settings import EngineSettings, load_settings, sanitize_category_ids, sanitize_user_id

logger = logging.getLogger(__name__)

T = TypeVar("T")

CACHE_PREFIX = "recommendations"
MAX_LIMIT = 100
COST_BAND_MIN = 0.7
COST_BAND_MAX = 1.3
VECTOR_MIN_VALUE_RATIO = 0.5
COST_SCAN_MULTIPLIER = 4


def invalidation_pattern(user_id: str) -> str:
    return f"{CACHE_PREFIX}:{user_id}:*"


@dataclass
class RecommendationContext:
    """Everything loaded for one user before candidate pools are gathered."""

    user_id: str
    user_items: List[Item]
    preference: UserPreference
    rate_table: RateTable
    weights: RecommendationWeights
    user_vector: List[float] = field(default_factory=list)
    degraded_sources: List[str] = field(default_factory=list)


class RecommendationEngine:
    """Ranks other users' items and synthesized bundles for one requesting user"""

    def __init__(
        self,
        storage: Any,
        cache_layer: Optional[CacheLayer] = None,
        weights_store: Optional[WeightsStore] = None,
        similarity_search: Optional[SimilaritySearch] = None,
        supervisor: Optional[BackgroundTaskSupervisor] = None,
        metrics: Optional[MetricsCollector] = None,
        settings: Optional[EngineSettings] = None,
    ):
        self.settings = settings or load_settings()
        self.metrics = metrics or metrics_collector
        self.storage = storage
        self.cache = cache_layer or CacheLayer(
            None,
            namespace=self.settings.cache_namespace,
            ttl_seconds=self.settings.cache_ttl_seconds,
            timeout_seconds=self.settings.cache_timeout_seconds,
            metrics=self.metrics,
        )
        self.weights_store = weights_store or WeightsStore()
        self.similarity_search = similarity_search
        self.supervisor = supervisor or BackgroundTaskSupervisor(metrics=self.metrics)
        self.normalizer = CurrencyNormalizer(self.settings.reference_currency)
        self.scoring = ScoringEngine(max_radius_km=self.settings.default_radius_km)
        self.bundle_generator = BundleGenerator(
            max_bundles=self.settings.max_bundles,
            similarity_search=similarity_search,
            min_similarity=self.settings.similarity_threshold,
        )
        self.merger = ResultMerger()

    # ---------- public API ----------

    async def get_recommendations(self, user_id: str, limit: int = 10, bypass_cache: bool = False) -> List[Dict[str, Any]]:
        """Ranked items and bundles for ``user_id``, scores presented 0-100."""
        user_id = sanitize_user_id(user_id)
        if not user_id:
            return []
        limit = max(1, min(int(limit), MAX_LIMIT))

        return await self.cache.cache(
            CACHE_PREFIX,
            [user_id, limit],
            lambda: self._compute(user_id, limit),
            bypass=bypass_cache,
        )

    def get_recommendation_weights(self, user_id: Optional[str] = None) -> RecommendationWeights:
        # One process-wide value; user_id is accepted for symmetry with updates
        return self.weights_store.current()

    async def update_recommendation_weights(
        self, user_id: Optional[str], partial: Optional[Mapping[str, Any]]
    ) -> RecommendationWeights:
        """Merge, clamp and install new weights, then drop the user's cached sections in the background."""
        updated = self.weights_store.update(partial)
        user_id = sanitize_user_id(user_id)
        if user_id:
            pattern = invalidation_pattern(user_id)
            self.supervisor.spawn(
                f"invalidate:{user_id}",
                lambda: self.cache.invalidate_pattern(pattern),
            )
        return updated

    # ---------- source guards ----------

    def _unwrap(self, source: str, result: QueryResult, default: T, degraded: List[str]) -> T:
        if result.error:
            self.metrics.record_source_failure(source, result.error)
            degraded.append(source)
            return default
        return default if result.data is None else result.data

    async def _guarded(self, source: str, awaitable: Awaitable[Any], default: T, degraded: List[str]) -> T:
        """Await one collaborator call; any failure empties that source only."""
        try:
            result = await awaitable
        except Exception as e:
            self.metrics.record_source_failure(source, e)
            degraded.append(source)
            return default
        if isinstance(result, QueryResult):
            return self._unwrap(source, result, default, degraded)
        return result

    # ---------- context ----------

    def build_preference(
        self, user_id: str, profile: Optional[Mapping[str, Any]], user_items: Sequence[Item], rate_table: RateTable
    ) -> UserPreference:
        profile = profile or {}
        lat = profile.get("location_lat")
        lng = profile.get("location_lng")
        point = (float(lat), float(lng)) if lat is not None and lng is not None else None

        priced = [
            self.normalizer.normalize(item.price, item.currency, rate_table)
            for item in user_items
            if item.is_available and item.price
        ]
        aggregate = sum(priced)
        return UserPreference(
            user_id=user_id,
            favorite_categories=tuple(sanitize_category_ids(profile.get("favorite_categories"))),
            point=point,
            radius_km=float(profile.get("preferred_radius_km") or self.settings.default_radius_km),
            aggregate_value=aggregate,
            average_item_value=(aggregate / len(priced)) if priced else None,
        )

    @staticmethod
    def user_vector(user_items: Sequence[Item]) -> List[float]:
        vectors = [list(item.embedding) for item in user_items if item.embedding]
        if not vectors:
            return []
        dim = len(vectors[0])
        return average([v for v in vectors if len(v) == dim])

    async def load_context(self, user_id: str, degraded: List[str]) -> RecommendationContext:
        user_items, profile, rate_table = await asyncio.gather(
            self._guarded("user_items", self.storage.get_user_items(user_id), [], degraded),
            self._guarded("user_profile", self.storage.get_user_profile(user_id), None, degraded),
            self._guarded("rate_table", self.storage.get_rate_table(), {}, degraded),
        )
        user_items = [item for item in user_items if item.is_available]
        return RecommendationContext(
            user_id=user_id,
            user_items=user_items,
            preference=self.build_preference(user_id, profile, user_items, rate_table),
            rate_table=rate_table,
            weights=self.weights_store.current(),
            user_vector=self.user_vector(user_items),
            degraded_sources=degraded,
        )

    # ---------- candidate pools ----------

    async def favorite_category_pool(self, ctx: RecommendationContext) -> List[Item]:
        if not ctx.preference.has_favorites:
            return []
        return await self._guarded(
            "favorite_category",
            self.storage.get_candidate_items(
                exclude_user_id=ctx.user_id,
                category_ids=list(ctx.preference.favorite_categories),
                limit=self.settings.pool_size,
            ),
            [],
            ctx.degraded_sources,
        )

    async def recently_listed_pool(self, ctx: RecommendationContext) -> List[Item]:
        return await self._guarded(
            "recently_listed",
            self.storage.get_candidate_items(exclude_user_id=ctx.user_id, limit=self.settings.pool_size),
            [],
            ctx.degraded_sources,
        )

    async def cost_similar_pool(self, ctx: RecommendationContext) -> List[Item]:
        """Items whose normalized price is within 0.7x-1.3x of the user's average item value."""
        average_value = ctx.preference.average_item_value
        if not average_value:
            return []
        scanned = await self._guarded(
            "cost_similar",
            self.storage.get_candidate_items(
                exclude_user_id=ctx.user_id,
                limit=self.settings.pool_size * COST_SCAN_MULTIPLIER,
            ),
            [],
            ctx.degraded_sources,
        )
        low, high = average_value * COST_BAND_MIN, average_value * COST_BAND_MAX
        matched = [
            item
            for item in scanned
            if item.price and low <= self.normalizer.normalize(item.price, item.currency, ctx.rate_table) <= high
        ]
        return matched[: self.settings.pool_size]

    async def vector_similar_pool(self, ctx: RecommendationContext, limit: int) -> List[Tuple[Item, float]]:
        """One similarity search per embedded user item, sharing ``limit`` between them."""
        if self.similarity_search is None:
            return []
        anchors = [item for item in ctx.user_items if item.embedding]
        if not anchors:
            return []
        per_anchor = math.ceil(limit / len(anchors))

        async def _search(anchor: Item):
            min_price = None
            if anchor.price:
                anchor_value = self.normalizer.normalize(anchor.price, anchor.currency, ctx.rate_table)
                min_price = max(0.0, anchor_value * VECTOR_MIN_VALUE_RATIO)
            return await self.similarity_search.search(
                list(anchor.embedding),
                min_similarity=self.settings.similarity_threshold,
                limit=per_anchor,
                min_price=min_price,
                exclude_user_id=ctx.user_id,
                rate_table=ctx.rate_table,
            )

        batches = await asyncio.gather(
            *[self._guarded("vector_similar", _search(anchor), [], ctx.degraded_sources) for anchor in anchors]
        )
        return [(hit.item, hit.similarity) for batch in batches for hit in batch]

    # ---------- scoring ----------

    def _similarity_for(self, item: Item, ctx: RecommendationContext, annotated: Dict[str, float]) -> Optional[float]:
        if item.id in annotated:
            return annotated[item.id]
        if ctx.user_vector and item.embedding and len(item.embedding) == len(ctx.user_vector):
            return max(0.0, cosine_similarity(ctx.user_vector, list(item.embedding)))
        return None

    def score_pools(
        self, ctx: RecommendationContext, pools: Sequence[Tuple[str, Sequence[Item]]], annotated: Dict[str, float]
    ) -> List[ScoredCandidate]:
        scored: List[ScoredCandidate] = []
        for source, items in pools:
            for item in items:
                if item.owner_id == ctx.user_id or not item.is_available:
                    continue
                scored.append(
                    self.scoring.score_item(
                        item,
                        ctx.preference,
                        ctx.weights,
                        similarity=self._similarity_for(item, ctx, annotated),
                        normalized_item_price=(
                            self.normalizer.normalize(item.price, item.currency, ctx.rate_table)
                            if item.price
                            else None
                        ),
                        source=source,
                    )
                )
        return scored

    # ---------- output ----------

    @staticmethod
    def to_ranked(entry: Any) -> RankedRecommendation:
        score = round(effective_score(entry) * 100, 2)
        if isinstance(entry, Bundle):
            return RankedRecommendation(
                kind="bundle",
                id=entry.id,
                score=score,
                favorite_category=entry.favorite_category,
                source=entry.source,
                items=[item.to_dict() for item in entry.items],
                sub_scores={"similarity": entry.similarity_score},
                display_price=entry.display_price,
                display_currency=entry.display_currency,
            )
        return RankedRecommendation(
            kind="item",
            id=entry.id,
            score=score,
            favorite_category=entry.favorite_category,
            source=entry.source,
            items=[entry.item.to_dict()],
            sub_scores={
                "similarity": entry.similarity_score,
                "category": entry.category_score,
                "price": entry.price_score,
                "location": entry.location_score,
            },
            display_price=entry.item.price,
            display_currency=entry.item.currency or None,
        )

    # ---------- pipeline ----------

    async def _compute(self, user_id: str, limit: int) -> List[Dict[str, Any]]:
        request_id = uuid.uuid4().hex[:12]
        start_time = time.time()
        phases: List[PhaseMetric] = []
        degraded: List[str] = []

        async with self.metrics.phase_timer("load_context", phases=phases) as phase:
            ctx = await self.load_context(user_id, degraded)
            phase.output_count = len(ctx.user_items)

        async with self.metrics.phase_timer("candidate_pools", phases=phases) as phase:
            vector_hits, favorites, cost_similar, recent = await asyncio.gather(
                self.vector_similar_pool(ctx, limit),
                self.favorite_category_pool(ctx),
                self.cost_similar_pool(ctx),
                self.recently_listed_pool(ctx),
            )
            annotated: Dict[str, float] = {}
            for item, similarity in vector_hits:
                annotated[item.id] = max(similarity, annotated.get(item.id, 0.0))
            pools = [
                ("vector_similar", [item for item, _ in vector_hits]),
                ("favorite_category", favorites),
                ("cost_similar", cost_similar),
                ("recently_listed", recent),
            ]
            phase.output_count = sum(len(items) for _, items in pools)

        async with self.metrics.phase_timer("scoring", input_count=phases[-1].output_count, phases=phases) as phase:
            scored = self.score_pools(ctx, pools, annotated)
            phase.output_count = len(scored)

        async with self.metrics.phase_timer("bundles", phases=phases) as phase:
            union = [item for _, items in pools for item in items]
            bundles = await self._guarded(
                "bundles",
                self.bundle_generator.generate(
                    ctx.user_items,
                    union,
                    ctx.preference.aggregate_value,
                    ctx.rate_table,
                    favorites=list(ctx.preference.favorite_categories),
                    weights=ctx.weights,
                    exclude_user_id=user_id,
                ),
                [],
                degraded,
            )
            phase.output_count = len(bundles)

        async with self.metrics.phase_timer("merge", input_count=len(scored) + len(bundles), phases=phases) as phase:
            candidates = [*scored, *bundles]
            merged = self.merger.merge(candidates)
            stats = self.merger.merge_stats(candidates, merged)
            merged = merged[:limit]
            ranked = [self.to_ranked(entry).to_dict() for entry in merged]
            phase.output_count = len(ranked)

        self.metrics.record_request(request_id, user_id, start_time, phases, len(ranked), degraded)
        logger.info(
            "[%s] Recommendations computed | user=%s candidates=%d bundles=%d duplicates=%d favorites=%d returned=%d degraded=%s",
            request_id,
            user_id,
            len(scored),
            len(bundles),
            stats["duplicates_removed"],
            stats["favorite_category"],
            len(ranked),
            ",".join(degraded) or "-",
        )
        return ranked
