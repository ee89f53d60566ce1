"""
Weighted Scoring Engine
Similarity, category, price and location sub-scores combined by tunable weights
"""
from typing import Optional, Sequence, Tuple
import logging
import math

from services.models import Item, ScoredCandidate, UserPreference
from services.weights import RecommendationWeights, clamp_weight

logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 0.5
EARTH_RADIUS_KM = 6371.0

Point = Tuple[float, float]


def haversine_km(a: Point, b: Point) -> float:
    """Great-circle distance in kilometres."""
    lat1, lng1 = a
    lat2, lng2 = b
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


class ScoringEngine:
    """Pure, total scoring functions; absent signals resolve to a neutral 0.5"""

    def __init__(self, price_tolerance: float = 0.3, max_radius_km: float = 50.0):
        self.price_tolerance = price_tolerance
        self.max_radius_km = max_radius_km

    @staticmethod
    def category_score(item_category: Optional[str], favorites: Optional[Sequence[str]]) -> float:
        if not item_category or not favorites:
            return NEUTRAL_SCORE
        return 1.0 if item_category in favorites else 0.0

    @staticmethod
    def price_score(user_price: Optional[float], item_price: Optional[float], tolerance: float = 0.3) -> float:
        if not user_price or not item_price or tolerance <= 0:
            return NEUTRAL_SCORE
        diff = abs(item_price - user_price)
        allowed = abs(user_price) * tolerance
        if diff <= allowed:
            return max(0.0, 1.0 - diff / allowed)
        # Beyond tolerance: short tail starting at 0.2, floored at 0
        excess = diff - allowed
        return max(0.0, min(0.2, 0.2 - excess / abs(user_price)))

    @staticmethod
    def location_score(user_point: Optional[Point], item_point: Optional[Point], max_radius_km: float = 50.0) -> float:
        if not user_point or not item_point or None in user_point or None in item_point:
            return NEUTRAL_SCORE
        if max_radius_km <= 0:
            return NEUTRAL_SCORE
        distance = haversine_km(user_point, item_point)
        if distance <= max_radius_km:
            return max(0.0, 1.0 - distance / max_radius_km)
        return max(0.0, 0.1 - (distance - max_radius_km) / (max_radius_km * 10))

    @staticmethod
    def combine(
        similarity: float,
        category: float,
        price: float,
        location: float,
        weights: RecommendationWeights,
    ) -> float:
        """Weighted mean of the four sub-scores; 0 when every weight is 0."""
        w_sim = clamp_weight(weights.similarity)
        w_cat = clamp_weight(weights.category)
        w_price = clamp_weight(weights.price)
        w_loc = weights.location

        total_weight = w_sim + w_cat + w_price + w_loc
        if total_weight == 0:
            return 0.0

        combined = (
            clamp_weight(similarity) * w_sim
            + clamp_weight(category) * w_cat
            + clamp_weight(price) * w_price
            + clamp_weight(location) * w_loc
        )
        return clamp_weight(combined / total_weight)

    def score_item(
        self,
        item: Item,
        preference: UserPreference,
        weights: RecommendationWeights,
        similarity: Optional[float],
        normalized_item_price: Optional[float],
        source: str = "",
    ) -> ScoredCandidate:
        """Build a ScoredCandidate from raw inputs for one candidate item."""
        sim = NEUTRAL_SCORE if similarity is None else clamp_weight(similarity)
        cat = self.category_score(item.category_id, preference.favorite_categories)
        price = self.price_score(preference.average_item_value, normalized_item_price, self.price_tolerance)
        radius = preference.radius_km or self.max_radius_km
        loc = self.location_score(preference.point, item.point, radius)
        overall = self.combine(sim, cat, price, loc, weights)
        return ScoredCandidate(
            item=item,
            similarity_score=sim,
            category_score=cat,
            price_score=price,
            location_score=loc,
            overall_score=overall,
            favorite_category=bool(item.category_id and item.category_id in preference.favorite_categories),
            source=source,
        )
