"""
Recommendation Weights
Immutable weight vector plus a lock-guarded cell holding the active override
"""
from __future__ import annotations

from dataclasses import dataclass, asdict, replace
from typing import Any, Dict, Mapping, Optional
import logging
import threading

logger = logging.getLogger(__name__)

WEIGHT_FIELDS = ("similarity", "category", "price", "location_lat", "location_lng")


def clamp_weight(value: Any) -> float:
    """Clamp to [0, 1]; non-numeric values collapse to 0."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number:
        return 0.0
    return max(0.0, min(1.0, number))


@dataclass(frozen=True)
class RecommendationWeights:
    """Five coefficients in [0, 1]; the two location weights are averaged when combined."""

    similarity: float = 0.0
    category: float = 0.9
    price: float = 0.1
    location_lat: float = 0.1
    location_lng: float = 0.1

    def __post_init__(self):
        for name in WEIGHT_FIELDS:
            object.__setattr__(self, name, clamp_weight(getattr(self, name)))

    @property
    def location(self) -> float:
        return (self.location_lat + self.location_lng) / 2

    def merged(self, partial: Optional[Mapping[str, Any]]) -> "RecommendationWeights":
        """New weights with known fields from ``partial`` applied; unknown keys are ignored."""
        if not partial:
            return self
        updates = {k: clamp_weight(v) for k, v in partial.items() if k in WEIGHT_FIELDS and v is not None}
        ignored = [k for k in partial if k not in WEIGHT_FIELDS]
        if ignored:
            logger.debug(f"Ignoring unknown weight fields: {ignored}")
        return replace(self, **updates)

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


DEFAULT_WEIGHTS = RecommendationWeights()


class WeightsStore:
    """
    Holds the process-wide weight override.

    The stored value is immutable and swapped as a whole under a lock, so readers
    always observe either the previous or the new weights, never a mix.
    """

    def __init__(self, defaults: RecommendationWeights = DEFAULT_WEIGHTS):
        self._defaults = defaults
        self._override: Optional[RecommendationWeights] = None
        self._lock = threading.Lock()

    @property
    def defaults(self) -> RecommendationWeights:
        return self._defaults

    def current(self) -> RecommendationWeights:
        with self._lock:
            return self._override if self._override is not None else self._defaults

    def update(self, partial: Optional[Mapping[str, Any]]) -> RecommendationWeights:
        """Merge ``partial`` over the current value and install the result."""
        with self._lock:
            base = self._override if self._override is not None else self._defaults
            updated = base.merged(partial)
            self._override = updated
        logger.info(f"Recommendation weights updated: {updated.to_dict()}")
        return updated

    def reset(self) -> None:
        with self._lock:
            self._override = None
