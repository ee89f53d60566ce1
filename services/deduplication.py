"""
Result Merger
Cross-source deduplication by identity with favorite-category-first ordering
"""
from typing import Any, Dict, List, Optional, Protocol, Sequence, TypeVar
import logging

logger = logging.getLogger(__name__)


class Mergeable(Protocol):
    id: str
    overall_score: Optional[float]
    similarity_score: Optional[float]
    favorite_category: bool


M = TypeVar("M", bound=Mergeable)


def effective_score(candidate: Mergeable) -> float:
    """``overall_score`` if present, else ``similarity_score``, else 0."""
    if candidate.overall_score is not None:
        return float(candidate.overall_score)
    if candidate.similarity_score is not None:
        return float(candidate.similarity_score)
    return 0.0


class ResultMerger:
    """Keeps the best entry per id, then sorts flagged entries ahead of the rest"""

    @staticmethod
    def _prefer(existing: M, challenger: M) -> M:
        existing_score = effective_score(existing)
        challenger_score = effective_score(challenger)
        if challenger_score > existing_score:
            return challenger
        if challenger_score == existing_score and challenger.favorite_category and not existing.favorite_category:
            return challenger
        return existing

    def deduplicate(self, candidates: Sequence[M]) -> List[M]:
        """One entry per id, positioned where the id was first seen."""
        best: Dict[str, M] = {}
        order: List[str] = []
        for candidate in candidates:
            key = candidate.id
            if key not in best:
                best[key] = candidate
                order.append(key)
            else:
                best[key] = self._prefer(best[key], candidate)
        return [best[key] for key in order]

    @staticmethod
    def sort(candidates: Sequence[M]) -> List[M]:
        # Stable: equal (flag, score) entries keep discovery order
        return sorted(candidates, key=lambda c: (not c.favorite_category, -effective_score(c)))

    def merge(self, candidates: Sequence[M]) -> List[M]:
        unique = self.deduplicate(candidates)
        merged = self.sort(unique)
        dropped = len(candidates) - len(merged)
        if dropped:
            logger.debug(f"Merged {len(candidates)} candidates into {len(merged)} ({dropped} duplicates)")
        return merged

    @staticmethod
    def merge_stats(candidates: Sequence[Any], merged: Sequence[Any]) -> Dict[str, int]:
        return {
            "total_candidates": len(candidates),
            "unique_candidates": len(merged),
            "duplicates_removed": len(candidates) - len(merged),
            "favorite_category": sum(1 for c in merged if getattr(c, "favorite_category", False)),
        }
