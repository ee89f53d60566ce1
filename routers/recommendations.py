"""
Recommendations Router
Ranked recommendations, weight tuning and engine metrics
"""
from fastapi import APIRouter, HTTPException, Depends, Query, Request
import logging

from schemas import RecommendationsResponse, UpdateWeightsRequest, WeightsResponse
from services.recommendation_engine import RecommendationEngine
from settings import sanitize_user_id

logger = logging.getLogger(__name__)
router = APIRouter()


def get_engine(request: Request) -> RecommendationEngine:
    engine = getattr(request.app.state, "recommendation_engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Recommendation engine not ready")
    return engine


def _require_user_id(user_id: str) -> str:
    cleaned = sanitize_user_id(user_id)
    if not cleaned:
        raise HTTPException(status_code=400, detail="user_id is required")
    return cleaned


@router.get("/recommendations/metrics/summary")
async def get_metrics_summary(engine: RecommendationEngine = Depends(get_engine)):
    """Cache counters, degraded sources and phase timings"""
    try:
        return {"success": True, "metrics": engine.metrics.get_summary()}
    except Exception as e:
        logger.error(f"Metrics summary error: {e}")
        raise HTTPException(status_code=500, detail="Failed to get metrics summary")


@router.get("/recommendations/{user_id}", response_model=RecommendationsResponse)
async def get_recommendations(
    user_id: str,
    limit: int = Query(10, ge=1, le=100),
    refresh: bool = False,
    engine: RecommendationEngine = Depends(get_engine),
):
    """Ranked items and bundles for a user"""
    try:
        user_id = _require_user_id(user_id)
        recommendations = await engine.get_recommendations(user_id, limit, bypass_cache=refresh)
        return {"user_id": user_id, "count": len(recommendations), "recommendations": recommendations}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Get recommendations error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to get recommendations")


@router.get("/recommendations/{user_id}/weights", response_model=WeightsResponse)
async def get_weights(user_id: str, engine: RecommendationEngine = Depends(get_engine)):
    try:
        user_id = _require_user_id(user_id)
        weights = engine.get_recommendation_weights(user_id)
        return {"user_id": user_id, "weights": weights.to_dict()}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Get weights error: {e}")
        raise HTTPException(status_code=500, detail="Failed to get recommendation weights")


@router.patch("/recommendations/{user_id}/weights", response_model=WeightsResponse)
async def update_weights(
    user_id: str,
    request: UpdateWeightsRequest,
    engine: RecommendationEngine = Depends(get_engine),
):
    """Merge a partial update over the active weights; out-of-range values are clamped"""
    try:
        user_id = _require_user_id(user_id)
        weights = await engine.update_recommendation_weights(user_id, request.partial())
        return {"user_id": user_id, "weights": weights.to_dict()}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Update weights error: {e}")
        raise HTTPException(status_code=500, detail="Failed to update recommendation weights")
