"""
Recommendation Schemas
======================

Request/response models for the recommendation HTTP surface.

RESPONSE FIELDS:
----------------
1. kind             - "item" or "bundle"
2. score            - overall score presented 0-100
3. favorite_category - entry matches the user's favorite categories
4. items[]          - one item for kind="item", exactly two for kind="bundle"

Weights are never rejected for being out of range; values outside [0, 1] are
clamped when installed.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class RecommendedItem(BaseModel):
    id: str
    user_id: str
    title: str = ""
    price: Optional[float] = None
    currency: Optional[str] = None
    category_id: Optional[str] = None
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None
    created_at: Optional[str] = None
    status: Optional[str] = None


class RecommendationEntry(BaseModel):
    kind: Literal["item", "bundle"]
    id: str
    score: float
    favorite_category: bool = False
    source: str = ""
    items: List[RecommendedItem] = Field(default_factory=list)
    sub_scores: Dict[str, float] = Field(default_factory=dict)
    display_price: Optional[float] = None
    display_currency: Optional[str] = None


class RecommendationsResponse(BaseModel):
    user_id: str
    count: int
    recommendations: List[RecommendationEntry]


class WeightsPayload(BaseModel):
    similarity: float
    category: float
    price: float
    location_lat: float
    location_lng: float


class WeightsResponse(BaseModel):
    user_id: str
    weights: WeightsPayload


class UpdateWeightsRequest(BaseModel):
    """Partial update; omitted fields keep their current value."""

    similarity: Optional[float] = None
    category: Optional[float] = None
    price: Optional[float] = None
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None

    def partial(self) -> Dict[str, Any]:
        return {k: v for k, v in self.model_dump().items() if v is not None}
