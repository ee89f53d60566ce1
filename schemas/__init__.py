"""
Recommendation Schemas Package
Request and response models for the recommendation endpoints.
"""

from .recommendation_schemas import (
    # Response schemas
    RecommendedItem,
    RecommendationEntry,
    RecommendationsResponse,

    # Weights schemas
    WeightsPayload,
    WeightsResponse,
    UpdateWeightsRequest,
)
