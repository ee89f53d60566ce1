"""
Recommendation Data Model
Read-only item views plus the transient records produced while ranking
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple
import logging

logger = logging.getLogger(__name__)

AVAILABLE_STATUS = "available"


def _as_float(value: Any) -> Optional[float]:
    if value in (None, "", "NULL", "null"):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_embedding(value: Any) -> Optional[List[float]]:
    if value is None:
        return None
    if isinstance(value, str):
        # pgvector text form: "[0.1,0.2,...]"
        text = value.strip().strip("[]")
        if not text:
            return None
        try:
            return [float(part) for part in text.split(",")]
        except ValueError:
            return None
    try:
        vector = [float(x) for x in value]
    except (TypeError, ValueError):
        return None
    return vector or None


def _as_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass(frozen=True)
class Item:
    """An item owned by exactly one user. The engine never mutates items."""

    id: str
    owner_id: str
    title: str = ""
    price: Optional[float] = None
    currency: str = ""
    category_id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    embedding: Optional[Tuple[float, ...]] = None
    created_at: Optional[datetime] = None
    status: str = AVAILABLE_STATUS

    @property
    def point(self) -> Optional[Tuple[float, float]]:
        if self.latitude is None or self.longitude is None:
            return None
        return (self.latitude, self.longitude)

    @property
    def is_available(self) -> bool:
        return self.status == AVAILABLE_STATUS

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> Optional["Item"]:
        """
        Build an Item from a raw row, dropping unknown fields.
        Rows without an id or owner are unusable and yield None.
        """
        item_id = record.get("id")
        owner_id = record.get("user_id", record.get("owner_id"))
        if item_id in (None, "") or owner_id in (None, ""):
            return None
        embedding = _as_embedding(record.get("embedding"))
        category = record.get("category_id")
        return cls(
            id=str(item_id),
            owner_id=str(owner_id),
            title=str(record.get("title") or ""),
            price=_as_float(record.get("price")),
            currency=str(record.get("currency") or "").upper(),
            category_id=str(category) if category not in (None, "") else None,
            latitude=_as_float(record.get("location_lat", record.get("latitude"))),
            longitude=_as_float(record.get("location_lng", record.get("longitude"))),
            embedding=tuple(embedding) if embedding else None,
            created_at=_as_datetime(record.get("created_at")),
            status=str(record.get("status") or AVAILABLE_STATUS),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.owner_id,
            "title": self.title,
            "price": self.price,
            "currency": self.currency,
            "category_id": self.category_id,
            "location_lat": self.latitude,
            "location_lng": self.longitude,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "status": self.status,
        }


@dataclass(frozen=True)
class UserPreference:
    """Derived view of a user's preferences and own inventory value."""

    user_id: str
    favorite_categories: Tuple[str, ...] = ()
    point: Optional[Tuple[float, float]] = None
    radius_km: float = 50.0
    aggregate_value: float = 0.0
    average_item_value: Optional[float] = None

    @property
    def has_favorites(self) -> bool:
        return bool(self.favorite_categories)


@dataclass
class ScoredCandidate:
    """A candidate item with its four sub-scores and combined overall score."""

    item: Item
    similarity_score: float
    category_score: float
    price_score: float
    location_score: float
    overall_score: Optional[float]
    favorite_category: bool = False
    source: str = ""

    @property
    def id(self) -> str:
        return self.item.id


@dataclass
class Bundle:
    """Synthetic pair of two items sharing one owner, proposed as one swap unit."""

    id: str
    items: Tuple[Item, Item]
    owner_id: str
    display_price: float
    display_currency: str
    similarity_score: float
    favorite_category: bool = False
    overall_score: Optional[float] = None
    source: str = "bundle"

    @property
    def item_ids(self) -> List[str]:
        return [item.id for item in self.items]


@dataclass
class RankedRecommendation:
    """JSON-safe ranked entry; this is what gets cached and returned."""

    kind: str  # "item" | "bundle"
    id: str
    score: float  # presented 0-100
    favorite_category: bool
    source: str
    items: List[Dict[str, Any]] = field(default_factory=list)
    sub_scores: Dict[str, float] = field(default_factory=dict)
    display_price: Optional[float] = None
    display_currency: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "id": self.id,
            "score": self.score,
            "favorite_category": self.favorite_category,
            "source": self.source,
            "items": list(self.items),
            "sub_scores": dict(self.sub_scores),
            "display_price": self.display_price,
            "display_currency": self.display_currency,
        }
