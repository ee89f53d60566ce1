"""
Centralized configuration for the recommendation engine.

Environment variables:
    CACHE_NAMESPACE          → prefix prepended to every cache key/pattern
    CACHE_TTL_SECONDS        → TTL for cached recommendation sections
    CACHE_TIMEOUT_SECONDS    → bound for every remote cache call
    REDIS_URL                → remote cache; empty means in-process store
    REFERENCE_CURRENCY       → currency all prices are normalized into
    DEFAULT_RADIUS_KM        → preferred radius when a user has none
    SIMILARITY_THRESHOLD     → similarity floor for vector search
    POOL_SIZE                → candidate pool size per source
    MAX_BUNDLES              → cap on synthesized bundles per request
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Iterable, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineSettings:
    """Resolved configuration for the engine and its collaborators."""

    cache_namespace: str
    cache_ttl_seconds: int
    cache_timeout_seconds: float
    redis_url: str
    reference_currency: str
    default_radius_km: float
    similarity_threshold: float
    pool_size: int
    max_bundles: int


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Invalid int for %s=%s; falling back to %s", name, value, default)
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning("Invalid float for %s=%s; falling back to %s", name, value, default)
        return default


@lru_cache(maxsize=1)
def load_settings() -> EngineSettings:
    """Load and cache engine configuration from environment variables."""

    return EngineSettings(
        cache_namespace=(os.getenv("CACHE_NAMESPACE") or "swapjoy").strip(),
        cache_ttl_seconds=_env_int("CACHE_TTL_SECONDS", 300),
        cache_timeout_seconds=_env_float("CACHE_TIMEOUT_SECONDS", 1.5),
        redis_url=(os.getenv("REDIS_URL") or "").strip(),
        reference_currency=(os.getenv("REFERENCE_CURRENCY") or "GEL").strip().upper(),
        default_radius_km=_env_float("DEFAULT_RADIUS_KM", 50.0),
        similarity_threshold=_env_float("SIMILARITY_THRESHOLD", 0.6),
        pool_size=_env_int("POOL_SIZE", 50),
        max_bundles=_env_int("MAX_BUNDLES", 5),
    )


def sanitize_user_id(value: Optional[Any]) -> Optional[str]:
    """Normalize raw user IDs (strip whitespace); empty values become None."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text


def sanitize_category_ids(values: Optional[Iterable[Any]]) -> List[str]:
    """
    Keep usable category ids in input order, dropping blanks and repeats.
    Anything that is not iterable (a corrupt profile column) yields an empty list.
    """
    if values is None or isinstance(values, (str, bytes)):
        return []
    try:
        raw = list(values)
    except TypeError:
        return []
    seen = set()
    cleaned: List[str] = []
    for value in raw:
        if value is None:
            continue
        text = str(value).strip()
        if text and text not in seen:
            seen.add(text)
            cleaned.append(text)
    return cleaned
