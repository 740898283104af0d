# backend/app/services/availability_cache.py
"""
Short-lived cache of remaining slots per (subgroup, date).

Entries only serve advisory reads. Every write that changes occupancy or a
capacity override invalidates the affected keys after commit; the TTL bounds
staleness for anything that slips through.
"""

from datetime import date
import logging
from typing import Dict, Iterable, Optional

from ..core.config import settings
from ..monitoring.prometheus_metrics import prometheus_metrics
from .cache_service import CacheKeyBuilder, CacheService

logger = logging.getLogger(__name__)


class AvailabilityCache:
    """Typed facade over CacheService for availability snapshots."""

    def __init__(self, cache_service: CacheService, ttl_seconds: Optional[int] = None):
        self.cache_service = cache_service
        self.ttl_seconds = ttl_seconds or settings.availability_cache_ttl_seconds

    @staticmethod
    def build_key(subgroup_id: str, target_date: date) -> str:
        return CacheKeyBuilder.build("availability", "slots", subgroup_id, target_date)

    @staticmethod
    def subgroup_pattern(subgroup_id: str) -> str:
        return CacheKeyBuilder.build("availability", "slots", subgroup_id, "*")

    def get(self, subgroup_id: str, target_date: date) -> Optional[int]:
        value = self.cache_service.get(self.build_key(subgroup_id, target_date))
        if value is None:
            prometheus_metrics.inc_availability_cache_miss()
            return None
        try:
            slots = int(value)
        except (TypeError, ValueError):
            logger.warning("Discarding malformed availability cache entry for %s", subgroup_id)
            self.invalidate(subgroup_id, target_date)
            return None
        prometheus_metrics.inc_availability_cache_hit()
        return slots

    def get_many(self, subgroup_id: str, dates: Iterable[date]) -> Dict[date, int]:
        """Cached values for the dates that have one; misses are left out."""
        keys = {self.build_key(subgroup_id, d): d for d in dates}
        found = self.cache_service.mget(list(keys))
        result: Dict[date, int] = {}
        for key, value in found.items():
            try:
                result[keys[key]] = int(value)
            except (TypeError, ValueError, KeyError):
                continue
        return result

    def put(self, subgroup_id: str, target_date: date, value: int, ttl: Optional[int] = None) -> None:
        self.cache_service.set(
            self.build_key(subgroup_id, target_date), int(value), ttl=ttl or self.ttl_seconds
        )

    def invalidate(self, subgroup_id: str, target_date: date) -> None:
        self.cache_service.delete(self.build_key(subgroup_id, target_date))
        prometheus_metrics.inc_availability_cache_invalidation("date")

    def invalidate_all(self, subgroup_id: str) -> int:
        removed = self.cache_service.delete_pattern(self.subgroup_pattern(subgroup_id))
        prometheus_metrics.inc_availability_cache_invalidation("subgroup")
        return removed
