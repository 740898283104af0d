# backend/app/services/availability_service.py
"""
Availability Service for the ski school booking platform.

Answers "how many places are left in this subgroup on this date" for
catalogue pages and cart validation. This is the advisory path: results come
from a short-lived cache, no rows are locked, and nothing here may be used to
accept a booking. The booking commit path re-checks capacity under a row lock
with the same CapacityResolver.
"""

from datetime import date, datetime, timezone
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import NotFoundException, ValidationException
from ..models.course import CourseSubgroup
from ..repositories.factory import RepositoryFactory
from ..schemas.availability import (
    AvailabilityDetailData,
    CartItem,
    CartValidationData,
    IntervalStatisticsData,
)
from .availability_cache import AvailabilityCache
from .base import BaseService
from .cache_service import CacheService, get_cache_service
from .capacity_resolver import CapacityResolution, CapacityResolver
from .occupancy_counter import OccupancyCounter

logger = logging.getLogger(__name__)

REASON_AVAILABLE = "available"
REASON_NO_CAPACITY = "no_capacity"
REASON_SUBGROUP_NOT_FOUND = "subgroup_not_found"


class AvailabilityService(BaseService):
    """
    Advisory availability reads for course subgroups.

    Unlimited subgroups are reported with ``settings.unlimited_capacity_sentinel``
    (999) so callers can keep treating the value as a number.
    """

    def __init__(
        self,
        db: Session,
        cache: Optional[CacheService] = None,
        availability_cache: Optional[AvailabilityCache] = None,
    ):
        super().__init__(db, cache)
        self.course_repository = RepositoryFactory.create_course_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.resolver = CapacityResolver(self.course_repository)
        self.occupancy = OccupancyCounter(self.booking_repository, self.course_repository)
        self.availability_cache = availability_cache or AvailabilityCache(
            cache or get_cache_service()
        )

    # Core computation

    def _slots_from(self, resolution: CapacityResolution, occupied: int) -> int:
        if resolution.is_unlimited:
            return settings.unlimited_capacity_sentinel
        max_participants = resolution.max_participants or 0
        if max_participants <= 0:
            return 0
        return max(0, max_participants - occupied)

    def _compute_slots(self, subgroup: CourseSubgroup, booking_date: date) -> Tuple[int, CapacityResolution]:
        resolution = self.resolver.resolve(subgroup, booking_date)
        if resolution.is_unlimited or (resolution.max_participants or 0) <= 0:
            return self._slots_from(resolution, 0), resolution

        occupied = self.occupancy.count_active(subgroup.id, booking_date)
        slots = self._slots_from(resolution, occupied)
        self.logger.debug(
            "Calculated available slots",
            extra={
                "subgroup_id": subgroup.id,
                "date": booking_date.isoformat(),
                "max_participants": resolution.max_participants,
                "capacity_source": resolution.source,
                "occupied": occupied,
                "available": slots,
            },
        )
        return slots, resolution

    def _get_subgroup_or_404(self, subgroup_id: str) -> CourseSubgroup:
        subgroup = self.course_repository.get_subgroup(subgroup_id)
        if subgroup is None:
            raise NotFoundException(
                f"Subgroup {subgroup_id} not found",
                code="SUBGROUP_NOT_FOUND",
                details={"subgroup_id": subgroup_id},
            )
        return subgroup

    def _slots_for(self, subgroup: CourseSubgroup, booking_date: date) -> int:
        cached = self.availability_cache.get(subgroup.id, booking_date)
        if cached is not None:
            return cached
        slots, _ = self._compute_slots(subgroup, booking_date)
        self.availability_cache.put(subgroup.id, booking_date, slots)
        return slots

    # Public API

    @BaseService.measure_operation("get_available_slots")
    def get_available_slots(self, subgroup_id: str, booking_date: date) -> int:
        """
        Remaining places of a subgroup on a date.

        Raises:
            NotFoundException: unknown subgroup
        """
        cached = self.availability_cache.get(subgroup_id, booking_date)
        if cached is not None:
            return cached

        subgroup = self._get_subgroup_or_404(subgroup_id)
        slots, _ = self._compute_slots(subgroup, booking_date)
        self.availability_cache.put(subgroup_id, booking_date, slots)
        return slots

    @BaseService.measure_operation("has_availability")
    def has_availability(self, subgroup_id: str, booking_date: date, requested_count: int = 1) -> bool:
        return self.get_available_slots(subgroup_id, booking_date) >= requested_count

    @BaseService.measure_operation("get_availability_for_dates")
    def get_availability_for_dates(self, subgroup_id: str, dates: Iterable[date]) -> Dict[str, int]:
        """Remaining places per date, keyed by ISO date, in input order."""
        unique_dates = list(dict.fromkeys(dates))
        if not unique_dates:
            return {}

        cached = self.availability_cache.get_many(subgroup_id, unique_dates)
        missing = [d for d in unique_dates if d not in cached]
        computed: Dict[date, int] = {}

        if missing:
            subgroup = self._get_subgroup_or_404(subgroup_id)
            # Only dates with a finite positive limit need an occupancy count
            resolutions = {d: self.resolver.resolve(subgroup, d) for d in missing}
            to_count = [
                d
                for d, r in resolutions.items()
                if not r.is_unlimited and (r.max_participants or 0) > 0
            ]
            counts = self.occupancy.count_active_for_dates(subgroup_id, to_count)
            for d in missing:
                computed[d] = self._slots_from(resolutions[d], counts.get(d, 0))
                self.availability_cache.put(subgroup_id, d, computed[d])

        return {d.isoformat(): cached.get(d, computed.get(d, 0)) for d in unique_dates}

    @BaseService.measure_operation("validate_cart_availability")
    def validate_cart_availability(
        self, items: Sequence[Union[CartItem, Mapping[str, Any]]]
    ) -> CartValidationData:
        """
        Check every (subgroup, date) of a cart.

        Items asking for the same subgroup and date are summed, so two
        participants in one cart need two free places. Domain problems are
        reported in ``details``; nothing is locked or reserved.
        """
        cart_items = [self._parse_cart_item(item) for item in items]

        requested: Dict[Tuple[str, date], int] = {}
        for item in cart_items:
            key = (item.subgroup_id, item.booking_date)
            requested[key] = requested.get(key, 0) + item.requested_count

        evaluated: Dict[Tuple[str, date], AvailabilityDetailData] = {}
        subgroups: Dict[str, Optional[CourseSubgroup]] = {}
        for (subgroup_id, booking_date), count in requested.items():
            if subgroup_id not in subgroups:
                subgroups[subgroup_id] = self.course_repository.get_subgroup(subgroup_id)
            evaluated[(subgroup_id, booking_date)] = self._evaluate_cart_key(
                subgroups[subgroup_id], subgroup_id, booking_date, count
            )

        details: List[AvailabilityDetailData] = [
            evaluated[(item.subgroup_id, item.booking_date)] for item in cart_items
        ]
        is_available = all(detail["available"] for detail in evaluated.values())

        if not is_available:
            self.logger.info(
                "Cart availability check failed",
                extra={
                    "unavailable": [
                        {"subgroup_id": d["subgroup_id"], "date": d["date"], "reason": d["reason"]}
                        for d in evaluated.values()
                        if not d["available"]
                    ]
                },
            )

        return {
            "is_available": is_available,
            "details": details,
            "validated_at": datetime.now(timezone.utc).isoformat(),
        }

    def _parse_cart_item(self, item: Union[CartItem, Mapping[str, Any]]) -> CartItem:
        if isinstance(item, CartItem):
            return item
        try:
            return CartItem.model_validate(dict(item))
        except ValidationError as exc:
            raise ValidationException(
                "Invalid cart item", code="INVALID_CART_ITEM", details={"errors": exc.errors()}
            ) from exc

    def _evaluate_cart_key(
        self,
        subgroup: Optional[CourseSubgroup],
        subgroup_id: str,
        booking_date: date,
        requested_count: int,
    ) -> AvailabilityDetailData:
        if subgroup is None:
            return {
                "subgroup_id": subgroup_id,
                "date": booking_date.isoformat(),
                "requested_count": requested_count,
                "available": False,
                "remaining": 0,
                "max_participants": None,
                "reason": REASON_SUBGROUP_NOT_FOUND,
            }

        remaining = self._slots_for(subgroup, booking_date)
        resolution = self.resolver.resolve(subgroup, booking_date)
        available = resolution.is_unlimited or remaining >= requested_count
        return {
            "subgroup_id": subgroup_id,
            "date": booking_date.isoformat(),
            "requested_count": requested_count,
            "available": available,
            "remaining": remaining,
            "max_participants": resolution.max_participants,
            "reason": REASON_AVAILABLE if available else REASON_NO_CAPACITY,
        }

    @BaseService.measure_operation("invalidate_availability_cache")
    def invalidate_cache(self, subgroup_id: str, booking_date: Optional[date] = None) -> None:
        """Drop cached availability for one date, or every date when none is given."""
        if booking_date is not None:
            self.availability_cache.invalidate(subgroup_id, booking_date)
        else:
            self.availability_cache.invalidate_all(subgroup_id)

        self.logger.info(
            "Availability cache invalidated",
            extra={
                "subgroup_id": subgroup_id,
                "date": booking_date.isoformat() if booking_date else "all",
            },
        )

    @BaseService.measure_operation("get_interval_statistics")
    def get_interval_statistics(self, interval_id: str) -> IntervalStatisticsData:
        """
        Occupancy statistics of a course interval.

        Each subgroup contributes one slot pool per course date inside the
        interval (only its own date when it is bound to one). Unlimited
        subgroups contribute no capacity and are counted separately.
        """
        interval = self.course_repository.get_interval(interval_id)
        if interval is None:
            raise NotFoundException(
                f"Interval {interval_id} not found",
                code="INTERVAL_NOT_FOUND",
                details={"interval_id": interval_id},
            )

        course_dates = self.course_repository.get_dates_in_range(
            interval.course_id, interval.start_date, interval.end_date
        )
        subgroups = self.course_repository.get_subgroups_for_course(interval.course_id)

        total_slots = 0
        occupied_slots = 0
        unlimited = 0
        for subgroup in subgroups:
            dates = self._subgroup_dates(subgroup, course_dates, interval.start_date, interval.end_date)
            if not dates:
                continue
            counts = self.occupancy.count_active_for_dates(subgroup.id, dates)
            counted_unlimited = False
            for d in dates:
                max_participants = self.resolver.resolve_max_participants(subgroup, d)
                if max_participants is None:
                    counted_unlimited = True
                    continue
                capacity = max(0, max_participants)
                total_slots += capacity
                occupied_slots += min(counts.get(d, 0), capacity)
            if counted_unlimited:
                unlimited += 1

        occupancy_rate = round(occupied_slots / total_slots * 100, 2) if total_slots > 0 else 0.0

        return {
            "interval_id": interval.id,
            "course_id": interval.course_id,
            "start_date": interval.start_date.isoformat(),
            "end_date": interval.end_date.isoformat(),
            "dates_count": len(course_dates),
            "subgroups_count": len(subgroups),
            "unlimited_subgroups": unlimited,
            "total_slots": total_slots,
            "occupied_slots": occupied_slots,
            "available_slots": total_slots - occupied_slots,
            "occupancy_rate": occupancy_rate,
        }

    @staticmethod
    def _subgroup_dates(
        subgroup: CourseSubgroup, course_dates: List[date], start: date, end: date
    ) -> List[date]:
        own_date = subgroup.course_date.date if subgroup.course_date is not None else None
        if own_date is None:
            return course_dates
        return [own_date] if start <= own_date <= end else []
