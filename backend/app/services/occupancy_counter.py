# backend/app/services/occupancy_counter.py
"""
Occupancy of a subgroup on a date.

Always read from the database. The locked variant is used by the booking
commit path: it takes the subgroup row lock first, so the count it returns
cannot change under the caller until its transaction ends.
"""

from datetime import date
import logging
from typing import Dict, Optional, Sequence, Tuple

from ..models.course import CourseSubgroup
from ..repositories.booking_repository import BookingRepository
from ..repositories.course_repository import CourseRepository

logger = logging.getLogger(__name__)


class OccupancyCounter:
    def __init__(self, booking_repository: BookingRepository, course_repository: CourseRepository):
        self.booking_repository = booking_repository
        self.course_repository = course_repository

    def count_active(self, subgroup_id: str, target_date: date) -> int:
        return self.booking_repository.count_active_for_subgroup(subgroup_id, target_date)

    def count_active_for_dates(self, subgroup_id: str, dates: Sequence[date]) -> Dict[date, int]:
        counts = self.booking_repository.count_active_for_subgroup_dates(subgroup_id, dates)
        return {d: counts.get(d, 0) for d in dates}

    def count_active_locked(
        self, subgroup_id: str, target_date: date
    ) -> Tuple[Optional[CourseSubgroup], int]:
        """
        Lock the subgroup row, then count.

        Returns (subgroup, occupied); subgroup is None when it does not exist.
        Must be called inside the transaction that will insert the new lines.
        """
        subgroup = self.course_repository.lock_subgroup(subgroup_id)
        if subgroup is None:
            return None, 0
        occupied = self.booking_repository.count_active_for_subgroup(subgroup_id, target_date)
        return subgroup, occupied
