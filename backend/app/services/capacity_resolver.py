# backend/app/services/capacity_resolver.py
"""
Effective capacity of a subgroup on a date.

Priority, highest first:
1. active interval subgroup override (independent mode only)
2. active interval group override with a non-null value (independent mode only)
3. the subgroup's own max_participants

A result of None means unlimited. The resolver is shared by the advisory
availability reads and the locking commit path, so both always agree on the
limit for a given data snapshot.
"""

from dataclasses import dataclass
from datetime import date
import logging
from typing import Optional

from ..models.course import Course, CourseSubgroup
from ..repositories.course_repository import CourseRepository

logger = logging.getLogger(__name__)

SOURCE_SUBGROUP = "subgroup"
SOURCE_INTERVAL_GROUP = "interval_group"
SOURCE_INTERVAL_SUBGROUP = "interval_subgroup"


@dataclass(frozen=True)
class CapacityResolution:
    max_participants: Optional[int]
    source: str
    interval_id: Optional[str] = None

    @property
    def is_unlimited(self) -> bool:
        return self.max_participants is None


class CapacityResolver:
    """Resolves max participants through the interval override chain."""

    def __init__(self, course_repository: CourseRepository):
        self.course_repository = course_repository

    def resolve_max_participants(self, subgroup: CourseSubgroup, target_date: date) -> Optional[int]:
        return self.resolve(subgroup, target_date).max_participants

    def resolve(self, subgroup: CourseSubgroup, target_date: date) -> CapacityResolution:
        base = CapacityResolution(subgroup.max_participants, SOURCE_SUBGROUP)

        course: Optional[Course] = subgroup.course
        if course is None or not course.uses_independent_intervals:
            return base

        interval = self.course_repository.find_interval_for_date(course.id, target_date)
        if interval is None:
            return base

        resolution = CapacityResolution(subgroup.max_participants, SOURCE_SUBGROUP, interval.id)

        interval_group = self.course_repository.get_interval_group_override(
            interval.id, subgroup.course_group_id
        )
        if interval_group is None:
            return resolution

        if interval_group.active and interval_group.max_participants is not None:
            resolution = CapacityResolution(
                interval_group.max_participants, SOURCE_INTERVAL_GROUP, interval.id
            )

        interval_subgroup = self.course_repository.get_interval_subgroup_override(
            interval_group.id, subgroup.id
        )
        if interval_subgroup is not None and interval_subgroup.active:
            # An active subgroup override wins even when its value is null (unlimited)
            resolution = CapacityResolution(
                interval_subgroup.max_participants, SOURCE_INTERVAL_SUBGROUP, interval.id
            )

        logger.debug(
            "Resolved capacity for subgroup %s on %s: %s (%s)",
            subgroup.id,
            target_date,
            resolution.max_participants,
            resolution.source,
        )
        return resolution
