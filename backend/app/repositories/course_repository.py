# backend/app/repositories/course_repository.py
"""
Course Repository for the ski school booking platform.

Data access for the course structure: subgroups (the bookable unit),
season intervals, interval-scoped capacity overrides, interval discount
rules and extras. All capacity-related lookups are plain single-row reads so
the capacity resolver can chain them in priority order.
"""

from datetime import date
import logging
from typing import List, Optional, Sequence

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session, joinedload

from ..core.exceptions import RepositoryException
from ..models.course import (
    Course,
    CourseDate,
    CourseExtra,
    CourseInterval,
    CourseIntervalDiscount,
    CourseIntervalGroup,
    CourseIntervalSubgroup,
    CourseSubgroup,
)
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class CourseRepository(BaseRepository[Course]):
    """Repository for courses and their structural children."""

    def __init__(self, db: Session):
        super().__init__(db, Course)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(joinedload(Course.school))

    # Subgroups

    def get_subgroup(self, subgroup_id: str) -> Optional[CourseSubgroup]:
        """Get a subgroup with its course loaded."""
        query = (
            self.db.query(CourseSubgroup)
            .options(joinedload(CourseSubgroup.course))
            .filter(CourseSubgroup.id == subgroup_id)
        )
        return self._execute_first(query)

    def lock_subgroup(self, subgroup_id: str) -> Optional[CourseSubgroup]:
        """
        Lock the subgroup row for the rest of the transaction.

        Serializes every commit that claims seats in this subgroup. SQLite has
        no row locks and pysqlite does not open a transaction for a SELECT, so
        there a no-op UPDATE takes the database write lock before the read.
        """
        if self._is_sqlite():
            self._take_sqlite_write_lock(subgroup_id)
        return self._execute_first(self.locked_subgroup_query(subgroup_id))

    def locked_subgroup_query(self, subgroup_id: str) -> Query:
        """SELECT ... FOR UPDATE on one subgroup row."""
        return (
            self.db.query(CourseSubgroup)
            .filter(CourseSubgroup.id == subgroup_id)
            .with_for_update()
        )

    def _is_sqlite(self) -> bool:
        return self.db.get_bind().dialect.name == "sqlite"

    def _take_sqlite_write_lock(self, subgroup_id: str) -> None:
        table = CourseSubgroup.__table__
        try:
            self.db.execute(update(table).where(table.c.id == subgroup_id).values(id=table.c.id))
        except SQLAlchemyError as e:
            self.logger.error(f"Error locking subgroup {subgroup_id}: {str(e)}")
            raise RepositoryException(f"Failed to lock subgroup {subgroup_id}: {str(e)}")

    def get_subgroups_for_course(self, course_id: str) -> List[CourseSubgroup]:
        query = (
            self.db.query(CourseSubgroup)
            .filter(CourseSubgroup.course_id == course_id)
            .order_by(CourseSubgroup.id)
        )
        return self._execute_query(query)

    # Intervals

    def get_interval(self, interval_id: str) -> Optional[CourseInterval]:
        query = (
            self.db.query(CourseInterval)
            .options(joinedload(CourseInterval.course))
            .filter(CourseInterval.id == interval_id)
        )
        return self._execute_first(query)

    def find_interval_for_date(self, course_id: str, target_date: date) -> Optional[CourseInterval]:
        """Find the interval of a course whose [start_date, end_date] contains the date."""
        query = (
            self.db.query(CourseInterval)
            .filter(
                CourseInterval.course_id == course_id,
                CourseInterval.start_date <= target_date,
                CourseInterval.end_date >= target_date,
            )
            .order_by(CourseInterval.start_date)
        )
        return self._execute_first(query)

    def get_intervals_for_course(self, course_id: str) -> List[CourseInterval]:
        query = (
            self.db.query(CourseInterval)
            .filter(CourseInterval.course_id == course_id)
            .order_by(CourseInterval.start_date)
        )
        return self._execute_query(query)

    def get_interval_group_override(
        self, interval_id: str, course_group_id: str
    ) -> Optional[CourseIntervalGroup]:
        """Group-level override row for (interval, group), active or not."""
        query = self.db.query(CourseIntervalGroup).filter(
            CourseIntervalGroup.course_interval_id == interval_id,
            CourseIntervalGroup.course_group_id == course_group_id,
        )
        return self._execute_first(query)

    def get_interval_subgroup_override(
        self, interval_group_id: str, subgroup_id: str
    ) -> Optional[CourseIntervalSubgroup]:
        """Subgroup-level override row for (interval group, subgroup), active or not."""
        query = self.db.query(CourseIntervalSubgroup).filter(
            CourseIntervalSubgroup.course_interval_group_id == interval_group_id,
            CourseIntervalSubgroup.course_subgroup_id == subgroup_id,
        )
        return self._execute_first(query)

    def get_active_interval_discounts(self, interval_id: str) -> List[CourseIntervalDiscount]:
        query = (
            self.db.query(CourseIntervalDiscount)
            .filter(
                CourseIntervalDiscount.course_interval_id == interval_id,
                CourseIntervalDiscount.active.is_(True),
            )
            .order_by(CourseIntervalDiscount.min_days)
        )
        return self._execute_query(query)

    # Dates

    def get_course_date(self, course_date_id: str) -> Optional[CourseDate]:
        query = self.db.query(CourseDate).filter(CourseDate.id == course_date_id)
        return self._execute_first(query)

    def get_dates_in_range(self, course_id: str, start: date, end: date) -> List[date]:
        """Distinct calendar dates a course runs on between start and end (inclusive)."""
        query = (
            self.db.query(CourseDate.date)
            .filter(
                CourseDate.course_id == course_id,
                CourseDate.date >= start,
                CourseDate.date <= end,
            )
            .distinct()
            .order_by(CourseDate.date)
        )
        return [row[0] for row in self._execute_query(query)]

    # Extras

    def get_extras(self, extra_ids: Sequence[str]) -> List[CourseExtra]:
        if not extra_ids:
            return []
        query = self.db.query(CourseExtra).filter(CourseExtra.id.in_(list(extra_ids)))
        return self._execute_query(query)
