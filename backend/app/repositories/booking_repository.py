# backend/app/repositories/booking_repository.py
"""
Booking Repository for the ski school booking platform.

Implements data access for bookings and their participant lines:
- Occupancy counting per (subgroup, date)
- Sibling line lookups used by flexible pricing
- Booking loading with lines, extras, payments and voucher movements
"""

from datetime import date, time
import logging
from typing import List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Query, Session, joinedload, selectinload

from ..models.booking import (
    Booking,
    BookingStatus,
    BookingUser,
    BookingUserExtra,
    BookingUserStatus,
)
from ..models.course import CourseExtra
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class BookingRepository(BaseRepository[Booking]):
    """
    Repository for booking data access.

    Occupancy is always counted from the database; nothing here is cached.
    """

    def __init__(self, db: Session):
        """Initialize with Booking model."""
        super().__init__(db, Booking)
        self.logger = logging.getLogger(__name__)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(
            selectinload(Booking.booking_users)
            .selectinload(BookingUser.booking_user_extras)
            .joinedload(BookingUserExtra.course_extra),
            selectinload(Booking.booking_users).joinedload(BookingUser.course),
            selectinload(Booking.booking_users).joinedload(BookingUser.course_date),
            selectinload(Booking.payments),
            selectinload(Booking.vouchers_logs),
            joinedload(Booking.school),
        )

    # Occupancy

    def count_active_for_subgroup(self, subgroup_id: str, booking_date: date) -> int:
        """
        Count participants holding a slot of a subgroup on a date.

        Only active lines count, and only when their booking is not cancelled.
        """
        query = (
            self.db.query(func.count(BookingUser.id))
            .join(Booking, Booking.id == BookingUser.booking_id)
            .filter(
                BookingUser.course_subgroup_id == subgroup_id,
                BookingUser.date == booking_date,
                BookingUser.status == BookingUserStatus.ACTIVE,
                Booking.status != BookingStatus.CANCELLED,
            )
        )
        return int(self._execute_scalar(query) or 0)

    def count_active_for_subgroup_dates(
        self, subgroup_id: str, dates: Sequence[date]
    ) -> dict:
        """Occupancy of a subgroup for several dates in one grouped query."""
        if not dates:
            return {}
        query = (
            self.db.query(BookingUser.date, func.count(BookingUser.id))
            .join(Booking, Booking.id == BookingUser.booking_id)
            .filter(
                BookingUser.course_subgroup_id == subgroup_id,
                BookingUser.date.in_(list(dates)),
                BookingUser.status == BookingUserStatus.ACTIVE,
                Booking.status != BookingStatus.CANCELLED,
            )
            .group_by(BookingUser.date)
        )
        return {row[0]: int(row[1]) for row in self._execute_query(query)}

    # Lines

    def get_booking_user(self, booking_user_id: str) -> Optional[BookingUser]:
        query = (
            self.db.query(BookingUser)
            .options(joinedload(BookingUser.booking), joinedload(BookingUser.course))
            .filter(BookingUser.id == booking_user_id)
        )
        return self._execute_first(query)

    def get_booking_users(self, booking_user_ids: Sequence[str]) -> List[BookingUser]:
        if not booking_user_ids:
            return []
        query = (
            self.db.query(BookingUser)
            .options(joinedload(BookingUser.booking))
            .filter(BookingUser.id.in_(list(booking_user_ids)))
            .order_by(BookingUser.id)
        )
        return self._execute_query(query)

    def get_client_course_lines(self, client_id: str, course_id: str) -> List[BookingUser]:
        """Active lines of one client on one course, across bookings."""
        query = (
            self.db.query(BookingUser)
            .options(joinedload(BookingUser.course_date))
            .join(Booking, Booking.id == BookingUser.booking_id)
            .filter(
                BookingUser.client_id == client_id,
                BookingUser.course_id == course_id,
                BookingUser.status != BookingUserStatus.CANCELLED,
                Booking.status != BookingStatus.CANCELLED,
            )
            .order_by(BookingUser.date)
        )
        return self._execute_query(query)

    def count_private_group(
        self,
        *,
        course_id: str,
        booking_date: date,
        hour_start: Optional[time],
        hour_end: Optional[time],
        monitor_id: Optional[str],
        group_id: Optional[int],
        booking_id: str,
        school_id: str,
    ) -> int:
        """Count active co-participants sharing one private lesson slot."""
        query = self.db.query(func.count(BookingUser.id)).filter(
            BookingUser.course_id == course_id,
            BookingUser.date == booking_date,
            BookingUser.booking_id == booking_id,
            BookingUser.school_id == school_id,
            BookingUser.status == BookingUserStatus.ACTIVE,
        )
        # NULL-safe equality for the optional slot descriptors
        for column, value in (
            (BookingUser.hour_start, hour_start),
            (BookingUser.hour_end, hour_end),
            (BookingUser.monitor_id, monitor_id),
            (BookingUser.group_id, group_id),
        ):
            query = query.filter(column.is_(None) if value is None else column == value)
        return int(self._execute_scalar(query) or 0)

    def get_with_lines(self, booking_id: str) -> Optional[Booking]:
        """Booking with lines, extras, payments and voucher logs loaded."""
        return self.get_by_id(booking_id, load_relationships=True)

    def add_extra(self, booking_user: BookingUser, course_extra: CourseExtra) -> BookingUserExtra:
        extra = BookingUserExtra(course_extra_id=course_extra.id, course_extra=course_extra)
        booking_user.booking_user_extras.append(extra)
        self.db.add(extra)
        return extra

    def create_booking_user(self, booking: Booking, **kwargs) -> BookingUser:
        """Attach a new line to a booking and flush it to get its id."""
        line = BookingUser(school_id=booking.school_id, **kwargs)
        booking.booking_users.append(line)
        self.db.add(line)
        self.flush()
        return line
