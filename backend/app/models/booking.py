"""
Booking models for the ski school booking platform.

A Booking is the purchase transaction. Each participant line is a
BookingUser; a line claims one slot of a subgroup on a date (collective
courses) or a monitor/time window (private courses). Line prices are
snapshots taken when the line is created and are never recomputed when the
course pricing changes later.
"""

from datetime import datetime, timezone
from enum import IntEnum
import logging
from typing import Any, List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Time,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base

logger = logging.getLogger(__name__)


class BookingStatus(IntEnum):
    """Booking lifecycle statuses."""

    ACTIVE = 1
    CANCELLED = 2
    PARTIALLY_CANCELLED = 3


class BookingUserStatus(IntEnum):
    """Participant line statuses; only ACTIVE lines hold a slot."""

    ACTIVE = 1
    CANCELLED = 2


class Booking(Base):
    """Purchase transaction grouping participant lines, payments and vouchers."""

    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    school_id = Column(String(26), ForeignKey("schools.id"), nullable=False, index=True)
    client_main_id = Column(String(26), nullable=True)
    user_id = Column(String(26), nullable=True)

    status = Column(Integer, nullable=False, default=BookingStatus.ACTIVE, index=True)
    currency = Column(String(3), nullable=True)

    # Stored aggregates (snapshots written by the commit path)
    price_total = Column(Numeric(10, 2), nullable=False, default=0)
    has_cancellation_insurance = Column(Boolean, nullable=False, default=False)
    price_cancellation_insurance = Column(Numeric(10, 2), nullable=False, default=0)
    has_reduction = Column(Boolean, nullable=False, default=False)
    price_reduction = Column(Numeric(10, 2), nullable=False, default=0)
    discount_code_id = Column(String(26), ForeignKey("discount_codes.id"), nullable=True)
    discount_code_value = Column(Numeric(10, 2), nullable=True)
    paid_total = Column(Numeric(10, 2), nullable=False, default=0)
    paid = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    school = relationship("School")
    booking_users = relationship(
        "BookingUser", back_populates="booking", cascade="all, delete-orphan"
    )
    payments = relationship("Payment", back_populates="booking", cascade="all, delete-orphan")
    vouchers_logs = relationship(
        "VouchersLog", back_populates="booking", cascade="all, delete-orphan"
    )
    discount_code = relationship("DiscountCode")

    __table_args__ = (
        CheckConstraint("status IN (1, 2, 3)", name="ck_bookings_status"),
        CheckConstraint("price_reduction >= 0", name="check_price_reduction_non_negative"),
    )

    @property
    def is_cancelled(self) -> bool:
        return self.status == BookingStatus.CANCELLED

    @property
    def active_booking_users(self) -> List["BookingUser"]:
        return [bu for bu in self.booking_users if bu.status != BookingUserStatus.CANCELLED]

    def cancel(self) -> None:
        """Cancel the booking and every line in it."""
        self.status = BookingStatus.CANCELLED
        self.cancelled_at = datetime.now(timezone.utc)
        for booking_user in self.booking_users:
            booking_user.status = BookingUserStatus.CANCELLED
        logger.info(f"Booking {self.id} cancelled")

    def refresh_status_from_lines(self) -> None:
        """Derive the booking status from its lines after a partial change."""
        statuses = {bu.status for bu in self.booking_users}
        if not statuses or statuses == {BookingUserStatus.CANCELLED}:
            self.status = BookingStatus.CANCELLED
        elif BookingUserStatus.CANCELLED in statuses:
            self.status = BookingStatus.PARTIALLY_CANCELLED
        else:
            self.status = BookingStatus.ACTIVE

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id}: school={self.school_id}, status={self.status}, "
            f"total={self.price_total}>"
        )


class BookingUser(Base):
    """One participant line within a booking."""

    __tablename__ = "booking_users"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    booking_id = Column(String(26), ForeignKey("bookings.id"), nullable=False, index=True)
    school_id = Column(String(26), ForeignKey("schools.id"), nullable=False)
    client_id = Column(String(26), nullable=False, index=True)
    course_id = Column(String(26), ForeignKey("courses.id"), nullable=False, index=True)
    course_date_id = Column(String(26), ForeignKey("course_dates.id"), nullable=True)
    course_group_id = Column(String(26), ForeignKey("course_groups.id"), nullable=True)
    course_subgroup_id = Column(String(26), ForeignKey("course_subgroups.id"), nullable=True)
    degree_id = Column(String(26), nullable=True)
    monitor_id = Column(String(26), nullable=True)
    group_id = Column(Integer, nullable=True)

    date = Column(Date, nullable=False)
    hour_start = Column(Time, nullable=True)
    hour_end = Column(Time, nullable=True)

    status = Column(Integer, nullable=False, default=BookingUserStatus.ACTIVE)
    price = Column(Numeric(10, 2), nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    booking = relationship("Booking", back_populates="booking_users")
    course = relationship("Course")
    course_date = relationship("CourseDate")
    subgroup = relationship("CourseSubgroup")
    booking_user_extras = relationship(
        "BookingUserExtra", back_populates="booking_user", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("status IN (1, 2)", name="ck_booking_users_status"),
        Index("ix_booking_users_subgroup_date_status", "course_subgroup_id", "date", "status"),
        Index("ix_booking_users_client_course", "client_id", "course_id"),
    )

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if self.status is None:
            self.status = BookingUserStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == BookingUserStatus.ACTIVE

    @property
    def duration_minutes(self) -> Optional[int]:
        """Minutes between hour_start and hour_end, None when either is missing."""
        if self.hour_start is None or self.hour_end is None:
            return None
        start = self.hour_start.hour * 60 + self.hour_start.minute
        end = self.hour_end.hour * 60 + self.hour_end.minute
        return abs(end - start)

    def __repr__(self) -> str:
        return (
            f"<BookingUser {self.id}: booking={self.booking_id} client={self.client_id} "
            f"course={self.course_id} subgroup={self.course_subgroup_id} "
            f"date={self.date} status={self.status}>"
        )


class BookingUserExtra(Base):
    """A selected add-on attached to one participant line."""

    __tablename__ = "booking_user_extras"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    booking_user_id = Column(String(26), ForeignKey("booking_users.id"), nullable=False)
    course_extra_id = Column(String(26), ForeignKey("course_extras.id"), nullable=False)

    booking_user = relationship("BookingUser", back_populates="booking_user_extras")
    course_extra = relationship("CourseExtra")


__all__ = [
    "Booking",
    "BookingStatus",
    "BookingUser",
    "BookingUserExtra",
    "BookingUserStatus",
]
