"""
Course structure models.

A course is split into dates, skill groups and subgroups. The subgroup is the
atomic bookable unit: one skill group of one course on one date/time slot.
Capacity can be overridden per season interval at group and subgroup level.
"""

from enum import Enum, IntEnum
import json
import logging
from typing import Any, List

from sqlalchemy import (
    JSON,
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
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base

logger = logging.getLogger(__name__)


def _ulid() -> str:
    return str(ulid.ULID())


class CourseType(IntEnum):
    """Course kinds; stored as integers."""

    COLLECTIVE = 1
    PRIVATE = 2


class IntervalsConfigMode(str, Enum):
    """Whether interval-level capacity overrides apply."""

    UNIFIED = "unified"
    INDEPENDENT = "independent"


class IntervalDiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


class Course(Base):
    """A sellable course offering owned by a school."""

    __tablename__ = "courses"

    id = Column(String(26), primary_key=True, index=True, default=_ulid)
    school_id = Column(String(26), ForeignKey("schools.id"), nullable=False, index=True)
    sport_id = Column(String(26), nullable=True)
    name = Column(String(255), nullable=False)

    course_type = Column(Integer, nullable=False, default=CourseType.COLLECTIVE)
    is_flexible = Column(Boolean, nullable=False, default=False)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=True)

    # [{"intervalo": "1h 30m", "1": 60, "2": 100}, ...]
    price_range = Column(JSON, nullable=True)
    # Course-wide date-count discounts: [{"date": 3, "discount": 10, "type": 1}, ...]
    discounts = Column(JSON, nullable=True)

    intervals_config_mode = Column(
        String(20), nullable=False, default=IntervalsConfigMode.UNIFIED.value
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    school = relationship("School", back_populates="courses")
    intervals = relationship(
        "CourseInterval", back_populates="course", order_by="CourseInterval.start_date"
    )
    course_dates = relationship("CourseDate", back_populates="course")
    groups = relationship("CourseGroup", back_populates="course")
    subgroups = relationship("CourseSubgroup", back_populates="course")
    extras = relationship("CourseExtra", back_populates="course")

    __table_args__ = (
        CheckConstraint("course_type IN (1, 2)", name="ck_courses_course_type"),
        CheckConstraint(
            "intervals_config_mode IN ('unified', 'independent')",
            name="ck_courses_intervals_config_mode",
        ),
        CheckConstraint("price >= 0", name="check_course_price_non_negative"),
    )

    @property
    def is_collective(self) -> bool:
        return self.course_type == CourseType.COLLECTIVE

    @property
    def is_private(self) -> bool:
        return self.course_type == CourseType.PRIVATE

    @property
    def uses_independent_intervals(self) -> bool:
        return self.intervals_config_mode == IntervalsConfigMode.INDEPENDENT.value

    def __repr__(self) -> str:
        return (
            f"<Course {self.id}: {self.name} type={self.course_type} "
            f"flexible={self.is_flexible} mode={self.intervals_config_mode}>"
        )


class CourseInterval(Base):
    """A season/period of a course; scope for capacity overrides and discounts."""

    __tablename__ = "course_intervals"

    id = Column(String(26), primary_key=True, index=True, default=_ulid)
    course_id = Column(String(26), ForeignKey("courses.id"), nullable=False)
    name = Column(String(255), nullable=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)

    course = relationship("Course", back_populates="intervals")
    interval_groups = relationship("CourseIntervalGroup", back_populates="interval")
    discounts = relationship(
        "CourseIntervalDiscount",
        back_populates="interval",
        order_by="CourseIntervalDiscount.min_days",
    )

    __table_args__ = (
        CheckConstraint("start_date <= end_date", name="check_interval_date_order"),
        Index("ix_course_intervals_course_dates", "course_id", "start_date", "end_date"),
    )

    def __repr__(self) -> str:
        return f"<CourseInterval {self.id}: {self.start_date}..{self.end_date}>"


class CourseIntervalDiscount(Base):
    """Date-count discount rule scoped to one interval."""

    __tablename__ = "course_interval_discounts"

    id = Column(String(26), primary_key=True, index=True, default=_ulid)
    course_interval_id = Column(String(26), ForeignKey("course_intervals.id"), nullable=False)
    min_days = Column(Integer, nullable=False)
    discount_type = Column(
        String(20), nullable=False, default=IntervalDiscountType.PERCENTAGE.value
    )
    discount_value = Column(Numeric(10, 2), nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)

    interval = relationship("CourseInterval", back_populates="discounts")


class CourseDate(Base):
    """One calendar date/time window of a course."""

    __tablename__ = "course_dates"

    id = Column(String(26), primary_key=True, index=True, default=_ulid)
    course_id = Column(String(26), ForeignKey("courses.id"), nullable=False, index=True)
    course_interval_id = Column(String(26), ForeignKey("course_intervals.id"), nullable=True)
    date = Column(Date, nullable=False)
    hour_start = Column(Time, nullable=True)
    hour_end = Column(Time, nullable=True)

    course = relationship("Course", back_populates="course_dates")
    interval = relationship("CourseInterval")


class CourseGroup(Base):
    """A skill-level grouping within a course."""

    __tablename__ = "course_groups"

    id = Column(String(26), primary_key=True, index=True, default=_ulid)
    course_id = Column(String(26), ForeignKey("courses.id"), nullable=False, index=True)
    course_date_id = Column(String(26), ForeignKey("course_dates.id"), nullable=True)
    degree_id = Column(String(26), nullable=True)
    max_participants = Column(Integer, nullable=True)

    course = relationship("Course", back_populates="groups")
    subgroups = relationship("CourseSubgroup", back_populates="group")


class CourseSubgroup(Base):
    """
    Atomic bookable unit.

    ``max_participants`` of None means the subgroup has no capacity limit.
    """

    __tablename__ = "course_subgroups"

    id = Column(String(26), primary_key=True, index=True, default=_ulid)
    course_id = Column(String(26), ForeignKey("courses.id"), nullable=False, index=True)
    course_group_id = Column(String(26), ForeignKey("course_groups.id"), nullable=False)
    course_date_id = Column(String(26), ForeignKey("course_dates.id"), nullable=True)
    degree_id = Column(String(26), nullable=True)
    max_participants = Column(Integer, nullable=True)

    course = relationship("Course", back_populates="subgroups")
    group = relationship("CourseGroup", back_populates="subgroups")
    course_date = relationship("CourseDate")

    __table_args__ = (
        CheckConstraint(
            "max_participants IS NULL OR max_participants >= 0",
            name="check_subgroup_max_participants_non_negative",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<CourseSubgroup {self.id}: group={self.course_group_id} "
            f"max={self.max_participants}>"
        )


class CourseIntervalGroup(Base):
    """Interval-scoped override of a group's max participants."""

    __tablename__ = "course_interval_groups"

    id = Column(String(26), primary_key=True, index=True, default=_ulid)
    course_id = Column(String(26), ForeignKey("courses.id"), nullable=False)
    course_interval_id = Column(String(26), ForeignKey("course_intervals.id"), nullable=False)
    course_group_id = Column(String(26), ForeignKey("course_groups.id"), nullable=False)
    max_participants = Column(Integer, nullable=True)
    active = Column(Boolean, nullable=False, default=True)

    interval = relationship("CourseInterval", back_populates="interval_groups")
    interval_subgroups = relationship("CourseIntervalSubgroup", back_populates="interval_group")

    __table_args__ = (
        UniqueConstraint(
            "course_interval_id", "course_group_id", name="uq_interval_group_interval_group"
        ),
    )


class CourseIntervalSubgroup(Base):
    """Interval-scoped override of a subgroup's max participants; highest priority."""

    __tablename__ = "course_interval_subgroups"

    id = Column(String(26), primary_key=True, index=True, default=_ulid)
    course_interval_group_id = Column(
        String(26), ForeignKey("course_interval_groups.id"), nullable=False
    )
    course_subgroup_id = Column(String(26), ForeignKey("course_subgroups.id"), nullable=False)
    max_participants = Column(Integer, nullable=True)
    active = Column(Boolean, nullable=False, default=True)

    interval_group = relationship("CourseIntervalGroup", back_populates="interval_subgroups")

    __table_args__ = (
        UniqueConstraint(
            "course_interval_group_id",
            "course_subgroup_id",
            name="uq_interval_subgroup_group_subgroup",
        ),
    )


class CourseExtra(Base):
    """Optional priced add-on of a course (rental, lunch, ...)."""

    __tablename__ = "course_extras"

    id = Column(String(26), primary_key=True, index=True, default=_ulid)
    course_id = Column(String(26), ForeignKey("courses.id"), nullable=False)
    name = Column(String(255), nullable=True)
    price = Column(Numeric(10, 2), nullable=False, default=0)

    course = relationship("Course", back_populates="extras")


def raw_discount_rules(course: Course) -> List[Any]:
    """Course-level discount list, tolerating legacy JSON strings."""
    raw = course.discounts
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("Malformed discounts JSON on course %s", course.id)
            return []
    return raw if isinstance(raw, list) else []


__all__ = [
    "Course",
    "CourseDate",
    "CourseExtra",
    "CourseGroup",
    "CourseInterval",
    "CourseIntervalDiscount",
    "CourseIntervalGroup",
    "CourseIntervalSubgroup",
    "CourseSubgroup",
    "CourseType",
    "IntervalDiscountType",
    "IntervalsConfigMode",
    "raw_discount_rules",
]
