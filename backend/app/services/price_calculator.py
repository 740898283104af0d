# backend/app/services/price_calculator.py
"""
Price Calculator for the ski school booking platform.

Prices one participant line according to the course kind:

- collective, fixed: the course price, however many dates the client attends
- collective, flexible: per distinct date with interval date-count discounts
- private, fixed: the course price per line
- private, flexible: the ``price_range`` tier for the lesson duration and the
  number of participants sharing the lesson

Extras are added on top, and cancellation insurance (school rate) applies to
activity plus extras when the booking carries it. Incomplete pricing
configuration never raises: the activity price becomes 0 and a warning is
logged so the school can fix the course.
"""

from decimal import Decimal
import logging
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from ..models.booking import Booking, BookingUser, BookingUserStatus
from ..models.course import Course, CourseType
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.pricing import LinePriceData
from ..utils.duration_tiers import find_tier, format_duration, participant_price
from ..utils.money import ZERO, round_money, to_decimal
from .base import BaseService
from .interval_discount import IntervalDiscountCalculator
from .school_config_service import SchoolConfigService

logger = logging.getLogger(__name__)


def _zero_breakdown() -> LinePriceData:
    return {
        "price_without_extras": ZERO,
        "extras_price": ZERO,
        "cancellation_insurance_price": ZERO,
        "total_price": ZERO,
    }


def same_private_slot(a: BookingUser, b: BookingUser) -> bool:
    """Whether two lines share one private lesson (same booking, monitor, window)."""
    return (
        a.course_id == b.course_id
        and a.date == b.date
        and a.hour_start == b.hour_start
        and a.hour_end == b.hour_end
        and a.monitor_id == b.monitor_id
        and a.group_id == b.group_id
        and a.booking_id == b.booking_id
        and a.school_id == b.school_id
    )


class PriceCalculator(BaseService):
    """Computes line price breakdowns and price snapshots."""

    def __init__(self, db: Session, school_config: Optional[SchoolConfigService] = None):
        super().__init__(db)
        self.course_repository = RepositoryFactory.create_course_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.school_config = school_config or SchoolConfigService(db)
        self.interval_discounts = IntervalDiscountCalculator(self.course_repository)

    @BaseService.measure_operation("calculate_line_price")
    def calculate_line_price(
        self,
        booking_user: BookingUser,
        sibling_lines: Optional[Sequence[BookingUser]] = None,
    ) -> LinePriceData:
        """
        Price breakdown of one line.

        Args:
            booking_user: the line to price
            sibling_lines: lines already in memory (usually the whole booking);
                when omitted, the siblings needed for flexible pricing are read
                from the database
        """
        course = self._course_for(booking_user)
        if course is None:
            self.logger.warning(
                "Cannot price line without a course",
                extra={"booking_user_id": booking_user.id, "course_id": booking_user.course_id},
            )
            return _zero_breakdown()

        activity = self.calculate_activity_price(booking_user, course, sibling_lines)
        if activity is None:
            return _zero_breakdown()

        extras = self.calculate_extras_price(booking_user)
        insurance = ZERO
        booking = booking_user.booking
        if booking is not None and booking.has_cancellation_insurance:
            rate = self.school_config.cancellation_insurance_percent(self._school_for(booking))
            insurance = round_money((activity + extras) * rate)

        return {
            "price_without_extras": activity,
            "extras_price": extras,
            "cancellation_insurance_price": insurance,
            "total_price": round_money(activity + extras + insurance),
        }

    def calculate_activity_price(
        self,
        booking_user: BookingUser,
        course: Course,
        sibling_lines: Optional[Sequence[BookingUser]] = None,
    ) -> Optional[Decimal]:
        """Activity price without extras or insurance; None for an unknown course type."""
        if course.course_type == CourseType.COLLECTIVE:
            if course.is_flexible:
                lines = self._client_course_lines(booking_user, sibling_lines)
                return self.interval_discounts.calculate(course, lines)
            return round_money(course.price)

        if course.course_type == CourseType.PRIVATE:
            if course.is_flexible:
                return self._private_flexible_price(booking_user, course, sibling_lines)
            return round_money(course.price)

        self.logger.warning(
            "Invalid course type, pricing line at 0",
            extra={"course_id": course.id, "course_type": course.course_type},
        )
        prometheus_metrics.inc_pricing_configuration_gap("unknown_course_type")
        return None

    def calculate_extras_price(self, booking_user: BookingUser) -> Decimal:
        total = ZERO
        missing_ids: List[str] = []
        for line_extra in booking_user.booking_user_extras:
            if line_extra.course_extra is not None:
                total += to_decimal(line_extra.course_extra.price)
            elif line_extra.course_extra_id:
                missing_ids.append(line_extra.course_extra_id)
        if missing_ids:
            prices = {e.id: to_decimal(e.price) for e in self.course_repository.get_extras(missing_ids)}
            total += sum((prices.get(extra_id, ZERO) for extra_id in missing_ids), ZERO)
        return round_money(total)

    def snapshot_line_price(
        self,
        booking_user: BookingUser,
        sibling_lines: Optional[Sequence[BookingUser]] = None,
    ) -> Decimal:
        """
        Store the line price (activity plus extras) on the line.

        Called once when the line is created; stored prices are never
        recomputed afterwards.
        """
        breakdown = self.calculate_line_price(booking_user, sibling_lines)
        booking_user.price = round_money(breakdown["price_without_extras"] + breakdown["extras_price"])
        return booking_user.price

    # Helpers

    def _course_for(self, booking_user: BookingUser) -> Optional[Course]:
        if booking_user.course is not None:
            return booking_user.course
        if booking_user.course_id:
            return self.course_repository.get_by_id(booking_user.course_id, load_relationships=False)
        return None

    def _school_for(self, booking: Booking):
        if booking.school is not None:
            return booking.school
        return self.school_config.get_school(booking.school_id)

    def _client_course_lines(
        self, booking_user: BookingUser, sibling_lines: Optional[Sequence[BookingUser]]
    ) -> List[BookingUser]:
        if sibling_lines is None:
            lines = self.booking_repository.get_client_course_lines(
                booking_user.client_id, booking_user.course_id
            )
        else:
            lines = [
                line
                for line in sibling_lines
                if line.client_id == booking_user.client_id
                and line.course_id == booking_user.course_id
            ]
        if booking_user not in lines:
            lines.append(booking_user)
        return [line for line in lines if line.status != BookingUserStatus.CANCELLED]

    def _private_group_count(
        self, booking_user: BookingUser, sibling_lines: Optional[Sequence[BookingUser]]
    ) -> int:
        if sibling_lines is None:
            return self.booking_repository.count_private_group(
                course_id=booking_user.course_id,
                booking_date=booking_user.date,
                hour_start=booking_user.hour_start,
                hour_end=booking_user.hour_end,
                monitor_id=booking_user.monitor_id,
                group_id=booking_user.group_id,
                booking_id=booking_user.booking_id,
                school_id=booking_user.school_id,
            )
        group = [
            line
            for line in sibling_lines
            if line.status == BookingUserStatus.ACTIVE and same_private_slot(line, booking_user)
        ]
        if booking_user not in group and booking_user.status == BookingUserStatus.ACTIVE:
            group.append(booking_user)
        return len(group)

    def _private_flexible_price(
        self,
        booking_user: BookingUser,
        course: Course,
        sibling_lines: Optional[Sequence[BookingUser]],
    ) -> Decimal:
        minutes = booking_user.duration_minutes
        tier = find_tier(course.price_range, minutes)
        if tier is None:
            self.logger.warning(
                "No price tier for lesson duration",
                extra={
                    "course_id": course.id,
                    "booking_user_id": booking_user.id,
                    "duration_minutes": minutes,
                    "duration_label": format_duration(minutes) if minutes else None,
                },
            )
            prometheus_metrics.inc_pricing_configuration_gap("missing_tier")
            return ZERO

        participants = self._private_group_count(booking_user, sibling_lines)
        price = participant_price(tier, participants)
        if price is None:
            self.logger.warning(
                "Price not defined for participant count",
                extra={
                    "course_id": course.id,
                    "booking_user_id": booking_user.id,
                    "participants": participants,
                    "duration_label": format_duration(minutes) if minutes else None,
                },
            )
            prometheus_metrics.inc_pricing_configuration_gap("missing_participant_price")
            return ZERO
        return round_money(price)
