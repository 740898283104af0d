# backend/app/services/booking_commit_service.py
"""
Booking Commit Service for the ski school booking platform.

The authoritative capacity path. Availability reads are advisory and cached;
this service re-checks capacity inside the transaction that inserts the
lines:

1. Collective lines are grouped by (subgroup, date) and the keys are
   processed in sorted order so two checkouts never lock in opposite order.
2. For each key the subgroup row is locked, the effective maximum resolved
   and the active lines re-counted. ``occupied + requested > max`` aborts the
   whole booking with CapacityExceededException.
3. Lines and extras are inserted, prices snapshotted, the discount code
   applied and the booking totals stored.
4. After commit, cached availability of every touched (subgroup, date) is
   dropped.

Unlimited subgroups are never rejected.
"""

from datetime import date, datetime, timezone
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..core.exceptions import (
    BusinessRuleException,
    CapacityExceededException,
    NotFoundException,
    ValidationException,
)
from ..models.booking import Booking, BookingStatus, BookingUser, BookingUserStatus
from ..models.course import Course, CourseSubgroup
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.booking import BookingCreate, BookingLineCreate, DiscountCodeContext
from ..utils.money import ZERO, non_negative, round_money
from .availability_service import AvailabilityService
from .base import BaseService
from .booking_total_analyzer import BookingTotalAnalyzer
from .cache_service import CacheService
from .capacity_resolver import CapacityResolver
from .discount_code_service import DiscountCodeService
from .occupancy_counter import OccupancyCounter
from .price_calculator import PriceCalculator
from .school_config_service import SchoolConfigService

logger = logging.getLogger(__name__)

SlotKey = Tuple[str, date]


class BookingCommitService(BaseService):
    """Creates, cancels and re-activates booking lines under capacity locks."""

    def __init__(
        self,
        db: Session,
        cache: Optional[CacheService] = None,
        availability_service: Optional[AvailabilityService] = None,
    ):
        super().__init__(db, cache)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.course_repository = RepositoryFactory.create_course_repository(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.resolver = CapacityResolver(self.course_repository)
        self.occupancy = OccupancyCounter(self.booking_repository, self.course_repository)
        self.availability_service = availability_service or AvailabilityService(db, cache)
        self.school_config = SchoolConfigService(db)
        self.price_calculator = PriceCalculator(db, self.school_config)
        self.total_analyzer = BookingTotalAnalyzer(db, self.price_calculator, self.school_config)
        self.discount_code_service = DiscountCodeService(db)

    # Creation

    @BaseService.measure_operation("create_booking")
    def create_booking(self, payload: Union[BookingCreate, Mapping[str, Any]]) -> Booking:
        """
        Create a booking with its lines.

        Raises:
            ValidationException: malformed payload or lines not matching their course
            NotFoundException: unknown school, course, subgroup, extra or voucher
            CapacityExceededException: a subgroup has no room for the requested lines
            BusinessRuleException: discount code rejected or voucher balance too low
        """
        data = self._parse_payload(payload)
        self.log_operation(
            "create_booking",
            school_id=data.school_id,
            lines=len(data.lines),
            discount_code=data.discount_code,
        )

        touched: Set[SlotKey] = set()
        with self.transaction():
            school = self.school_config.get_school(data.school_id)
            if school is None:
                raise NotFoundException(
                    f"School {data.school_id} not found",
                    code="SCHOOL_NOT_FOUND",
                    details={"school_id": data.school_id},
                )

            courses = self._load_courses(data)
            subgroups = self._load_subgroups(data, courses)

            requested: Dict[SlotKey, int] = {}
            for line in data.lines:
                if line.course_subgroup_id:
                    key = (line.course_subgroup_id, line.booking_date)
                    requested[key] = requested.get(key, 0) + 1

            for key in sorted(requested):
                self._check_capacity(key[0], key[1], requested[key])
            touched.update(requested)

            booking = self.booking_repository.create(
                school_id=data.school_id,
                client_main_id=data.client_main_id,
                user_id=data.user_id,
                status=BookingStatus.ACTIVE,
                currency=data.currency or self.school_config.currency(school),
                has_cancellation_insurance=data.has_cancellation_insurance,
                has_reduction=data.price_reduction > 0,
                price_reduction=round_money(data.price_reduction),
            )

            for line in data.lines:
                self._create_line(booking, line, subgroups.get(line.course_subgroup_id or ""))

            for booking_user in booking.booking_users:
                self.price_calculator.snapshot_line_price(booking_user, booking.booking_users)

            if data.discount_code:
                self._apply_discount_code(booking, data, courses)

            calculation = self.total_analyzer.calculate_booking_total(booking)
            booking.price_cancellation_insurance = calculation["additional_concepts"][
                "cancellation_insurance"
            ]
            booking.price_total = calculation["total_final"]

            if data.vouchers:
                self._apply_vouchers(booking, data)

            self.booking_repository.flush()
            booking_id = booking.id

        self._invalidate(touched)
        self.logger.info(
            "Booking created",
            extra={"booking_id": booking_id, "slots": len(touched), "school_id": data.school_id},
        )
        return booking

    def _parse_payload(self, payload: Union[BookingCreate, Mapping[str, Any]]) -> BookingCreate:
        if isinstance(payload, BookingCreate):
            return payload
        try:
            return BookingCreate.model_validate(dict(payload))
        except ValidationError as exc:
            raise ValidationException(
                "Invalid booking payload", code="INVALID_BOOKING", details={"errors": exc.errors()}
            ) from exc

    def _load_courses(self, data: BookingCreate) -> Dict[str, Course]:
        courses: Dict[str, Course] = {}
        for course_id in {line.course_id for line in data.lines}:
            course = self.course_repository.get_by_id(course_id, load_relationships=False)
            if course is None:
                raise NotFoundException(
                    f"Course {course_id} not found",
                    code="COURSE_NOT_FOUND",
                    details={"course_id": course_id},
                )
            if course.school_id != data.school_id:
                raise ValidationException(
                    f"Course {course_id} does not belong to school {data.school_id}",
                    code="COURSE_SCHOOL_MISMATCH",
                    details={"course_id": course_id, "school_id": data.school_id},
                )
            courses[course_id] = course
        return courses

    def _load_subgroups(
        self, data: BookingCreate, courses: Dict[str, Course]
    ) -> Dict[str, CourseSubgroup]:
        subgroups: Dict[str, CourseSubgroup] = {}
        for line in data.lines:
            course = courses[line.course_id]
            if course.is_private:
                if line.hour_start is None or line.hour_end is None:
                    raise ValidationException(
                        "Private lessons need hour_start and hour_end",
                        code="MISSING_TIME_WINDOW",
                        details={"course_id": course.id, "client_id": line.client_id},
                    )
                continue

            if not line.course_subgroup_id:
                raise ValidationException(
                    "Collective course lines need a course_subgroup_id",
                    code="MISSING_SUBGROUP",
                    details={"course_id": course.id, "client_id": line.client_id},
                )
            if line.course_subgroup_id in subgroups:
                continue

            subgroup = self.course_repository.get_subgroup(line.course_subgroup_id)
            if subgroup is None:
                raise NotFoundException(
                    f"Subgroup {line.course_subgroup_id} not found",
                    code="SUBGROUP_NOT_FOUND",
                    details={"subgroup_id": line.course_subgroup_id},
                )
            if subgroup.course_id != course.id:
                raise ValidationException(
                    f"Subgroup {subgroup.id} does not belong to course {course.id}",
                    code="SUBGROUP_COURSE_MISMATCH",
                    details={"subgroup_id": subgroup.id, "course_id": course.id},
                )
            subgroups[subgroup.id] = subgroup
        return subgroups

    def _check_capacity(
        self, subgroup_id: str, booking_date: date, requested: int, reason: str = "create"
    ) -> CourseSubgroup:
        """Lock the subgroup and verify ``requested`` more lines fit; caller holds the transaction."""
        subgroup, occupied = self.occupancy.count_active_locked(subgroup_id, booking_date)
        if subgroup is None:
            raise NotFoundException(
                f"Subgroup {subgroup_id} not found",
                code="SUBGROUP_NOT_FOUND",
                details={"subgroup_id": subgroup_id},
            )

        resolution = self.resolver.resolve(subgroup, booking_date)
        if resolution.is_unlimited:
            return subgroup

        max_participants = resolution.max_participants or 0
        if occupied + requested > max_participants:
            prometheus_metrics.inc_capacity_rejection(reason)
            self.logger.warning(
                "Capacity exceeded on commit",
                extra={
                    "subgroup_id": subgroup_id,
                    "date": booking_date.isoformat(),
                    "max_participants": max_participants,
                    "capacity_source": resolution.source,
                    "occupied": occupied,
                    "requested": requested,
                },
            )
            raise CapacityExceededException(
                subgroup_id=subgroup_id,
                booking_date=booking_date,
                course_group_id=subgroup.course_group_id,
                degree_id=subgroup.degree_id,
                max_participants=max_participants,
                occupied=occupied,
                requested=requested,
            )
        return subgroup

    def _create_line(
        self, booking: Booking, line: BookingLineCreate, subgroup: Optional[CourseSubgroup]
    ) -> BookingUser:
        booking_user = self.booking_repository.create_booking_user(
            booking,
            client_id=line.client_id,
            course_id=line.course_id,
            date=line.booking_date,
            course_subgroup_id=line.course_subgroup_id,
            course_group_id=line.course_group_id or (subgroup.course_group_id if subgroup else None),
            course_date_id=line.course_date_id or (subgroup.course_date_id if subgroup else None),
            degree_id=line.degree_id or (subgroup.degree_id if subgroup else None),
            monitor_id=line.monitor_id,
            group_id=line.group_id,
            hour_start=line.hour_start,
            hour_end=line.hour_end,
            status=BookingUserStatus.ACTIVE,
            price=ZERO,
        )

        if line.extra_ids:
            extras = {e.id: e for e in self.course_repository.get_extras(line.extra_ids)}
            for extra_id in line.extra_ids:
                course_extra = extras.get(extra_id)
                if course_extra is None or course_extra.course_id != line.course_id:
                    raise NotFoundException(
                        f"Extra {extra_id} not found for course {line.course_id}",
                        code="EXTRA_NOT_FOUND",
                        details={"extra_id": extra_id, "course_id": line.course_id},
                    )
                self.booking_repository.add_extra(booking_user, course_extra)
            self.booking_repository.flush()
        return booking_user

    def _apply_discount_code(
        self, booking: Booking, data: BookingCreate, courses: Dict[str, Course]
    ) -> None:
        partial = self.total_analyzer.calculate_booking_total(booking)
        amount = non_negative(partial["total_before_discounts"] - round_money(data.price_reduction))
        context = DiscountCodeContext(
            school_id=data.school_id,
            user_id=data.user_id,
            amount=amount,
            course_ids=sorted(courses),
            client_ids=sorted({line.client_id for line in data.lines}),
            sport_ids=sorted({str(c.sport_id) for c in courses.values() if c.sport_id}),
            degree_ids=sorted({bu.degree_id for bu in booking.booking_users if bu.degree_id}),
            has_vouchers=bool(data.vouchers),
        )

        result = self.discount_code_service.validate_code(data.discount_code or "", context)
        if not result["valid"] or result["discount_code"] is None:
            raise BusinessRuleException(
                result["message"],
                code="INVALID_DISCOUNT_CODE",
                details={"code": data.discount_code, **result["details"]},
            )

        discount_code = result["discount_code"]
        booking.discount_code_id = discount_code.id
        booking.discount_code_value = result["discount_amount"]
        self.discount_code_service.record_usage(
            discount_code.id, booking.id, result["discount_amount"], user_id=data.user_id
        )

    def _apply_vouchers(self, booking: Booking, data: BookingCreate) -> None:
        used = ZERO
        for usage in data.vouchers:
            voucher = self.payment_repository.get_voucher_for_update(usage.voucher_id)
            if voucher is None or voucher.school_id != booking.school_id:
                raise NotFoundException(
                    f"Voucher {usage.voucher_id} not found",
                    code="VOUCHER_NOT_FOUND",
                    details={"voucher_id": usage.voucher_id},
                )
            amount = round_money(usage.amount)
            if round_money(voucher.remaining_balance) < amount:
                raise BusinessRuleException(
                    f"Voucher {voucher.code} has insufficient balance",
                    code="INSUFFICIENT_VOUCHER_BALANCE",
                    details={
                        "voucher_id": voucher.id,
                        "remaining_balance": str(round_money(voucher.remaining_balance)),
                        "requested": str(amount),
                    },
                )
            voucher.remaining_balance = round_money(voucher.remaining_balance) - amount
            log = self.payment_repository.create_voucher_log(
                voucher_id=voucher.id, booking_id=booking.id, amount=amount
            )
            booking.vouchers_logs.append(log)
            used += amount

        booking.paid_total = round_money(used)
        booking.paid = round_money(used) >= round_money(booking.price_total)

    # Status changes

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(self, booking_id: str) -> Booking:
        """Cancel a booking and all its lines; the discount code use is given back."""
        touched: Set[SlotKey] = set()
        with self.transaction():
            booking = self.booking_repository.get_with_lines(booking_id)
            if booking is None:
                raise NotFoundException(
                    f"Booking {booking_id} not found",
                    code="BOOKING_NOT_FOUND",
                    details={"booking_id": booking_id},
                )
            if booking.is_cancelled:
                return booking

            touched.update(self._slot_keys(booking.active_booking_users))
            booking.cancel()
            if booking.discount_code_id:
                self.discount_code_service.revert_usage(booking.discount_code_id, booking.id)

        self._invalidate(touched)
        return booking

    @BaseService.measure_operation("cancel_booking_users")
    def cancel_booking_users(self, booking_user_ids: Sequence[str]) -> List[BookingUser]:
        """Cancel individual lines; parent bookings become partially cancelled or cancelled."""
        unique_ids = list(dict.fromkeys(booking_user_ids))
        touched: Set[SlotKey] = set()
        with self.transaction():
            lines = self.booking_repository.get_booking_users(unique_ids)
            missing = set(unique_ids) - {line.id for line in lines}
            if missing:
                raise NotFoundException(
                    "Booking lines not found",
                    code="BOOKING_USER_NOT_FOUND",
                    details={"booking_user_ids": sorted(missing)},
                )

            active = [line for line in lines if line.status != BookingUserStatus.CANCELLED]
            touched.update(self._slot_keys(active))
            for line in active:
                line.status = BookingUserStatus.CANCELLED
            self._refresh_bookings(active)

        self._invalidate(touched)
        return lines

    @BaseService.measure_operation("update_booking_user_status")
    def update_booking_user_status(self, booking_user_id: str, status: int) -> BookingUser:
        """
        Set a line's status.

        Re-activating a cancelled line takes a place again, so it goes
        through the same locked capacity check as a new booking.
        """
        try:
            new_status = BookingUserStatus(int(status))
        except (TypeError, ValueError):
            raise ValidationException(
                f"Invalid booking line status {status}",
                code="INVALID_STATUS",
                details={"status": status},
            )

        touched: Set[SlotKey] = set()
        with self.transaction():
            line = self.booking_repository.get_booking_user(booking_user_id)
            if line is None:
                raise NotFoundException(
                    f"Booking line {booking_user_id} not found",
                    code="BOOKING_USER_NOT_FOUND",
                    details={"booking_user_id": booking_user_id},
                )
            if line.status == new_status:
                return line

            if new_status == BookingUserStatus.ACTIVE and line.course_subgroup_id:
                self._check_capacity(line.course_subgroup_id, line.date, 1, reason="reactivate")

            touched.update(self._slot_keys([line]))
            line.status = new_status
            self._refresh_bookings([line])

        self._invalidate(touched)
        return line

    # Helpers

    @staticmethod
    def _slot_keys(lines: Iterable[BookingUser]) -> Set[SlotKey]:
        return {(line.course_subgroup_id, line.date) for line in lines if line.course_subgroup_id}

    @staticmethod
    def _refresh_bookings(lines: Iterable[BookingUser]) -> None:
        bookings = {line.booking.id: line.booking for line in lines if line.booking is not None}
        for booking in bookings.values():
            was_cancelled = booking.is_cancelled
            booking.refresh_status_from_lines()
            if booking.is_cancelled and not was_cancelled:
                booking.cancelled_at = datetime.now(timezone.utc)
            elif not booking.is_cancelled:
                booking.cancelled_at = None

    def _invalidate(self, keys: Iterable[SlotKey]) -> None:
        for subgroup_id, booking_date in sorted(keys):
            self.availability_service.invalidate_cache(subgroup_id, booking_date)
