"""Builders for schools, courses, subgroups and bookings used across the test suite."""

from __future__ import annotations

from datetime import date, time
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from app.models.booking import Booking, BookingStatus, BookingUser, BookingUserExtra, BookingUserStatus
from app.models.course import (
    Course,
    CourseDate,
    CourseExtra,
    CourseGroup,
    CourseInterval,
    CourseIntervalDiscount,
    CourseIntervalGroup,
    CourseIntervalSubgroup,
    CourseSubgroup,
    CourseType,
    IntervalsConfigMode,
)
from app.models.payment import Payment, Voucher, VouchersLog
from app.models.school import School

SEASON_DAY = date(2025, 1, 10)


def create_school(
    session: Session,
    *,
    name: str = "Test Ski School",
    insurance_percent: Any = None,
    currency: Optional[str] = "EUR",
) -> School:
    settings: Dict[str, Any] = {}
    if insurance_percent is not None:
        settings = {"taxes": {"cancellation_insurance_percent": insurance_percent}}
    school = School(name=name, currency=currency, settings=settings)
    session.add(school)
    session.flush()
    return school


def create_course(
    session: Session,
    school: School,
    *,
    course_type: CourseType = CourseType.COLLECTIVE,
    is_flexible: bool = False,
    price: Any = "100.00",
    price_range: Optional[List[Dict[str, Any]]] = None,
    discounts: Optional[List[Dict[str, Any]]] = None,
    independent: bool = False,
    sport_id: Optional[str] = None,
    name: str = "Test Course",
) -> Course:
    course = Course(
        school_id=school.id,
        name=name,
        course_type=int(course_type),
        is_flexible=is_flexible,
        price=Decimal(str(price)),
        price_range=price_range,
        discounts=discounts,
        sport_id=sport_id,
        intervals_config_mode=(
            IntervalsConfigMode.INDEPENDENT.value if independent else IntervalsConfigMode.UNIFIED.value
        ),
    )
    session.add(course)
    session.flush()
    return course


def create_course_date(
    session: Session,
    course: Course,
    day: date = SEASON_DAY,
    *,
    interval: Optional[CourseInterval] = None,
) -> CourseDate:
    course_date = CourseDate(
        course_id=course.id,
        date=day,
        hour_start=time(10, 0),
        hour_end=time(12, 0),
        course_interval_id=interval.id if interval else None,
    )
    session.add(course_date)
    session.flush()
    return course_date


def create_subgroup(
    session: Session,
    course: Course,
    *,
    max_participants: Optional[int] = 8,
    course_date: Optional[CourseDate] = None,
    group: Optional[CourseGroup] = None,
    degree_id: Optional[str] = "degree-1",
) -> CourseSubgroup:
    if group is None:
        group = CourseGroup(
            course_id=course.id,
            course_date_id=course_date.id if course_date else None,
            degree_id=degree_id,
            max_participants=max_participants,
        )
        session.add(group)
        session.flush()
    subgroup = CourseSubgroup(
        course_id=course.id,
        course_group_id=group.id,
        course_date_id=course_date.id if course_date else None,
        degree_id=degree_id,
        max_participants=max_participants,
    )
    session.add(subgroup)
    session.flush()
    return subgroup


def create_interval(
    session: Session,
    course: Course,
    start: date = date(2025, 1, 1),
    end: date = date(2025, 1, 31),
) -> CourseInterval:
    interval = CourseInterval(course_id=course.id, start_date=start, end_date=end, name="Season")
    session.add(interval)
    session.flush()
    return interval


def create_interval_group(
    session: Session,
    interval: CourseInterval,
    subgroup: CourseSubgroup,
    *,
    max_participants: Optional[int],
    active: bool = True,
) -> CourseIntervalGroup:
    interval_group = CourseIntervalGroup(
        course_id=interval.course_id,
        course_interval_id=interval.id,
        course_group_id=subgroup.course_group_id,
        max_participants=max_participants,
        active=active,
    )
    session.add(interval_group)
    session.flush()
    return interval_group


def create_interval_subgroup(
    session: Session,
    interval_group: CourseIntervalGroup,
    subgroup: CourseSubgroup,
    *,
    max_participants: Optional[int],
    active: bool = True,
) -> CourseIntervalSubgroup:
    override = CourseIntervalSubgroup(
        course_interval_group_id=interval_group.id,
        course_subgroup_id=subgroup.id,
        max_participants=max_participants,
        active=active,
    )
    session.add(override)
    session.flush()
    return override


def create_interval_discount(
    session: Session,
    interval: CourseInterval,
    *,
    min_days: int,
    value: Any,
    discount_type: str = "percentage",
    active: bool = True,
) -> CourseIntervalDiscount:
    discount = CourseIntervalDiscount(
        course_interval_id=interval.id,
        min_days=min_days,
        discount_value=Decimal(str(value)),
        discount_type=discount_type,
        active=active,
    )
    session.add(discount)
    session.flush()
    return discount


def create_extra(session: Session, course: Course, price: Any = "15.00", name: str = "Rental") -> CourseExtra:
    extra = CourseExtra(course_id=course.id, name=name, price=Decimal(str(price)))
    session.add(extra)
    session.flush()
    return extra


def create_booking(
    session: Session,
    school: School,
    *,
    status: BookingStatus = BookingStatus.ACTIVE,
    has_cancellation_insurance: bool = False,
    price_reduction: Any = "0",
    discount_code_value: Any = None,
    price_total: Any = "0",
    currency: Optional[str] = None,
) -> Booking:
    booking = Booking(
        school_id=school.id,
        status=int(status),
        currency=currency,
        has_cancellation_insurance=has_cancellation_insurance,
        price_reduction=Decimal(str(price_reduction)),
        has_reduction=Decimal(str(price_reduction)) > 0,
        discount_code_value=Decimal(str(discount_code_value)) if discount_code_value is not None else None,
        price_total=Decimal(str(price_total)),
    )
    session.add(booking)
    session.flush()
    return booking


def add_line(
    session: Session,
    booking: Booking,
    course: Course,
    *,
    client_id: str = "client-1",
    day: date = SEASON_DAY,
    subgroup: Optional[CourseSubgroup] = None,
    course_date: Optional[CourseDate] = None,
    status: BookingUserStatus = BookingUserStatus.ACTIVE,
    hour_start: Optional[time] = None,
    hour_end: Optional[time] = None,
    monitor_id: Optional[str] = None,
    group_id: Optional[int] = None,
    price: Any = "0",
    extras: Iterable[CourseExtra] = (),
) -> BookingUser:
    line = BookingUser(
        school_id=booking.school_id,
        client_id=client_id,
        course_id=course.id,
        course_subgroup_id=subgroup.id if subgroup else None,
        course_group_id=subgroup.course_group_id if subgroup else None,
        course_date_id=course_date.id if course_date else None,
        date=day,
        status=int(status),
        hour_start=hour_start,
        hour_end=hour_end,
        monitor_id=monitor_id,
        group_id=group_id,
        price=Decimal(str(price)),
    )
    booking.booking_users.append(line)
    session.add(line)
    session.flush()
    for extra in extras:
        line.booking_user_extras.append(BookingUserExtra(course_extra_id=extra.id, course_extra=extra))
    session.flush()
    return line


def add_payment(session: Session, booking: Booking, amount: Any, status: str = "paid") -> Payment:
    payment = Payment(booking_id=booking.id, school_id=booking.school_id, amount=Decimal(str(amount)), status=status)
    booking.payments.append(payment)
    session.flush()
    return payment


def create_voucher(session: Session, school: School, balance: Any = "100.00", code: str = "GIFT100") -> Voucher:
    voucher = Voucher(
        school_id=school.id,
        code=code,
        quantity=Decimal(str(balance)),
        remaining_balance=Decimal(str(balance)),
        payed=True,
    )
    session.add(voucher)
    session.flush()
    return voucher


def add_voucher_log(session: Session, booking: Booking, voucher: Voucher, amount: Any) -> VouchersLog:
    log = VouchersLog(voucher_id=voucher.id, booking_id=booking.id, amount=Decimal(str(amount)))
    booking.vouchers_logs.append(log)
    session.flush()
    return log
