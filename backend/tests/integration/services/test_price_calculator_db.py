"""Line pricing for every course kind against a real schema."""

from datetime import date, time
from decimal import Decimal
from unittest.mock import patch

import pytest

from app.models.booking import BookingUserStatus
from app.models.course import CourseType
from app.services.price_calculator import PriceCalculator
from tests.factories.course_builders import (
    add_line,
    create_booking,
    create_course,
    create_extra,
    create_interval,
    create_interval_discount,
    create_school,
)

PRICE_RANGE = [
    {"intervalo": "1h", "1": 30, "2": 40},
    {"intervalo": "1h 30m", "1": 45, "2": 60, "3": 75},
]


@pytest.fixture
def school(db):
    return create_school(db, insurance_percent=10)


@pytest.fixture
def calculator(db):
    return PriceCalculator(db)


def _dates(*days):
    return [date(2025, 1, d) for d in days]


class TestCollectivePricing:
    def test_fixed_course_charged_once_per_client(self, db, school, calculator):
        course = create_course(db, school, price="100.00")
        booking = create_booking(db, school)
        lines = [add_line(db, booking, course, day=d) for d in _dates(10, 11, 12)]

        breakdown = calculator.calculate_line_price(lines[0], booking.booking_users)

        assert breakdown["price_without_extras"] == Decimal("100.00")
        assert breakdown["total_price"] == Decimal("100.00")

    def test_flexible_course_uses_course_discounts(self, db, school, calculator):
        course = create_course(
            db, school, is_flexible=True, price="50.00", discounts=[{"date": 3, "discount": 10}]
        )
        booking = create_booking(db, school)
        lines = [add_line(db, booking, course, day=d) for d in _dates(10, 11, 12)]

        assert calculator.calculate_activity_price(lines[0], course, booking.booking_users) == Decimal("135.00")

    def test_flexible_interval_discounts_replace_course_rules(self, db, school, calculator):
        course = create_course(
            db, school, is_flexible=True, price="50.00", discounts=[{"date": 3, "discount": 10}]
        )
        interval = create_interval(db, course)
        create_interval_discount(db, interval, min_days=2, value=20)
        booking = create_booking(db, school)
        lines = [add_line(db, booking, course, day=d) for d in _dates(10, 11, 12)]

        assert calculator.calculate_activity_price(lines[0], course, booking.booking_users) == Decimal("120.00")

    def test_flexible_counts_distinct_dates_only(self, db, school, calculator):
        course = create_course(db, school, is_flexible=True, price="50.00")
        booking = create_booking(db, school)
        lines = [add_line(db, booking, course, day=d) for d in _dates(10, 10, 11)]
        lines[2].status = BookingUserStatus.CANCELLED

        assert calculator.calculate_activity_price(lines[0], course, booking.booking_users) == Decimal("50.00")

    def test_flexible_reads_siblings_from_database(self, db, school, calculator):
        course = create_course(db, school, is_flexible=True, price="40.00")
        booking = create_booking(db, school)
        add_line(db, booking, course, day=date(2025, 1, 10))
        line = add_line(db, booking, course, day=date(2025, 1, 11))
        add_line(db, booking, course, client_id="someone-else", day=date(2025, 1, 12))

        assert calculator.calculate_line_price(line)["price_without_extras"] == Decimal("80.00")


class TestPrivatePricing:
    def test_fixed_price_per_line(self, db, school, calculator):
        course = create_course(db, school, course_type=CourseType.PRIVATE, price="120.00")
        booking = create_booking(db, school)
        line = add_line(db, booking, course, hour_start=time(10), hour_end=time(11))

        assert calculator.calculate_line_price(line)["total_price"] == Decimal("120.00")

    def test_flexible_tier_for_two_participants(self, db, school, calculator):
        course = create_course(
            db, school, course_type=CourseType.PRIVATE, is_flexible=True, price_range=PRICE_RANGE
        )
        booking = create_booking(db, school)
        first = add_line(db, booking, course, client_id="a", hour_start=time(10), hour_end=time(11), monitor_id="m1")
        add_line(db, booking, course, client_id="b", hour_start=time(10), hour_end=time(11), monitor_id="m1")

        assert calculator.calculate_activity_price(first, course, booking.booking_users) == Decimal("40.00")
        # Same answer when the group is counted in the database
        assert calculator.calculate_activity_price(first, course) == Decimal("40.00")

    def test_other_slot_is_not_part_of_the_group(self, db, school, calculator):
        course = create_course(
            db, school, course_type=CourseType.PRIVATE, is_flexible=True, price_range=PRICE_RANGE
        )
        booking = create_booking(db, school)
        first = add_line(db, booking, course, client_id="a", hour_start=time(10), hour_end=time(11))
        add_line(db, booking, course, client_id="b", hour_start=time(12), hour_end=time(13))

        assert calculator.calculate_activity_price(first, course, booking.booking_users) == Decimal("30.00")

    def test_missing_participant_price_is_zero_and_reported(self, db, school, calculator):
        course = create_course(
            db, school, course_type=CourseType.PRIVATE, is_flexible=True, price_range=PRICE_RANGE
        )
        booking = create_booking(db, school)
        lines = [
            add_line(db, booking, course, client_id=c, hour_start=time(10), hour_end=time(11))
            for c in ("a", "b", "c")
        ]

        with patch("app.services.price_calculator.prometheus_metrics") as metrics:
            price = calculator.calculate_activity_price(lines[0], course, booking.booking_users)

        assert price == Decimal("0")
        metrics.inc_pricing_configuration_gap.assert_called_once_with("missing_participant_price")

    def test_missing_tier_is_zero_and_reported(self, db, school, calculator):
        course = create_course(
            db, school, course_type=CourseType.PRIVATE, is_flexible=True, price_range=PRICE_RANGE
        )
        booking = create_booking(db, school)
        line = add_line(db, booking, course, hour_start=time(10), hour_end=time(12))

        with patch("app.services.price_calculator.prometheus_metrics") as metrics:
            breakdown = calculator.calculate_line_price(line, booking.booking_users)

        assert breakdown["total_price"] == Decimal("0")
        metrics.inc_pricing_configuration_gap.assert_called_once_with("missing_tier")


class TestExtrasAndInsurance:
    def test_extras_added_to_activity(self, db, school, calculator):
        course = create_course(db, school, price="100.00")
        extra = create_extra(db, course, price="15.00")
        booking = create_booking(db, school)
        line = add_line(db, booking, course, extras=[extra])

        breakdown = calculator.calculate_line_price(line, booking.booking_users)

        assert breakdown["extras_price"] == Decimal("15.00")
        assert breakdown["total_price"] == Decimal("115.00")

    def test_insurance_uses_school_rate(self, db, school, calculator):
        course = create_course(db, school, price="200.00")
        booking = create_booking(db, school, has_cancellation_insurance=True)
        line = add_line(db, booking, course)

        breakdown = calculator.calculate_line_price(line, booking.booking_users)

        assert breakdown["cancellation_insurance_price"] == Decimal("20.00")
        assert breakdown["total_price"] == Decimal("220.00")

    def test_snapshot_excludes_insurance(self, db, school, calculator):
        course = create_course(db, school, price="200.00")
        extra = create_extra(db, course, price="15.00")
        booking = create_booking(db, school, has_cancellation_insurance=True)
        line = add_line(db, booking, course, extras=[extra])

        assert calculator.snapshot_line_price(line, booking.booking_users) == Decimal("215.00")
        assert line.price == Decimal("215.00")


def test_unknown_course_type_prices_at_zero(db, school, calculator):
    course = create_course(db, school, course_type=3, price="90.00")
    booking = create_booking(db, school)
    line = add_line(db, booking, course)

    with patch("app.services.price_calculator.prometheus_metrics") as metrics:
        breakdown = calculator.calculate_line_price(line)

    assert breakdown == {
        "price_without_extras": Decimal("0"),
        "extras_price": Decimal("0"),
        "cancellation_insurance_price": Decimal("0"),
        "total_price": Decimal("0"),
    }
    metrics.inc_pricing_configuration_gap.assert_called_once_with("unknown_course_type")
