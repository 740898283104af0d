"""Discount code validation order, amounts and usage tracking."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.core.exceptions import BusinessRuleException, NotFoundException
from app.models.discount_code import ApplicableTo, DiscountCode, DiscountType
from app.services.discount_code_service import DiscountCodeService, calculate_discount_amount
from tests.factories.course_builders import create_booking, create_school

NOW = datetime(2025, 1, 10, 12, 0, tzinfo=timezone.utc)


def create_code(db, code="SKI10", **overrides):
    values = dict(
        code=code,
        discount_type=DiscountType.PERCENTAGE.value,
        discount_value=Decimal("10"),
        total=10,
        remaining=10,
        applicable_to=ApplicableTo.ALL.value,
        stackable=True,
        active=True,
    )
    values.update(overrides)
    discount_code = DiscountCode(**values)
    db.add(discount_code)
    db.flush()
    return discount_code


@pytest.fixture
def service(db):
    return DiscountCodeService(db)


@pytest.fixture
def school(db):
    return create_school(db)


def _context(**overrides):
    context = {"amount": "200.00", "course_ids": ["c1"], "client_ids": ["cl1"]}
    context.update(overrides)
    return context


class TestValidateCode:
    def test_valid_percentage_code(self, db, service):
        create_code(db)

        result = service.validate_code("ski10", _context(), now=NOW)

        assert result["valid"] is True
        assert result["message"] == "Discount code is valid"
        assert result["discount_amount"] == Decimal("20.00")

    @pytest.mark.parametrize("code", ["", "   ", "UNKNOWN"])
    def test_not_found(self, db, service, code):
        result = service.validate_code(code, _context(), now=NOW)

        assert result["valid"] is False
        assert result["details"]["reason"] == "not_found"

    def test_invalid_context(self, db, service):
        create_code(db)

        result = service.validate_code("SKI10", {"amount": "-5"}, now=NOW)

        assert result["valid"] is False
        assert result["details"]["reason"] == "invalid_context"

    def test_inactive(self, db, service):
        create_code(db, active=False)

        assert service.validate_code("SKI10", _context(), now=NOW)["details"]["reason"] == "inactive"

    def test_not_yet_valid_and_expired(self, db, service):
        create_code(db, "EARLY", valid_from=NOW + timedelta(days=1))
        create_code(db, "LATE", valid_to=NOW - timedelta(days=1))

        early = service.validate_code("EARLY", _context(), now=NOW)
        late = service.validate_code("LATE", _context(), now=NOW)

        assert early["details"]["reason"] == "outside_window"
        assert early["message"] == "Discount code is valid from 2025-01-11"
        assert late["message"] == "Discount code expired on 2025-01-09"

    def test_naive_window_is_read_as_utc(self, db, service):
        create_code(db, valid_from=datetime(2025, 1, 1), valid_to=datetime(2025, 1, 31))

        assert service.validate_code("SKI10", _context(), now=NOW)["valid"] is True

    def test_exhausted(self, db, service):
        create_code(db, remaining=0)

        assert service.validate_code("SKI10", _context(), now=NOW)["details"]["reason"] == "exhausted"

    def test_unlimited_code_has_no_use_limit(self, db, service):
        create_code(db, total=None, remaining=None)

        assert service.validate_code("SKI10", _context(), now=NOW)["valid"] is True

    def test_window_is_checked_before_remaining(self, db, service):
        create_code(db, remaining=0, active=True, valid_to=NOW - timedelta(days=1))

        assert service.validate_code("SKI10", _context(), now=NOW)["details"]["reason"] == "outside_window"

    def test_specific_courses(self, db, service):
        create_code(db, applicable_to=ApplicableTo.SPECIFIC_COURSES.value, course_ids=["c1", "c2"])

        assert service.validate_code("SKI10", _context(), now=NOW)["valid"] is True
        rejected = service.validate_code("SKI10", _context(course_ids=["c1", "c3"]), now=NOW)
        assert rejected["details"]["reason"] == "not_applicable"
        assert rejected["message"] == "Discount code is not valid for the selected courses"
        empty = service.validate_code("SKI10", _context(course_ids=[]), now=NOW)
        assert empty["message"] == "Booking has no courses for this discount code"

    def test_specific_courses_without_configuration(self, db, service):
        create_code(db, applicable_to=ApplicableTo.SPECIFIC_COURSES.value, course_ids=[])

        result = service.validate_code("SKI10", _context(), now=NOW)

        assert result["message"] == "Discount code has no courses configured"

    def test_specific_clients_accepts_the_buyer(self, db, service):
        create_code(db, applicable_to=ApplicableTo.SPECIFIC_CLIENTS.value, client_ids=["buyer"])

        assert service.validate_code("SKI10", _context(user_id="buyer"), now=NOW)["valid"] is True
        assert service.validate_code("SKI10", _context(), now=NOW)["valid"] is False

    def test_specific_sports_and_degrees(self, db, service):
        create_code(db, "SPORT", applicable_to=ApplicableTo.SPECIFIC_SPORTS.value, sport_ids=["ski"])
        create_code(db, "LEVEL", applicable_to=ApplicableTo.SPECIFIC_DEGREES.value, degree_ids=["d1"])

        assert service.validate_code("SPORT", _context(sport_ids=["ski"]), now=NOW)["valid"] is True
        assert service.validate_code("SPORT", _context(sport_ids=["board"]), now=NOW)["valid"] is False
        assert service.validate_code("LEVEL", _context(degree_ids=["d1"]), now=NOW)["valid"] is True

    def test_wrong_school(self, db, service, school):
        other = create_school(db, name="Other School")
        create_code(db, school_id=school.id)

        assert service.validate_code("SKI10", _context(school_id=school.id), now=NOW)["valid"] is True
        result = service.validate_code("SKI10", _context(school_id=other.id), now=NOW)
        assert result["details"]["reason"] == "wrong_school"

    def test_not_stackable_with_vouchers(self, db, service):
        create_code(db, stackable=False)

        result = service.validate_code("SKI10", _context(has_vouchers=True), now=NOW)

        assert result["details"]["reason"] == "not_stackable"

    def test_below_minimum_purchase(self, db, service):
        create_code(db, min_purchase_amount=Decimal("250"))

        result = service.validate_code("SKI10", _context(), now=NOW)

        assert result["details"]["reason"] == "below_minimum"
        assert result["message"] == "Minimum purchase amount: 250.00"

    def test_per_user_limit(self, db, service, school):
        discount_code = create_code(db, max_uses_per_user=1)
        booking = create_booking(db, school)
        service.record_usage(discount_code.id, booking.id, Decimal("20"), user_id="buyer")

        result = service.validate_code("SKI10", _context(user_id="buyer"), now=NOW)

        assert result["details"]["reason"] == "user_limit"
        assert service.validate_code("SKI10", _context(user_id="someone"), now=NOW)["valid"] is True


class TestCalculateDiscountAmount:
    def test_percentage_capped_by_max_discount(self):
        discount_code = DiscountCode(
            discount_type=DiscountType.PERCENTAGE.value,
            discount_value=Decimal("50"),
            max_discount_amount=Decimal("30"),
        )

        assert calculate_discount_amount(discount_code, Decimal("200")) == Decimal("30.00")

    def test_fixed_capped_by_purchase(self):
        discount_code = DiscountCode(discount_type=DiscountType.FIXED_AMOUNT.value, discount_value=Decimal("80"))

        assert calculate_discount_amount(discount_code, Decimal("50")) == Decimal("50.00")

    def test_percentage_rounds_half_up(self):
        discount_code = DiscountCode(discount_type=DiscountType.PERCENTAGE.value, discount_value=Decimal("15"))

        assert calculate_discount_amount(discount_code, Decimal("33.30")) == Decimal("5.00")


class TestUsageTracking:
    def test_record_decrements_remaining(self, db, service, school):
        discount_code = create_code(db, total=2, remaining=2)
        booking = create_booking(db, school)

        usage = service.record_usage(discount_code.id, booking.id, Decimal("20"))

        assert usage.booking_id == booking.id
        assert discount_code.remaining == 1
        stats = service.get_code_stats(discount_code.id)
        assert stats["times_used"] == 1
        assert stats["total_discounted"] == Decimal("20.00")

    def test_record_on_exhausted_code(self, db, service, school):
        discount_code = create_code(db, total=1, remaining=0)
        booking = create_booking(db, school)

        with pytest.raises(BusinessRuleException) as exc_info:
            service.record_usage(discount_code.id, booking.id, Decimal("20"))

        assert exc_info.value.code == "DISCOUNT_CODE_EXHAUSTED"

    def test_record_unknown_code(self, service):
        with pytest.raises(NotFoundException):
            service.record_usage("missing", "booking", Decimal("1"))

    def test_unlimited_code_keeps_remaining_empty(self, db, service, school):
        discount_code = create_code(db, total=None, remaining=None)
        booking = create_booking(db, school)

        service.record_usage(discount_code.id, booking.id, Decimal("5"))

        assert discount_code.remaining is None

    def test_revert_restores_one_use(self, db, service, school):
        discount_code = create_code(db, total=2, remaining=2)
        booking = create_booking(db, school)
        service.record_usage(discount_code.id, booking.id, Decimal("20"))

        assert service.revert_usage(discount_code.id, booking.id) is True
        assert discount_code.remaining == 2
        assert service.repository.get_usage(discount_code.id, booking.id) is None

    def test_revert_never_exceeds_total(self, db, service, school):
        discount_code = create_code(db, total=2, remaining=1)
        booking = create_booking(db, school)
        service.record_usage(discount_code.id, booking.id, Decimal("20"))
        discount_code.remaining = 2

        service.revert_usage(discount_code.id, booking.id)

        assert discount_code.remaining == 2

    def test_revert_without_usage(self, db, service, school):
        discount_code = create_code(db)

        assert service.revert_usage(discount_code.id, "no-booking") is False
        assert service.revert_usage("missing", "no-booking") is False
