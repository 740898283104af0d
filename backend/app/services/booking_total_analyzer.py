# backend/app/services/booking_total_analyzer.py
"""
Booking Total Analyzer for the ski school booking platform.

Computes what a booking should cost from its active lines and compares that
with the money actually received (payments and vouchers). The comparison is
informational: inconsistencies are returned as data and never raised.

Nominal total:
    activities + cancellation insurance - manual reduction - discount code,
    floored at 0. Vouchers are a means of payment, not a discount, so they
    are reported but never subtracted.

Money received:
    paid + vouchers used - refunds - vouchers refunded. ``no_refund``
    payments are informational and do not change the balance.
"""

from datetime import datetime, timezone
from decimal import Decimal
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from ..core.config import settings
from ..models.booking import Booking, BookingUser, BookingUserStatus
from ..models.course import Course, CourseType
from ..models.payment import PaymentStatus, REFUND_STATUSES
from ..schemas.pricing import (
    ActivityBreakdownData,
    BookingTotalData,
    FinancialRealityData,
    PriceConsistencyData,
    ReconciliationData,
    VouchersInfoData,
)
from ..utils.money import ZERO, currency_epsilon, non_negative, round_money, to_decimal
from .base import BaseService
from .price_calculator import PriceCalculator
from .school_config_service import SchoolConfigService

logger = logging.getLogger(__name__)

STATUS_CONSISTENT = "consistent"
STATUS_UNDERPAID = "underpaid"
STATUS_OVERPAID = "overpaid"


class BookingTotalAnalyzer(BaseService):
    """Nominal booking totals and financial reconciliation."""

    def __init__(
        self,
        db: Session,
        price_calculator: Optional[PriceCalculator] = None,
        school_config: Optional[SchoolConfigService] = None,
    ):
        super().__init__(db)
        self.school_config = school_config or SchoolConfigService(db)
        self.price_calculator = price_calculator or PriceCalculator(db, self.school_config)

    # Nominal total

    @BaseService.measure_operation("calculate_booking_total")
    def calculate_booking_total(self, booking: Booking) -> BookingTotalData:
        """
        Price breakdown of a booking from its active lines.

        Collective lines are grouped per (client, course) and priced once per
        group; the extras of every line in the group are still added. Private
        lines are priced one by one.
        """
        active_lines = [bu for bu in booking.booking_users if bu.status != BookingUserStatus.CANCELLED]

        breakdown: List[ActivityBreakdownData] = []
        for course, lines in self._group_lines(active_lines):
            breakdown.append(self._price_group(course, lines, active_lines))

        activities = round_money(sum((item["total"] for item in breakdown), ZERO))

        insurance = ZERO
        if booking.has_cancellation_insurance:
            rate = self.school_config.cancellation_insurance_percent(self._school_for(booking))
            insurance = round_money(activities * rate)

        reduction = round_money(booking.price_reduction) if booking.price_reduction else ZERO
        code_value = round_money(booking.discount_code_value) if booking.discount_code_value else ZERO
        total_before = round_money(activities + insurance)
        total_final = round_money(non_negative(total_before - reduction - code_value))

        return {
            "booking_id": booking.id,
            "activities_price": activities,
            "activities_breakdown": breakdown,
            "additional_concepts": {"cancellation_insurance": insurance},
            "total_before_discounts": total_before,
            "discounts": {
                "manual_reduction": reduction,
                "discount_code": code_value,
                "total": round_money(reduction + code_value),
            },
            "total_final": total_final,
            "vouchers_info": self._vouchers_info(booking),
            "currency": self._currency_for(booking),
            "calculated_at": datetime.now(timezone.utc).isoformat(),
        }

    def _group_lines(
        self, lines: Sequence[BookingUser]
    ) -> List[Tuple[Optional[Course], List[BookingUser]]]:
        groups: Dict[Tuple[str, ...], List[BookingUser]] = {}
        courses: Dict[Tuple[str, ...], Optional[Course]] = {}
        for line in lines:
            course = line.course
            if course is not None and course.course_type == CourseType.COLLECTIVE:
                key: Tuple[str, ...] = ("collective", str(line.client_id), str(line.course_id))
            else:
                key = ("line", str(line.id or id(line)))
            groups.setdefault(key, []).append(line)
            courses.setdefault(key, course)
        return [(courses[key], group) for key, group in groups.items()]

    def _price_group(
        self,
        course: Optional[Course],
        lines: List[BookingUser],
        active_lines: Sequence[BookingUser],
    ) -> ActivityBreakdownData:
        first = lines[0]
        price = ZERO
        if course is not None:
            activity = self.price_calculator.calculate_activity_price(first, course, active_lines)
            price = activity if activity is not None else ZERO
        else:
            self.logger.warning(
                "Booking line without course priced at 0",
                extra={"booking_user_id": first.id, "course_id": first.course_id},
            )

        extras = round_money(
            sum((self.price_calculator.calculate_extras_price(line) for line in lines), ZERO)
        )
        return {
            "course_id": first.course_id,
            "client_id": first.client_id,
            "course_type": course.course_type if course is not None else 0,
            "is_flexible": bool(course.is_flexible) if course is not None else False,
            "booking_user_ids": [line.id for line in lines],
            "dates": sorted({line.date.isoformat() for line in lines if line.date is not None}),
            "price": round_money(price),
            "extras_price": extras,
            "total": round_money(price + extras),
        }

    def _vouchers_info(self, booking: Booking) -> VouchersInfoData:
        used = ZERO
        refunded = ZERO
        for log in booking.vouchers_logs:
            amount = to_decimal(log.amount)
            if amount > 0:
                used += amount
            else:
                refunded += abs(amount)
        return {
            "total_used": round_money(used),
            "total_refunded": round_money(refunded),
            "net_voucher_payment": round_money(used - refunded),
            "count": len(booking.vouchers_logs),
        }

    # Reconciliation

    @BaseService.measure_operation("analyze_financial_reality")
    def analyze_financial_reality(self, booking: Booking) -> ReconciliationData:
        """
        Compare the nominal total with the money received.

        ``main_discrepancy`` is positive when the client still owes money and
        negative when the school received too much. A cancelled booking is
        expected to end with nothing kept, so its expected total is 0.
        """
        calculation = self.calculate_booking_total(booking)
        calculated_total = ZERO if booking.is_cancelled else calculation["total_final"]
        currency = calculation["currency"]

        reality = self._financial_reality(booking, calculation["vouchers_info"], calculated_total)
        discrepancy = round_money(calculated_total - reality["net_received"])
        tolerance = self._tolerance(currency)
        is_consistent = abs(discrepancy) <= tolerance

        if is_consistent:
            status = STATUS_CONSISTENT
        elif discrepancy > 0:
            status = STATUS_UNDERPAID
        else:
            status = STATUS_OVERPAID

        if not is_consistent:
            self.logger.info(
                "Booking financial discrepancy",
                extra={
                    "booking_id": booking.id,
                    "calculated_total": str(calculated_total),
                    "net_received": str(reality["net_received"]),
                    "discrepancy": str(discrepancy),
                    "status": status,
                },
            )

        return {
            "booking_id": booking.id,
            "booking_status": booking.status,
            "calculated_total": calculated_total,
            "calculation": calculation,
            "financial_reality": reality,
            "reality_check": {
                "is_consistent": is_consistent,
                "main_discrepancy": discrepancy,
                "tolerance": tolerance,
                "status": status,
            },
            "currency": currency,
        }

    def _financial_reality(
        self, booking: Booking, vouchers: VouchersInfoData, calculated_total: Decimal
    ) -> FinancialRealityData:
        paid = ZERO
        refunded = ZERO
        no_refund = ZERO
        for payment in booking.payments:
            amount = abs(to_decimal(payment.amount))
            if payment.status == PaymentStatus.PAID.value:
                paid += amount
            elif payment.status in REFUND_STATUSES:
                refunded += amount
            elif payment.status == PaymentStatus.NO_REFUND.value:
                no_refund += amount

        net_received = round_money(
            paid + vouchers["total_used"] - refunded - vouchers["total_refunded"]
        )
        return {
            "total_paid": round_money(paid),
            "total_refunded": round_money(refunded),
            "total_no_refund": round_money(no_refund),
            "total_vouchers_used": vouchers["total_used"],
            "total_vouchers_refunded": vouchers["total_refunded"],
            "net_received": net_received,
            "net_balance": round_money(net_received - calculated_total),
        }

    @staticmethod
    def _tolerance(currency: str) -> Decimal:
        if settings.financial_tolerance_override is not None:
            return to_decimal(settings.financial_tolerance_override)
        return currency_epsilon(currency)

    @BaseService.measure_operation("check_price_consistency")
    def check_price_consistency(self, booking: Booking) -> PriceConsistencyData:
        """Compare the stored ``price_total`` with a fresh calculation."""
        calculated = self.calculate_booking_total(booking)["total_final"]
        stored = round_money(booking.price_total)
        difference = round_money(stored - calculated)
        is_consistent = abs(difference) <= self._tolerance(self._currency_for(booking))
        if not is_consistent:
            self.logger.warning(
                "Stored booking total differs from calculation",
                extra={
                    "booking_id": booking.id,
                    "stored_total": str(stored),
                    "calculated_total": str(calculated),
                },
            )
        return {
            "booking_id": booking.id,
            "stored_total": stored,
            "calculated_total": calculated,
            "difference": difference,
            "is_consistent": is_consistent,
        }

    def get_pending_amount(self, booking: Booking) -> Decimal:
        """Amount the client still owes, never negative."""
        analysis = self.analyze_financial_reality(booking)
        return round_money(
            non_negative(analysis["calculated_total"] - analysis["financial_reality"]["net_received"])
        )

    # Helpers

    def _school_for(self, booking: Booking):
        if booking.school is not None:
            return booking.school
        return self.school_config.get_school(booking.school_id)

    def _currency_for(self, booking: Booking) -> str:
        if booking.currency:
            return booking.currency.upper()
        return self.school_config.currency(self._school_for(booking))
