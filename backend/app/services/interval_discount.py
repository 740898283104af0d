# backend/app/services/interval_discount.py
"""
Flexible collective pricing.

A client on a flexible collective course pays per distinct date attended.
Dates are grouped by season interval, and each group earns the best
date-count discount it qualifies for: the interval's own active rules when it
has any, otherwise the course-wide ``discounts`` list.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..models.booking import BookingUser, BookingUserStatus
from ..models.course import Course, IntervalDiscountType, raw_discount_rules
from ..repositories.course_repository import CourseRepository
from ..utils.money import ZERO, non_negative, round_money, to_decimal

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_KEY = "default"
HUNDRED = Decimal("100")

THRESHOLD_KEYS = ("date", "dates", "count", "n", "days")
VALUE_KEYS = ("discount", "percentage", "percent", "value")

TYPE_PERCENTAGE = "percentage"
TYPE_FIXED = "fixed"


@dataclass(frozen=True)
class DiscountRule:
    threshold: int
    value: Decimal
    type: str = TYPE_PERCENTAGE


def _first_present(item: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        if item.get(key) is not None:
            return item[key]
    return None


def parse_discount_rules(raw: Any) -> List[DiscountRule]:
    """
    Normalize course-level discount dicts.

    Threshold comes from date/dates/count/n/days and value from
    discount/percentage/percent/value. ``type`` "fixed" or 2 means a fixed
    amount, anything else a percentage. Rules without a positive threshold
    and value are dropped.
    """
    if not isinstance(raw, list):
        return []

    rules: List[DiscountRule] = []
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        try:
            threshold = int(to_decimal(_first_present(item, THRESHOLD_KEYS)))
        except (ValueError, ArithmeticError):
            continue
        value = to_decimal(_first_present(item, VALUE_KEYS))
        if threshold <= 0 or value <= 0:
            continue

        rule_type = TYPE_PERCENTAGE
        raw_type = item.get("type")
        if isinstance(raw_type, str):
            if raw_type.strip().lower() in (TYPE_FIXED, IntervalDiscountType.FIXED_AMOUNT.value):
                rule_type = TYPE_FIXED
        elif isinstance(raw_type, (int, float)) and not isinstance(raw_type, bool):
            if int(raw_type) == 2:
                rule_type = TYPE_FIXED

        rules.append(DiscountRule(threshold=threshold, value=value, type=rule_type))
    return rules


def apply_best_discount(base_total: Decimal, dates_count: int, rules: List[DiscountRule]) -> Decimal:
    """Apply the rule with the highest threshold not above dates_count."""
    if base_total <= 0 or dates_count <= 0 or not rules:
        return non_negative(base_total)

    applicable: Optional[DiscountRule] = None
    for rule in rules:
        if dates_count >= rule.threshold and (
            applicable is None or rule.threshold > applicable.threshold
        ):
            applicable = rule

    if applicable is None or applicable.value <= 0:
        return non_negative(base_total)

    if applicable.type == TYPE_PERCENTAGE:
        bounded = max(ZERO, min(HUNDRED, applicable.value))
        return non_negative(base_total * (1 - bounded / HUNDRED))

    return non_negative(base_total - applicable.value)


class IntervalDiscountCalculator:
    """Prices a client's set of flexible collective lines on one course."""

    def __init__(self, course_repository: CourseRepository):
        self.course_repository = course_repository
        self._interval_rules: Dict[str, List[DiscountRule]] = {}

    def calculate(self, course: Course, lines: Iterable[BookingUser]) -> Decimal:
        dates_by_interval: Dict[str, Dict[date, Decimal]] = {}

        course_price = to_decimal(course.price)
        for line in lines:
            if line.status == BookingUserStatus.CANCELLED or line.date is None:
                continue

            interval_key = self._interval_key(course, line)
            dates = dates_by_interval.setdefault(interval_key, {})
            if line.date not in dates:
                # Legacy courses without a list price fall back to the line snapshot
                dates[line.date] = course_price if course_price > 0 else to_decimal(line.price)

        total = ZERO
        for interval_key, dates in dates_by_interval.items():
            if not dates:
                continue
            base_total = sum(dates.values(), ZERO)
            rules = self._rules_for(course, interval_key)
            total += apply_best_discount(base_total, len(dates), rules)

        return round_money(non_negative(total))

    def _interval_key(self, course: Course, line: BookingUser) -> str:
        course_date = line.course_date
        if course_date is not None and course_date.course_interval_id:
            return course_date.course_interval_id
        interval = self.course_repository.find_interval_for_date(course.id, line.date)
        return interval.id if interval is not None else DEFAULT_INTERVAL_KEY

    def _rules_for(self, course: Course, interval_key: str) -> List[DiscountRule]:
        if interval_key != DEFAULT_INTERVAL_KEY:
            if interval_key not in self._interval_rules:
                self._interval_rules[interval_key] = [
                    DiscountRule(
                        threshold=d.min_days,
                        value=to_decimal(d.discount_value),
                        type=(
                            TYPE_FIXED
                            if d.discount_type == IntervalDiscountType.FIXED_AMOUNT.value
                            else TYPE_PERCENTAGE
                        ),
                    )
                    for d in self.course_repository.get_active_interval_discounts(interval_key)
                    if d.min_days and d.min_days > 0
                ]
            if self._interval_rules[interval_key]:
                return self._interval_rules[interval_key]
        return parse_discount_rules(raw_discount_rules(course))
