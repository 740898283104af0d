# backend/app/services/discount_code_service.py
"""
Discount code validation and usage tracking.

Validation never raises: every failure comes back as ``valid=False`` with a
message the booking page can show. Usage recording runs inside the caller's
transaction (the booking commit path) and locks the code row so concurrent
checkouts cannot consume the same last use.
"""

from datetime import datetime, timezone
from decimal import Decimal
import logging
from typing import Any, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..core.exceptions import BusinessRuleException, NotFoundException
from ..models.discount_code import ApplicableTo, DiscountCode, DiscountCodeUsage
from ..repositories.factory import RepositoryFactory
from ..schemas.booking import DiscountCodeContext
from ..schemas.pricing import DiscountCodeValidationData
from ..utils.money import ZERO, round_money, to_decimal
from .base import BaseService

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _id_set(values: Optional[Iterable[Any]]) -> set:
    if not values:
        return set()
    return {str(v) for v in values if v is not None and v != ""}


def calculate_discount_amount(discount_code: DiscountCode, purchase_amount: Decimal) -> Decimal:
    """Percentage or fixed amount, capped by max_discount_amount and the purchase."""
    purchase_amount = to_decimal(purchase_amount)
    value = to_decimal(discount_code.discount_value)
    if discount_code.is_percentage:
        discount = purchase_amount * value / HUNDRED
    else:
        discount = value

    if discount_code.max_discount_amount is not None:
        discount = min(discount, to_decimal(discount_code.max_discount_amount))
    discount = min(discount, purchase_amount)
    return round_money(max(discount, ZERO))


class DiscountCodeService(BaseService):
    """Validates discount codes against a cart and records their use."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.repository = RepositoryFactory.create_discount_code_repository(db)

    def _result(
        self,
        valid: bool,
        message: str,
        discount_code: Optional[DiscountCode] = None,
        amount: Decimal = ZERO,
        **details: Any,
    ) -> DiscountCodeValidationData:
        return {
            "valid": valid,
            "discount_code": discount_code,
            "message": message,
            "discount_amount": amount,
            "details": details,
        }

    @BaseService.measure_operation("validate_discount_code")
    def validate_code(
        self,
        code: str,
        context: Union[DiscountCodeContext, Mapping[str, Any]],
        now: Optional[datetime] = None,
    ) -> DiscountCodeValidationData:
        """
        Check a code against a cart.

        Checks run in order and the first failure is returned: existence,
        active flag, validity window, remaining uses, course/client/sport/degree
        scope, school, voucher stacking, minimum purchase, per-user limit.
        """
        if not code or not code.strip():
            return self._result(False, "Discount code not found", reason="not_found")

        if not isinstance(context, DiscountCodeContext):
            try:
                context = DiscountCodeContext.model_validate(dict(context))
            except ValidationError as exc:
                return self._result(
                    False, "Invalid booking data", reason="invalid_context", errors=exc.errors()
                )

        discount_code = self.repository.get_by_code(code)
        if discount_code is None:
            return self._result(False, "Discount code not found", reason="not_found")

        if not discount_code.active:
            return self._result(False, "Discount code is inactive", discount_code, reason="inactive")

        window_message = self._check_window(discount_code, now or datetime.now(timezone.utc))
        if window_message:
            return self._result(False, window_message, discount_code, reason="outside_window")

        if discount_code.remaining is not None and discount_code.remaining <= 0:
            return self._result(False, "Discount code has no uses left", discount_code, reason="exhausted")

        scope_message = self._check_scope(discount_code, context)
        if scope_message:
            return self._result(False, scope_message, discount_code, reason="not_applicable")

        if discount_code.school_id and context.school_id and discount_code.school_id != context.school_id:
            return self._result(
                False, "Discount code is not valid for this school", discount_code, reason="wrong_school"
            )

        if context.has_vouchers and not discount_code.stackable:
            return self._result(
                False, "Discount code cannot be combined with vouchers", discount_code, reason="not_stackable"
            )

        amount = round_money(context.amount)
        if discount_code.min_purchase_amount is not None and amount < to_decimal(discount_code.min_purchase_amount):
            return self._result(
                False,
                f"Minimum purchase amount: {round_money(discount_code.min_purchase_amount)}",
                discount_code,
                reason="below_minimum",
            )

        if context.user_id and discount_code.max_uses_per_user:
            used = self.repository.count_user_usages(discount_code.id, context.user_id)
            if used >= discount_code.max_uses_per_user:
                return self._result(
                    False, "Usage limit reached for this code", discount_code, reason="user_limit"
                )

        discount_amount = calculate_discount_amount(discount_code, amount)
        return self._result(True, "Discount code is valid", discount_code, discount_amount)

    @staticmethod
    def _check_window(discount_code: DiscountCode, now: datetime) -> Optional[str]:
        valid_from = _as_utc(discount_code.valid_from)
        valid_to = _as_utc(discount_code.valid_to)
        now = _as_utc(now)
        if valid_from is not None and now < valid_from:
            return f"Discount code is valid from {valid_from.date().isoformat()}"
        if valid_to is not None and now > valid_to:
            return f"Discount code expired on {valid_to.date().isoformat()}"
        return None

    @staticmethod
    def _check_scope(discount_code: DiscountCode, context: DiscountCodeContext) -> Optional[str]:
        applicable_to = discount_code.applicable_to or ApplicableTo.ALL.value

        if applicable_to == ApplicableTo.SPECIFIC_COURSES.value:
            return DiscountCodeService._check_subset(
                _id_set(discount_code.course_ids), _id_set(context.course_ids), "courses"
            )

        if applicable_to == ApplicableTo.SPECIFIC_CLIENTS.value:
            allowed = _id_set(discount_code.client_ids)
            candidates = _id_set(context.client_ids) | _id_set([context.user_id])
            if not allowed or not (allowed & candidates):
                return "Discount code is not valid for this client"
            return None

        if applicable_to == ApplicableTo.SPECIFIC_SPORTS.value:
            return DiscountCodeService._check_subset(
                _id_set(discount_code.sport_ids), _id_set(context.sport_ids), "sports"
            )

        if applicable_to == ApplicableTo.SPECIFIC_DEGREES.value:
            return DiscountCodeService._check_subset(
                _id_set(discount_code.degree_ids), _id_set(context.degree_ids), "degrees"
            )

        return None

    @staticmethod
    def _check_subset(allowed: set, requested: set, label: str) -> Optional[str]:
        if not allowed:
            return f"Discount code has no {label} configured"
        if not requested:
            return f"Booking has no {label} for this discount code"
        if requested - allowed:
            return f"Discount code is not valid for the selected {label}"
        return None

    # Usage tracking

    @BaseService.measure_operation("record_discount_code_usage")
    def record_usage(
        self,
        discount_code_id: str,
        booking_id: str,
        discount_amount: Decimal,
        user_id: Optional[str] = None,
    ) -> DiscountCodeUsage:
        """
        Consume one use of a code for a booking.

        Runs in the caller's transaction. Raises BusinessRuleException when
        the last use was taken by a concurrent checkout.
        """
        discount_code = self.repository.get_by_id_for_update(discount_code_id)
        if discount_code is None:
            raise NotFoundException(
                f"Discount code {discount_code_id} not found",
                code="DISCOUNT_CODE_NOT_FOUND",
                details={"discount_code_id": discount_code_id},
            )

        if discount_code.remaining is not None:
            if discount_code.remaining <= 0:
                raise BusinessRuleException(
                    f"Discount code {discount_code.code} has no uses left",
                    code="DISCOUNT_CODE_EXHAUSTED",
                    details={"discount_code_id": discount_code.id},
                )
            discount_code.remaining -= 1

        usage = self.repository.create_usage(
            discount_code_id=discount_code.id,
            user_id=user_id,
            booking_id=booking_id,
            discount_amount=round_money(discount_amount),
        )
        self.logger.info(
            "Discount code usage recorded",
            extra={
                "discount_code_id": discount_code.id,
                "booking_id": booking_id,
                "remaining": discount_code.remaining,
            },
        )
        return usage

    @BaseService.measure_operation("revert_discount_code_usage")
    def revert_usage(self, discount_code_id: str, booking_id: str) -> bool:
        """Give back the use taken by a booking; False when nothing was recorded."""
        discount_code = self.repository.get_by_id_for_update(discount_code_id)
        if discount_code is None:
            return False

        usage = self.repository.get_usage(discount_code_id, booking_id)
        if usage is None:
            return False

        if discount_code.remaining is not None:
            restored = discount_code.remaining + 1
            if discount_code.total is not None:
                restored = min(restored, discount_code.total)
            discount_code.remaining = restored

        self.repository.delete_usage(usage)
        self.logger.info(
            "Discount code usage reverted",
            extra={"discount_code_id": discount_code_id, "booking_id": booking_id},
        )
        return True

    def get_code_stats(self, discount_code_id: str) -> dict:
        discount_code = self.repository.get_by_id(discount_code_id)
        if discount_code is None:
            return {}
        usages: List[DiscountCodeUsage] = list(discount_code.usages)
        return {
            "code": discount_code.code,
            "total": discount_code.total,
            "remaining": discount_code.remaining,
            "times_used": len(usages),
            "total_discounted": round_money(sum((to_decimal(u.discount_amount) for u in usages), ZERO)),
        }
