# backend/app/schemas/booking.py
"""
Booking input schemas.

A booking request carries the participant lines to create plus the
booking-level pricing inputs (insurance flag, manual reduction, discount code
and voucher usages). Line prices are never accepted from the caller; they are
computed and snapshotted by the commit path.
"""

from datetime import date, time
from decimal import Decimal
from typing import List, Optional

from pydantic import AliasChoices, Field, field_validator, model_validator

from ._strict_base import StrictRequestModel


class BookingLineCreate(StrictRequestModel):
    """One participant on one course date."""

    client_id: str = Field(..., min_length=1)
    course_id: str = Field(..., min_length=1)
    booking_date: date = Field(..., validation_alias=AliasChoices("booking_date", "date"))
    course_subgroup_id: Optional[str] = Field(
        default=None, description="Required for collective courses"
    )
    course_date_id: Optional[str] = None
    course_group_id: Optional[str] = None
    degree_id: Optional[str] = None
    monitor_id: Optional[str] = None
    group_id: Optional[int] = Field(default=None, description="Private lesson group number")
    hour_start: Optional[time] = None
    hour_end: Optional[time] = None
    extra_ids: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_time_window(self) -> "BookingLineCreate":
        if (self.hour_start is None) != (self.hour_end is None):
            raise ValueError("hour_start and hour_end must be provided together")
        if self.hour_start is not None and self.hour_end is not None:
            if self.hour_end <= self.hour_start:
                raise ValueError("hour_end must be after hour_start")
        return self


class VoucherUsageCreate(StrictRequestModel):
    """Voucher balance applied as payment to the new booking."""

    voucher_id: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0, decimal_places=2)


class BookingCreate(StrictRequestModel):
    """Create a booking with its participant lines."""

    school_id: str = Field(..., min_length=1)
    client_main_id: Optional[str] = None
    user_id: Optional[str] = Field(default=None, description="Purchasing user, for code limits")
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    has_cancellation_insurance: bool = False
    price_reduction: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    discount_code: Optional[str] = None
    lines: List[BookingLineCreate] = Field(..., min_length=1)
    vouchers: List[VoucherUsageCreate] = Field(default_factory=list)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: Optional[str]) -> Optional[str]:
        return value.upper() if value else value

    @field_validator("discount_code")
    @classmethod
    def _normalize_code(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip().upper()
        return value or None


class DiscountCodeContext(StrictRequestModel):
    """Cart context a discount code is validated against."""

    school_id: Optional[str] = None
    user_id: Optional[str] = None
    amount: Decimal = Field(default=Decimal("0"), ge=0)
    course_ids: List[str] = Field(default_factory=list)
    client_ids: List[str] = Field(default_factory=list)
    sport_ids: List[str] = Field(default_factory=list)
    degree_ids: List[str] = Field(default_factory=list)
    has_vouchers: bool = False


__all__ = [
    "BookingCreate",
    "BookingLineCreate",
    "DiscountCodeContext",
    "VoucherUsageCreate",
]
