# backend/app/schemas/__init__.py
"""
Schemas for the ski school booking platform.

Pydantic models validate service inputs; TypedDicts describe the plain
dictionaries returned by the availability and pricing services.
"""

from .availability import (
    AvailabilityDetailData,
    CartItem,
    CartValidationData,
    IntervalStatisticsData,
)
from .booking import BookingCreate, BookingLineCreate, DiscountCodeContext, VoucherUsageCreate
from .pricing import (
    ActivityBreakdownData,
    BookingTotalData,
    DiscountCodeValidationData,
    FinancialRealityData,
    LinePriceData,
    PriceConsistencyData,
    RealityCheckData,
    ReconciliationData,
)

__all__ = [
    "ActivityBreakdownData",
    "AvailabilityDetailData",
    "BookingCreate",
    "BookingLineCreate",
    "BookingTotalData",
    "CartItem",
    "CartValidationData",
    "DiscountCodeContext",
    "DiscountCodeValidationData",
    "FinancialRealityData",
    "IntervalStatisticsData",
    "LinePriceData",
    "PriceConsistencyData",
    "RealityCheckData",
    "ReconciliationData",
    "VoucherUsageCreate",
]
