"""Result shapes returned by the pricing and reconciliation services."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional, TypedDict


class LinePriceData(TypedDict):
    price_without_extras: Decimal
    extras_price: Decimal
    cancellation_insurance_price: Decimal
    total_price: Decimal


class ActivityBreakdownData(TypedDict):
    course_id: str
    client_id: str
    course_type: int
    is_flexible: bool
    booking_user_ids: List[str]
    dates: List[str]
    price: Decimal
    extras_price: Decimal
    total: Decimal


class AdditionalConceptsData(TypedDict):
    cancellation_insurance: Decimal


class DiscountsData(TypedDict):
    manual_reduction: Decimal
    discount_code: Decimal
    total: Decimal


class VouchersInfoData(TypedDict):
    total_used: Decimal
    total_refunded: Decimal
    net_voucher_payment: Decimal
    count: int


class BookingTotalData(TypedDict):
    booking_id: Optional[str]
    activities_price: Decimal
    activities_breakdown: List[ActivityBreakdownData]
    additional_concepts: AdditionalConceptsData
    total_before_discounts: Decimal
    discounts: DiscountsData
    total_final: Decimal
    vouchers_info: VouchersInfoData
    currency: str
    calculated_at: str


class FinancialRealityData(TypedDict):
    total_paid: Decimal
    total_refunded: Decimal
    total_no_refund: Decimal
    total_vouchers_used: Decimal
    total_vouchers_refunded: Decimal
    net_received: Decimal
    net_balance: Decimal


class RealityCheckData(TypedDict):
    is_consistent: bool
    main_discrepancy: Decimal
    tolerance: Decimal
    status: str


class ReconciliationData(TypedDict):
    booking_id: Optional[str]
    booking_status: Optional[int]
    calculated_total: Decimal
    calculation: BookingTotalData
    financial_reality: FinancialRealityData
    reality_check: RealityCheckData
    currency: str


class PriceConsistencyData(TypedDict):
    booking_id: Optional[str]
    stored_total: Decimal
    calculated_total: Decimal
    difference: Decimal
    is_consistent: bool


class DiscountCodeValidationData(TypedDict):
    valid: bool
    discount_code: Optional[Any]
    message: str
    discount_amount: Decimal
    details: Dict[str, Any]


__all__ = [
    "ActivityBreakdownData",
    "AdditionalConceptsData",
    "BookingTotalData",
    "DiscountCodeValidationData",
    "DiscountsData",
    "FinancialRealityData",
    "LinePriceData",
    "PriceConsistencyData",
    "RealityCheckData",
    "ReconciliationData",
    "VouchersInfoData",
]
