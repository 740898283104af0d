"""Schemas for subgroup availability checks."""

from __future__ import annotations

from datetime import date
from typing import List, Optional, TypedDict

from pydantic import AliasChoices, Field

from ._strict_base import StrictRequestModel


class CartItem(StrictRequestModel):
    """One (subgroup, date) request of a cart."""

    subgroup_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("subgroup_id", "course_subgroup_id"),
    )
    booking_date: date = Field(validation_alias=AliasChoices("booking_date", "date"))
    requested_count: int = Field(
        default=1,
        ge=1,
        validation_alias=AliasChoices("requested_count", "participants", "count"),
    )


class AvailabilityDetailData(TypedDict):
    subgroup_id: str
    date: str
    requested_count: int
    available: bool
    remaining: int
    max_participants: Optional[int]
    reason: Optional[str]


class CartValidationData(TypedDict):
    is_available: bool
    details: List[AvailabilityDetailData]
    validated_at: str


class IntervalStatisticsData(TypedDict):
    interval_id: str
    course_id: str
    start_date: str
    end_date: str
    dates_count: int
    subgroups_count: int
    unlimited_subgroups: int
    total_slots: int
    occupied_slots: int
    available_slots: int
    occupancy_rate: float


__all__ = [
    "AvailabilityDetailData",
    "CartItem",
    "CartValidationData",
    "IntervalStatisticsData",
]
