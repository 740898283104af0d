"""
Discount code models.

A discount code is a promotional code entered at checkout. It may be scoped
to one school (or all schools), restricted to specific courses, clients,
sports or degrees, limited in total and per-user uses, and bounded by a
validity window.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional

import ulid
from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED_AMOUNT = "fixed_amount"


class ApplicableTo(str, Enum):
    """Scope of a discount code."""

    ALL = "all"
    SPECIFIC_COURSES = "specific_courses"
    SPECIFIC_CLIENTS = "specific_clients"
    SPECIFIC_SPORTS = "specific_sports"
    SPECIFIC_DEGREES = "specific_degrees"


class DiscountCode(Base):
    """Promotional discount code."""

    __tablename__ = "discount_codes"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    # None applies to every school
    school_id: Mapped[Optional[str]] = mapped_column(String(26), ForeignKey("schools.id"), nullable=True)

    discount_type: Mapped[str] = mapped_column(String(20), nullable=False, default=DiscountType.PERCENTAGE.value)
    discount_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)

    # None means unlimited
    total: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    remaining: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    max_uses_per_user: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    valid_from: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    valid_to: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    applicable_to: Mapped[str] = mapped_column(String(30), nullable=False, default=ApplicableTo.ALL.value)
    course_ids: Mapped[Optional[List[Any]]] = mapped_column(JSON, nullable=True)
    client_ids: Mapped[Optional[List[Any]]] = mapped_column(JSON, nullable=True)
    sport_ids: Mapped[Optional[List[Any]]] = mapped_column(JSON, nullable=True)
    degree_ids: Mapped[Optional[List[Any]]] = mapped_column(JSON, nullable=True)

    min_purchase_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    max_discount_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    stackable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    usages: Mapped[List["DiscountCodeUsage"]] = relationship(
        "DiscountCodeUsage", back_populates="discount_code", cascade="all, delete-orphan"
    )

    @property
    def is_percentage(self) -> bool:
        return self.discount_type == DiscountType.PERCENTAGE.value

    @property
    def is_unlimited(self) -> bool:
        return self.total is None

    def __repr__(self) -> str:
        return f"<DiscountCode(code={self.code}, type={self.discount_type}, value={self.discount_value})>"


class DiscountCodeUsage(Base):
    """One application of a discount code to a booking."""

    __tablename__ = "discount_code_usages"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    discount_code_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("discount_codes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True, index=True)
    booking_id: Mapped[Optional[str]] = mapped_column(String(26), ForeignKey("bookings.id"), nullable=True)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    used_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    discount_code: Mapped["DiscountCode"] = relationship("DiscountCode", back_populates="usages")
