"""
Payment and voucher models.

Payments record money movements against a booking (charges and refunds).
Vouchers are prepaid balances owned by a school; every use or refund of a
voucher on a booking is written to VouchersLog with a signed amount
(positive when used, negative when refunded back to the voucher).
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

import ulid
from sqlalchemy import Boolean, DateTime, ForeignKey, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base

if TYPE_CHECKING:
    from app.models.booking import Booking


class PaymentStatus(str, Enum):
    """Payment statuses that affect the financial reality of a booking."""

    PAID = "paid"
    REFUND = "refund"
    PARTIAL_REFUND = "partial_refund"
    NO_REFUND = "no_refund"
    PENDING = "pending"
    FAILED = "failed"


REFUND_STATUSES = frozenset({PaymentStatus.REFUND.value, PaymentStatus.PARTIAL_REFUND.value})


class Payment(Base):
    """Money received for, or returned from, a booking."""

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    school_id: Mapped[Optional[str]] = mapped_column(String(26), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default=PaymentStatus.PAID.value)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    booking: Mapped["Booking"] = relationship("Booking", back_populates="payments")

    @property
    def is_refund(self) -> bool:
        return self.status in REFUND_STATUSES

    def __repr__(self) -> str:
        return f"<Payment(booking_id={self.booking_id}, amount={self.amount}, status={self.status})>"


class Voucher(Base):
    """Prepaid balance issued by a school."""

    __tablename__ = "vouchers"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    school_id: Mapped[str] = mapped_column(String(26), ForeignKey("schools.id"), nullable=False, index=True)
    code: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    quantity: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    remaining_balance: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    payed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self) -> str:
        return f"<Voucher(code={self.code}, remaining={self.remaining_balance})>"


class VouchersLog(Base):
    """Signed voucher movement against a booking."""

    __tablename__ = "vouchers_log"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    voucher_id: Mapped[str] = mapped_column(String(26), ForeignKey("vouchers.id"), nullable=False)
    booking_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Positive when used on the booking, negative when refunded to the voucher
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    booking: Mapped["Booking"] = relationship("Booking", back_populates="vouchers_logs")
    voucher: Mapped["Voucher"] = relationship("Voucher")

    def __repr__(self) -> str:
        return f"<VouchersLog(voucher_id={self.voucher_id}, booking_id={self.booking_id}, amount={self.amount})>"
