# backend/app/repositories/payment_repository.py
"""
Payment Repository for the ski school booking platform.

Covers payments recorded against bookings and voucher balance movements.
"""

from decimal import Decimal
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ..models.payment import Payment, Voucher, VouchersLog
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class PaymentRepository(BaseRepository[Payment]):
    """Repository for payments, vouchers and voucher logs."""

    def __init__(self, db: Session):
        super().__init__(db, Payment)

    def get_payments_for_booking(self, booking_id: str) -> List[Payment]:
        query = (
            self.db.query(Payment)
            .filter(Payment.booking_id == booking_id)
            .order_by(Payment.created_at)
        )
        return self._execute_query(query)

    def get_voucher_logs_for_booking(self, booking_id: str) -> List[VouchersLog]:
        query = self.db.query(VouchersLog).filter(VouchersLog.booking_id == booking_id)
        return self._execute_query(query)

    def get_voucher_for_update(self, voucher_id: str) -> Optional[Voucher]:
        query = self.db.query(Voucher).filter(Voucher.id == voucher_id).with_for_update()
        return self._execute_first(query)

    def create_voucher_log(self, *, voucher_id: str, booking_id: str, amount: Decimal) -> VouchersLog:
        log = VouchersLog(voucher_id=voucher_id, booking_id=booking_id, amount=amount)
        self.db.add(log)
        self.flush()
        return log
