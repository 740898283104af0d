# backend/app/repositories/discount_code_repository.py
"""
Discount Code Repository for the ski school booking platform.

Codes are stored upper-case; lookups compare upper-cased values so entry is
case-insensitive.
"""

import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models.discount_code import DiscountCode, DiscountCodeUsage
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class DiscountCodeRepository(BaseRepository[DiscountCode]):
    """Repository for discount codes and their usage records."""

    def __init__(self, db: Session):
        super().__init__(db, DiscountCode)

    def get_by_code(self, code: str, for_update: bool = False) -> Optional[DiscountCode]:
        query = self.db.query(DiscountCode).filter(
            func.upper(DiscountCode.code) == code.strip().upper()
        )
        if for_update:
            query = query.with_for_update()
        return self._execute_first(query)

    def count_user_usages(self, discount_code_id: str, user_id: str) -> int:
        query = self.db.query(func.count(DiscountCodeUsage.id)).filter(
            DiscountCodeUsage.discount_code_id == discount_code_id,
            DiscountCodeUsage.user_id == user_id,
        )
        return int(self._execute_scalar(query) or 0)

    def get_usage(self, discount_code_id: str, booking_id: str) -> Optional[DiscountCodeUsage]:
        query = (
            self.db.query(DiscountCodeUsage)
            .filter(
                DiscountCodeUsage.discount_code_id == discount_code_id,
                DiscountCodeUsage.booking_id == booking_id,
            )
            .order_by(DiscountCodeUsage.used_at.desc())
        )
        return self._execute_first(query)

    def create_usage(self, **kwargs) -> DiscountCodeUsage:
        usage = DiscountCodeUsage(**kwargs)
        self.db.add(usage)
        self.flush()
        return usage

    def delete_usage(self, usage: DiscountCodeUsage) -> None:
        self.db.delete(usage)
        self.flush()
