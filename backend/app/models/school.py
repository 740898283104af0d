"""School (tenant) model."""

import json
from typing import Any, Dict

from sqlalchemy import JSON, Column, DateTime, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..database import Base


class School(Base):
    """
    A ski/activity school; owns courses, bookings and vouchers.

    Pricing-relevant configuration lives in the ``settings`` JSON document,
    e.g. ``{"taxes": {"cancellation_insurance_percent": 0.1, "currency": "CHF"}}``.
    """

    __tablename__ = "schools"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))
    name = Column(String(255), nullable=False)
    currency = Column(String(3), nullable=True)
    settings = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    courses = relationship("Course", back_populates="school")

    def get_settings(self) -> Dict[str, Any]:
        """Return settings as a dict regardless of how they were stored."""
        raw = self.settings
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except ValueError:
                return {}
        if isinstance(raw, dict):
            return raw
        return {}

    def __repr__(self) -> str:
        return f"<School {self.id}: {self.name}>"


__all__ = ["School"]
