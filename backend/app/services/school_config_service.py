# backend/app/services/school_config_service.py
"""
Per-school pricing configuration.

Schools keep their pricing knobs in the ``settings`` JSON document under
``taxes``. Missing or malformed values fall back to the application settings.
"""

from decimal import Decimal
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..models.school import School
from ..repositories.factory import RepositoryFactory
from ..utils.money import to_decimal
from .base import BaseService

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


class SchoolConfigService(BaseService):
    """Resolves cancellation insurance rate and currency for a school."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.school_repository = RepositoryFactory.create_base_repository(db, School)
        self._schools: Dict[str, Optional[School]] = {}

    def get_school(self, school_id: Optional[str]) -> Optional[School]:
        if not school_id:
            return None
        if school_id not in self._schools:
            self._schools[school_id] = self.school_repository.get_by_id(
                school_id, load_relationships=False
            )
        return self._schools[school_id]

    @staticmethod
    def _taxes(school: Optional[School]) -> Dict[str, Any]:
        if school is None:
            return {}
        taxes = school.get_settings().get("taxes")
        return taxes if isinstance(taxes, dict) else {}

    def cancellation_insurance_percent(self, school: Optional[School]) -> Decimal:
        """
        Insurance rate as a fraction (0.10 for 10%).

        Values above 1 are read as whole percentages, so 10 and 0.10 agree.
        """
        raw = self._taxes(school).get("cancellation_insurance_percent")
        if raw is None or raw == "":
            return settings.default_cancellation_insurance_percent

        rate = to_decimal(raw)
        if rate < 0:
            logger.warning(
                "Negative cancellation insurance rate ignored",
                extra={"school_id": getattr(school, "id", None), "value": str(raw)},
            )
            return settings.default_cancellation_insurance_percent
        if rate > 1:
            rate = rate / HUNDRED
        return rate

    def currency(self, school: Optional[School]) -> str:
        """Currency declared by the school, else the application default."""
        declared = self._taxes(school).get("currency") or getattr(school, "currency", None)
        if isinstance(declared, str) and len(declared.strip()) == 3:
            return declared.strip().upper()
        return settings.default_currency
