# backend/app/repositories/factory.py
"""
Repository Factory for the ski school booking platform.

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from .base_repository import BaseRepository

# Avoid circular imports
if TYPE_CHECKING:
    from .booking_repository import BookingRepository
    from .course_repository import CourseRepository
    from .discount_code_repository import DiscountCodeRepository
    from .payment_repository import PaymentRepository


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Centralizes repository creation to ensure consistent initialization
    and makes it easy to swap implementations if needed.
    """

    @staticmethod
    def create_base_repository(db: Session, model) -> BaseRepository:
        """
        Create a generic base repository for any model.

        Args:
            db: Database session
            model: SQLAlchemy model class

        Returns:
            BaseRepository instance
        """
        return BaseRepository(db, model)

    @staticmethod
    def create_course_repository(db: Session) -> "CourseRepository":
        """Create repository for course structure and capacity overrides."""
        from .course_repository import CourseRepository

        return CourseRepository(db)

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        """Create repository for booking and occupancy operations."""
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_payment_repository(db: Session) -> "PaymentRepository":
        """Create repository for payments and voucher movements."""
        from .payment_repository import PaymentRepository

        return PaymentRepository(db)

    @staticmethod
    def create_discount_code_repository(db: Session) -> "DiscountCodeRepository":
        """Create repository for discount codes."""
        from .discount_code_repository import DiscountCodeRepository

        return DiscountCodeRepository(db)
