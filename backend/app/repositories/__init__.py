# backend/app/repositories/__init__.py
"""
Repository Pattern Implementation for the ski school booking platform.

This package provides the repository layer for data access,
separating business logic from database queries.

Key Components:
- BaseRepository: Foundation for all repositories with generic CRUD operations
- RepositoryFactory: Factory for creating repository instances
- CourseRepository: Course structure, intervals and capacity overrides
- BookingRepository: Bookings, participant lines and occupancy counts
- PaymentRepository: Payments and voucher movements
- DiscountCodeRepository: Discount codes and usage records

Usage:
    from app.repositories import RepositoryFactory

    # In a service:
    repository = RepositoryFactory.create_booking_repository(db)
    occupied = repository.count_active_for_subgroup(subgroup_id, booking_date)
"""

from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .course_repository import CourseRepository
from .discount_code_repository import DiscountCodeRepository
from .factory import RepositoryFactory
from .payment_repository import PaymentRepository

__all__ = [
    "BaseRepository",
    "BookingRepository",
    "CourseRepository",
    "DiscountCodeRepository",
    "PaymentRepository",
    "RepositoryFactory",
]
