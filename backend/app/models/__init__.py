"""
Database models for the ski school booking platform.

This module exports all SQLAlchemy models used in the application.
The models are organized by functionality:
- Schools (tenants) and their configuration
- Course structure: intervals, dates, groups, subgroups, overrides, extras
- Bookings and participant lines
- Payments, vouchers and voucher movements
- Discount codes and their usage
"""

from .booking import Booking, BookingStatus, BookingUser, BookingUserExtra, BookingUserStatus
from .course import (
    Course,
    CourseDate,
    CourseExtra,
    CourseGroup,
    CourseInterval,
    CourseIntervalDiscount,
    CourseIntervalGroup,
    CourseIntervalSubgroup,
    CourseSubgroup,
    CourseType,
    IntervalDiscountType,
    IntervalsConfigMode,
)
from .discount_code import ApplicableTo, DiscountCode, DiscountCodeUsage, DiscountType
from .payment import Payment, PaymentStatus, Voucher, VouchersLog
from .school import School

__all__ = [
    # School
    "School",
    # Course structure
    "Course",
    "CourseDate",
    "CourseExtra",
    "CourseGroup",
    "CourseInterval",
    "CourseIntervalDiscount",
    "CourseIntervalGroup",
    "CourseIntervalSubgroup",
    "CourseSubgroup",
    "CourseType",
    "IntervalDiscountType",
    "IntervalsConfigMode",
    # Bookings
    "Booking",
    "BookingStatus",
    "BookingUser",
    "BookingUserExtra",
    "BookingUserStatus",
    # Payments
    "Payment",
    "PaymentStatus",
    "Voucher",
    "VouchersLog",
    # Discount codes
    "ApplicableTo",
    "DiscountCode",
    "DiscountCodeUsage",
    "DiscountType",
]
