# backend/app/core/exceptions.py
"""
Domain-specific exceptions for the ski school booking platform.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
"""

from datetime import date
from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        """Default conversion to HTTPException (override in subclasses)."""
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=HTTP_422_UNPROCESSABLE,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Specific business exceptions


class CapacityExceededException(ConflictException):
    """Raised by the booking commit path when a subgroup has no room left."""

    def __init__(
        self,
        *,
        subgroup_id: str,
        booking_date: date,
        course_group_id: Optional[str],
        degree_id: Optional[str],
        max_participants: int,
        occupied: int,
        requested: int,
    ):
        super().__init__(
            message=(
                f"Subgroup {subgroup_id} is full on {booking_date.isoformat()}: "
                f"{occupied}/{max_participants} taken, {requested} requested"
            ),
            code="CAPACITY_EXCEEDED",
            details={
                "subgroup_id": subgroup_id,
                "date": booking_date.isoformat(),
                "course_group_id": course_group_id,
                "degree_id": degree_id,
                "max_participants": max_participants,
                "occupied": occupied,
                "requested": requested,
            },
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
