# backend/carebridge/core/exceptions.py
"""
Domain-specific exceptions for the CareBridge platform.

Every exception carries a machine-readable code and a details dict so
callers can tell a lost race from a bad request without parsing messages.

Retry semantics by type:
- ValidationException: fix the input, then retry
- ForbiddenException: never retry
- ConflictException: re-fetch current state before deciding to retry
- GatewayException: safe to retry, any provisional lock was released
- CriticalReconciliationError: never shown to end users, escalated to alerts
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

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
        """Convert to an HTTPException carrying the message, code and details."""
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when input or a requested state change is invalid."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when a conditional update lost a race or state moved underneath the caller."""

    status_code = status.HTTP_409_CONFLICT


class ForbiddenException(DomainException):
    """Raised when user lacks permission for an action."""

    status_code = status.HTTP_403_FORBIDDEN


class GatewayException(DomainException):
    """Raised when an external payment or access-grant call fails."""

    status_code = status.HTTP_502_BAD_GATEWAY


class ServiceException(DomainException):
    """Raised when the database fails underneath a service transaction."""


class CriticalReconciliationError(DomainException):
    """
    An external side effect succeeded but its local record could not be persisted.

    Never raised to the caller: the money already moved. Instances are handed
    to the alert service for manual reconciliation.
    """

    def __init__(
        self,
        message: str,
        *,
        booking_id: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message=message,
            code="CRITICAL_RECONCILIATION",
            details={"booking_id": booking_id, **(details or {})},
        )
        self.booking_id = booking_id


# Specific business exceptions


class IllegalStatusTransitionException(ValidationException):
    """Raised when a booking status change is not in the transition table."""

    def __init__(self, current: str, requested: str):
        super().__init__(
            message=f"Cannot change status from {current} to {requested}",
            code="ILLEGAL_STATUS_TRANSITION",
            details={"from_status": current, "to_status": requested},
        )


class BookingConflictException(ConflictException):
    """Raised when a booking changed between read and conditional write."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: str = "BOOKING_CONFLICT",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message or "Booking was modified by another request",
            code=code,
            details=details or {},
        )


class RepositoryException(Exception):
    """A repository call failed: constraint violation or database error."""
