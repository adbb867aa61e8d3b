# backend/carebridge/domain/booking_state_machine.py
"""
Booking lifecycle transition table.

Status only moves forward along
REQUESTED -> SEARCHING -> ASSIGNED -> CONFIRMED -> EN_ROUTE -> IN_PROGRESS -> COMPLETED,
with CANCELLED reachable from every non-terminal status. COMPLETED and
CANCELLED have no outgoing edges.
"""

from typing import Dict, FrozenSet

from ..core.exceptions import IllegalStatusTransitionException, ValidationException
from ..models.booking import BookingStatus

VALID_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.REQUESTED: frozenset({BookingStatus.SEARCHING, BookingStatus.CANCELLED}),
    BookingStatus.SEARCHING: frozenset({BookingStatus.ASSIGNED, BookingStatus.CANCELLED}),
    BookingStatus.ASSIGNED: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.EN_ROUTE, BookingStatus.CANCELLED}),
    BookingStatus.EN_ROUTE: frozenset({BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED}),
    BookingStatus.IN_PROGRESS: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

# Column stamped with the transition time when a booking enters the status
STATUS_TIMESTAMP_FIELDS: Dict[BookingStatus, str] = {
    BookingStatus.CONFIRMED: "confirmed_at",
    BookingStatus.EN_ROUTE: "en_route_at",
    BookingStatus.IN_PROGRESS: "service_started_at",
    BookingStatus.COMPLETED: "service_ended_at",
    BookingStatus.CANCELLED: "cancelled_at",
}


def parse_status(value: object) -> BookingStatus:
    """Coerce a client-supplied status; unknown values are a validation error."""
    if isinstance(value, BookingStatus):
        return value
    if isinstance(value, str):
        try:
            return BookingStatus(value.strip().upper())
        except ValueError:
            pass
    raise ValidationException(
        f"Unknown booking status: {value!r}",
        code="UNKNOWN_BOOKING_STATUS",
        details={"status": str(value)},
    )


def can_transition(current: BookingStatus, requested: BookingStatus) -> bool:
    return requested in VALID_TRANSITIONS.get(current, frozenset())


def validate_transition(current: object, requested: object) -> BookingStatus:
    """
    Check that ``current -> requested`` is an edge of the lifecycle.

    Returns:
        The requested status as a BookingStatus

    Raises:
        ValidationException: unknown status or illegal pair
    """
    current_status = parse_status(current)
    requested_status = parse_status(requested)
    if not can_transition(current_status, requested_status):
        raise IllegalStatusTransitionException(current_status.value, requested_status.value)
    return requested_status

