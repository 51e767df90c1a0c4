"""
services/booking/state_machine.py
Legal booking status transitions.

    PENDING      → CONFIRMED | REJECTED | CANCELLED
    CONFIRMED    → IN_PROGRESS | CANCELLED | RESCHEDULED
    IN_PROGRESS  → COMPLETED
    RESCHEDULED  → CONFIRMED | CANCELLED
    REJECTED, CANCELLED, COMPLETED are terminal.
"""

from typing import FrozenSet, Mapping

from shared.models.models import BookingStatus
from shared.utils.errors import StateTransitionError

BOOKING_TRANSITIONS: Mapping[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset(
        {BookingStatus.CONFIRMED, BookingStatus.REJECTED, BookingStatus.CANCELLED}
    ),
    BookingStatus.CONFIRMED: frozenset(
        {BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED, BookingStatus.RESCHEDULED}
    ),
    BookingStatus.IN_PROGRESS: frozenset({BookingStatus.COMPLETED}),
    BookingStatus.RESCHEDULED: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.REJECTED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in BOOKING_TRANSITIONS.items() if not targets)

# Statuses a requester may cancel from
REQUESTER_CANCELLABLE = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})


def is_valid_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return BookingStatus(target) in BOOKING_TRANSITIONS[BookingStatus(current)]


def assert_transition(current: BookingStatus, target: BookingStatus) -> None:
    current, target = BookingStatus(current), BookingStatus(target)
    if not is_valid_transition(current, target):
        allowed = sorted(s.value for s in BOOKING_TRANSITIONS[current]) or ["none"]
        raise StateTransitionError(
            f"Cannot move booking from '{current.value}' to '{target.value}' "
            f"(allowed: {', '.join(allowed)})"
        )
