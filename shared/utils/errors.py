"""
shared/utils/errors.py
Domain error taxonomy. Every failure a booking operation can report is one of
these kinds; main.py maps them onto HTTP responses.
"""

from typing import List, Optional


class BookingError(Exception):
    """Base class for all domain errors."""

    code = "booking_error"
    status_code = 400

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code, "errors": self.errors}


class ValidationError(BookingError):
    """Malformed or out-of-range input. Carries field-level messages."""

    code = "validation_error"
    status_code = 422


class AuthorizationError(BookingError):
    code = "authorization_error"
    status_code = 403


class NotFoundError(BookingError):
    code = "not_found"
    status_code = 404


class ConflictError(BookingError):
    """Scheduling overlap with an existing commitment."""

    code = "schedule_conflict"
    status_code = 409


class StateTransitionError(BookingError):
    code = "invalid_transition"
    status_code = 400


class PersistenceError(BookingError):
    """Storage failure, including an aborted transaction."""

    code = "persistence_error"
    status_code = 503
