"""
Domain errors raised by the reservation core.

The HTTP layer maps each class to a status code in main.py; nothing below
the routers knows about HTTP.
"""


class ReservationError(Exception):
    """Base class for every error the reservation core raises."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ReservationError):
    """Missing or malformed input. Nothing was written."""


class InvalidTransitionError(ValidationError):
    """The requested status change is not allowed from the current status."""


class NotFoundError(ReservationError):
    pass


class ConflictError(ReservationError):
    """The requested dates overlap existing reservations on the same listing."""

    def __init__(self, message: str, conflicts=None, refunded: bool = False):
        super().__init__(message)
        self.conflicts = list(conflicts or [])
        # True when a captured payment was refunded because of this conflict
        self.refunded = refunded


class PaymentVerificationError(ReservationError):
    """The payment provider could not confirm a successful charge."""


class PaymentNotConfiguredError(ReservationError):
    pass


class RefundError(ReservationError):
    """The payment provider rejected or failed a refund. Nothing was written."""


class CalendarSyncError(ReservationError):
    """Calendar sync failed. Logged by callers, never surfaced to clients."""


class StoreError(ReservationError):
    """The database rejected a write. The caller may retry."""
