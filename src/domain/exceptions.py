"""
Error taxonomy shared by the services and the API layer.

Every error carries the HTTP status and machine-readable ``code`` the API
renders, so routes never translate exceptions by hand.
"""

from __future__ import annotations

from typing import Optional


class BookingError(Exception):
    status_code = 400
    code = "booking_error"

    def __init__(self, message: str = ""):
        self.message = message or (self.__doc__ or self.code).strip()
        super().__init__(self.message)


class RideNotFound(BookingError):
    """Ride not found"""

    status_code = 404
    code = "ride_not_found"


class BookingNotFound(BookingError):
    """Booking not found"""

    status_code = 404
    code = "booking_not_found"


class InsufficientCapacity(BookingError):
    """Not enough seats left on this ride"""

    status_code = 409
    code = "insufficient_capacity"

    def __init__(self, available_seats: int, requested_seats: int):
        super().__init__(
            f"Only {available_seats} seat(s) available, requested {requested_seats}"
        )
        self.available_seats = available_seats
        self.requested_seats = requested_seats


class InvalidSeatCount(BookingError):
    """Invalid seat count"""

    status_code = 422
    code = "invalid_seat_count"


class BookingNotAllowed(BookingError):
    """This rider may not book this ride"""

    status_code = 403
    code = "booking_not_allowed"


class InvalidBookingState(BookingError):
    """Operation not allowed in the booking's current state"""

    status_code = 409
    code = "invalid_booking_state"


class InvalidStateTransition(BookingError):
    """Raised when a status change violates a state machine."""

    status_code = 409
    code = "invalid_state_transition"


class ConcurrentModification(BookingError):
    """The booking changed concurrently, please try again"""

    status_code = 409
    code = "concurrent_modification"


class TransactionAlreadyInProgress(BookingError):
    """A payment for this booking is already in progress"""

    status_code = 409
    code = "transaction_already_in_progress"

    def __init__(self, transaction_id: Optional[int] = None):
        super().__init__()
        self.transaction_id = transaction_id


class NothingToCharge(BookingError):
    """Nothing left to pay for this booking"""

    status_code = 422
    code = "nothing_to_charge"


# ── Provider-originating errors ───────────────────────────────────────


class PaymentError(BookingError):
    """Payment provider error"""

    status_code = 502
    code = "payment_error"

    def __init__(self, message: str = "", external_ref: Optional[str] = None):
        super().__init__(message)
        # Reference the provider may already know the payment by
        self.external_ref = external_ref


class PaymentRejected(PaymentError):
    """The payment provider rejected the transaction"""

    status_code = 402
    code = "payment_rejected"


class InvalidPhoneNumber(PaymentRejected):
    """Phone number is not valid for the selected provider"""

    status_code = 422
    code = "invalid_phone_number"


class PaymentTimeout(PaymentError):
    """The payment provider did not answer in time"""

    status_code = 504
    code = "payment_timeout"


class PaymentUnknown(PaymentError):
    """The payment provider returned an unexpected answer"""

    status_code = 502
    code = "payment_unknown"


# ── Webhooks ──────────────────────────────────────────────────────────


class InvalidSignature(BookingError):
    """Webhook signature does not match"""

    status_code = 401
    code = "invalid_signature"


class InvalidCallback(BookingError):
    """Webhook payload could not be understood"""

    status_code = 400
    code = "invalid_callback"
