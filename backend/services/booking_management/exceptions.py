"""Custom exceptions for booking management.

Every exception carries a stable `code` the clients switch on, a readable
`message`, and `extra` details (for band violations, the valid min/max).
"""


class BookingServiceError(Exception):
    """Base class for booking precondition failures."""
    code = "booking_error"

    def __init__(self, message="", code=None, **extra):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.extra = extra


class BookingValidationError(BookingServiceError):
    """Raised for bad input: coordinates, taxonomy mismatch, fare outside band."""
    code = "validation_error"


class FareOutOfBandError(BookingValidationError):
    """Raised when an amount falls outside the allowed band."""
    code = "fare_out_of_band"

    def __init__(self, message, minimum, maximum, **extra):
        super().__init__(message, minimum=float(minimum), maximum=float(maximum), **extra)


class BookingNotFoundError(BookingServiceError):
    """Raised when a booking (or offer/proposal on it) cannot be found."""
    code = "booking_not_found"


class StateConflictError(BookingServiceError):
    """Raised when the booking is not in a state that allows the operation."""
    code = "invalid_state"


class ResendLimitReachedError(StateConflictError):
    """Raised when a fare raise is attempted after the last allowed resend."""
    code = "max_resend_attempts_reached"


class NotPermittedError(BookingServiceError):
    """Raised when the caller is not the party allowed to perform the operation."""
    code = "not_permitted"


class NoCandidatesError(BookingServiceError):
    """Raised by a matching window that found no eligible drivers."""
    code = "no_drivers_available"
