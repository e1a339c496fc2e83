"""
Booking management service.

This module contains the booking state machine (create, accept, reject,
start, complete, cancel), driver fare offers, fare bargaining, fare
escalation and receipt generation.
"""

from .exceptions import (
    BookingServiceError,
    BookingValidationError,
    FareOutOfBandError,
    BookingNotFoundError,
    StateConflictError,
    ResendLimitReachedError,
    NotPermittedError,
    NoCandidatesError,
)
from .lifecycle import (
    BookingResult,
    create_booking,
    quote_fare,
    accept_booking,
    reject_booking,
    start_ride,
    mark_in_progress,
    complete_ride,
    cancel_booking,
    get_booking_for,
    get_current_requester_booking,
    get_current_driver_booking,
    pending_bookings_for_driver,
)
from .fare_offers import (
    submit_driver_offer,
    respond_to_driver_offer,
    list_live_offers,
    expire_stale_offers,
    sweep_expired_offers,
)
from .negotiation import propose_fare, respond_to_proposal, negotiation_history
from .escalation import raise_fare

__all__ = [
    # Lifecycle
    "BookingResult",
    "create_booking",
    "quote_fare",
    "accept_booking",
    "reject_booking",
    "start_ride",
    "mark_in_progress",
    "complete_ride",
    "cancel_booking",
    "get_booking_for",
    "get_current_requester_booking",
    "get_current_driver_booking",
    "pending_bookings_for_driver",
    # Driver offers
    "submit_driver_offer",
    "respond_to_driver_offer",
    "list_live_offers",
    "expire_stale_offers",
    "sweep_expired_offers",
    # Bargaining & escalation
    "propose_fare",
    "respond_to_proposal",
    "negotiation_history",
    "raise_fare",
    # Exceptions
    "BookingServiceError",
    "BookingValidationError",
    "FareOutOfBandError",
    "BookingNotFoundError",
    "StateConflictError",
    "ResendLimitReachedError",
    "NotPermittedError",
    "NoCandidatesError",
]
