"""
Customer fare raises on a pending booking that nobody took.

Each raise is a resend: the fare goes up, the attempt is recorded, and a new
matching window opens at the new fare. Running out of attempts is a terminal
"no drivers available" outcome, never an automatic cancellation.
"""

import logging

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from bookings.models import Booking, FareIncrease
from pricing.engine import money
from pricing.services import get_fare_adjustment_policy
from .bands import parse_amount, raise_limit
from .exceptions import (
    FareOutOfBandError,
    NoCandidatesError,
    NotPermittedError,
    ResendLimitReachedError,
    StateConflictError,
)
from .lifecycle import (
    BookingResult,
    load_booking,
    no_drivers_payload,
    notify_requester,
    require_requester,
    require_status,
)

logger = logging.getLogger(__name__)


@transaction.atomic
def raise_fare(requester, booking_id, new_fare, reason: str = "", registry=None) -> BookingResult:
    """
    Raise the fare of a pending booking and re-open matching.

    Returns:
        BookingResult; error_code "no_drivers_available" when the new window
        found nobody (the raise itself still stands)

    Raises:
        ResendLimitReachedError: resend attempts exhausted
        FareOutOfBandError: new fare not above the current one, or above the cap
        StateConflictError: booking no longer pending
    """
    booking = load_booking(booking_id)
    require_requester(requester, booking)
    require_status(booking, Booking.STATUS_PENDING)

    policy = get_fare_adjustment_policy()
    if not policy.enable_pending_increase:
        raise NotPermittedError("Fare increases are disabled", code="fare_increase_disabled")
    if booking.resend_attempts >= booking.max_resend_attempts:
        raise ResendLimitReachedError(
            "Maximum resend attempts reached",
            resendAttempts=booking.resend_attempts,
            maxResendAttempts=booking.max_resend_attempts,
        )

    current = booking.current_fare
    ceiling = raise_limit(current, policy.max_raise_percentage)
    amount = parse_amount(new_fare)
    if amount <= current or amount > ceiling:
        raise FareOutOfBandError(
            f"New fare must be greater than {current} and at most {ceiling}",
            minimum=current,
            maximum=ceiling,
        )
    amount = money(amount)

    now = timezone.now()
    attempt = booking.resend_attempts + 1
    raised = Booking.objects.filter(
        pk=booking.pk,
        status=Booking.STATUS_PENDING,
        version=booking.version,
        resend_attempts=booking.resend_attempts,
    ).update(
        raised_fare=amount,
        fare=amount,
        resend_attempts=attempt,
        last_resend_at=now,
        version=F("version") + 1,
        updated_at=now,
    )
    if not raised:
        raise StateConflictError(
            "Booking was changed by someone else; refresh and try again", code="version_conflict"
        )
    booking.refresh_from_db()

    FareIncrease.objects.create(
        booking=booking,
        original_fare=current,
        increased_fare=amount,
        reason=reason or "No drivers responding",
        resend_attempt=attempt,
    )
    logger.info(
        "Booking %s fare raised %s -> %s (attempt %s/%s)",
        booking.id, current, amount, attempt, booking.max_resend_attempts,
    )

    from services.matching import open_matching_window

    try:
        window = open_matching_window(booking, previous_fare=current, registry=registry)
    except NoCandidatesError as exc:
        exhausted = booking.resend_attempts >= booking.max_resend_attempts
        message = "No drivers available. Please try again later." if exhausted else exc.message
        notify_requester(booking, "no_drivers_available", no_drivers_payload(booking, message))
        return BookingResult(
            success=False,
            booking=booking,
            message=message,
            error_code=exc.code,
            extra={"drivers_found": 0, "can_raise_fare": not exhausted},
        )

    notify_requester(booking, "fare_raised", {
        "requestId": booking.id,
        "message": f"Fare raised to {amount} {booking.currency}. Notifying drivers again...",
        "previousFare": float(current),
        "newFare": float(amount),
        "resendAttempts": booking.resend_attempts,
        "maxResendAttempts": booking.max_resend_attempts,
        "driversFound": window.drivers_found,
    })
    return BookingResult(
        success=True,
        booking=booking,
        message="Fare raised",
        extra={"drivers_found": window.drivers_found},
    )
