"""
Matching windows.

A window is a single synchronous fan-out: query the driver directory, record
who was shown the booking, publish it to every candidate's room. There is no
timer behind it. A window with no candidates is never recorded.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from django.db.models import F
from django.utils import timezone

from bookings.models import Booking, MatchingDispatch
from drivers.directory import CandidateQuery, find_candidates
from realtime.sessions import SessionRegistry
from services.booking_management.exceptions import NoCandidatesError
from .payloads import booking_request_payload, fare_increased_payload

logger = logging.getLogger(__name__)


@dataclass
class MatchingWindow:
    """Outcome of one fan-out."""
    number: int
    driver_ids: List[int] = field(default_factory=list)
    notified: int = 0

    @property
    def drivers_found(self) -> int:
        return len(self.driver_ids)


def build_candidate_query(booking: Booking) -> CandidateQuery:
    latitude, longitude = booking.pickup_point
    return CandidateQuery(
        latitude=latitude,
        longitude=longitude,
        service_type=booking.service_type,
        vehicle_type=booking.vehicle_type or None,
        preference=booking.driver_preference,
        pink_captain_options=booking.pink_captain_options or {},
        pinned_driver_id=booking.pinned_driver_id,
        exclude_driver_ids=booking.rejected_driver_ids(),
        radius_km=booking.search_radius_km,
    )


def open_matching_window(
    booking: Booking,
    previous_fare=None,
    registry: Optional[SessionRegistry] = None,
) -> MatchingWindow:
    """
    Offer a pending booking to every current candidate.

    Args:
        booking: pending booking, freshly loaded
        previous_fare: fare before an escalation; drivers then get fare_increased
            instead of new_booking_request
        registry: live session registry override

    Returns:
        MatchingWindow with the notified driver ids

    Raises:
        NoCandidatesError: the directory returned nobody
    """
    candidates = find_candidates(build_candidate_query(booking), registry=registry)
    if not candidates:
        logger.info("No candidates for booking %s (window %s)", booking.id, booking.matching_window + 1)
        raise NoCandidatesError("No drivers available nearby. You can raise your fare and try again.")

    Booking.objects.filter(pk=booking.pk).update(
        matching_window=F("matching_window") + 1, updated_at=timezone.now()
    )
    booking.refresh_from_db(fields=["matching_window", "updated_at"])

    MatchingDispatch.objects.bulk_create([
        MatchingDispatch(
            booking=booking,
            driver_id=candidate.driver_id,
            window=booking.matching_window,
            distance_km=candidate.distance_km,
            fare=booking.current_fare,
        )
        for candidate in candidates
    ])

    distances = {candidate.driver_id: candidate.distance_km for candidate in candidates}

    from realtime.notifications import broadcast_to_drivers

    if previous_fare is None:
        event = "new_booking_request"
        build = lambda driver_id: booking_request_payload(booking, distances[driver_id])
    else:
        event = "fare_increased"
        build = lambda driver_id: fare_increased_payload(booking, previous_fare, distances[driver_id])

    notified = broadcast_to_drivers(list(distances), event, build)
    logger.info(
        "Booking %s window %s: %s candidate(s), %s notified",
        booking.id, booking.matching_window, len(candidates), notified,
    )
    return MatchingWindow(number=booking.matching_window, driver_ids=list(distances), notified=notified)


def dispatched_driver_ids(booking: Booking, exclude: Iterable[int] = ()) -> List[int]:
    """Every driver shown the booking in any window, minus `exclude`."""
    excluded = set(exclude)
    driver_ids = (
        MatchingDispatch.objects
        .filter(booking=booking)
        .values_list("driver_id", flat=True)
        .distinct()
    )
    return sorted({driver_id for driver_id in driver_ids if driver_id not in excluded})


def withdraw_booking(booking: Booking, reason: str, exclude: Iterable[int] = ()) -> int:
    """Tell drivers still looking at the booking that it is gone."""
    from realtime.notifications import broadcast_to_drivers

    messages = {
        "accepted": "This booking has been accepted by another driver.",
        "cancelled": "This booking was cancelled by the customer.",
    }
    payload = {
        "requestId": booking.id,
        "reason": reason,
        "message": messages.get(reason, "This booking is no longer available."),
    }
    return broadcast_to_drivers(
        dispatched_driver_ids(booking, exclude), "booking_no_longer_available", payload
    )
