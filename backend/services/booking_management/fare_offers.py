"""
Driver fare offers on pending bookings.

A driver may counter the customer's price within a narrow band instead of
accepting it. The customer always sees every live offer together, and expiry
is enforced here on each read and write as well as by the periodic sweep.
"""

import logging
from datetime import timedelta
from typing import List, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from bookings.models import Booking, DriverFareOffer, FareNegotiationEntry
from pricing.services import get_fare_adjustment_policy
from .bands import require_within_band
from .exceptions import (
    BookingNotFoundError,
    BookingValidationError,
    NotPermittedError,
    StateConflictError,
)
from .ledger import append_entry
from .lifecycle import (
    BookingResult,
    notify_driver,
    notify_requester,
    reject_competing_offers,
    require_driver_free,
    require_status,
    announce_acceptance,
    assign_driver,
    load_booking,
    require_driver,
    require_requester,
)

logger = logging.getLogger(__name__)


def offer_ttl() -> timedelta:
    return timedelta(minutes=settings.DRIVER_OFFER_TTL_MINUTES)


def expire_stale_offers(booking: Optional[Booking] = None, now=None) -> int:
    """
    Mark lapsed pending offers expired.

    Args:
        booking: limit to one booking (the lazy path); all bookings when None

    Returns:
        Number of offers expired
    """
    now = now or timezone.now()
    stale = DriverFareOffer.objects.filter(status="pending", expires_at__lte=now)
    if booking is not None:
        stale = stale.filter(booking=booking)
    return stale.update(status="expired", responded_at=now)


def list_live_offers(booking: Booking) -> List[DriverFareOffer]:
    expire_stale_offers(booking)
    return list(
        booking.driver_offers
        .filter(status="pending")
        .select_related("driver")
        .order_by("amount", "offered_at")
    )


def offer_payload(offer: DriverFareOffer) -> dict:
    driver = offer.driver
    vehicle = (
        driver.vehicles
        .filter(service_type=offer.booking.service_type, is_active=True)
        .order_by("id")
        .first()
    )
    return {
        "offerId": offer.id,
        "driverId": driver.id,
        "driverName": driver.display_name,
        "driverRating": float(driver.rating),
        "vehicleInfo": vehicle.summary() if vehicle else {},
        "proposedFare": float(offer.amount),
        "estimatedArrival": offer.estimated_arrival_minutes,
        "expiresAt": offer.expires_at,
        "offeredAt": offer.offered_at,
    }


def publish_offers(booking: Booking, message: str = "") -> int:
    """Send the customer the full set of live offers, not only the newest."""
    offers = list_live_offers(booking)
    notify_requester(booking, "driver_offers_updated", {
        "bookingId": booking.id,
        "offers": [offer_payload(offer) for offer in offers],
        "totalOffers": len(offers),
        "originalFare": float(booking.current_fare),
        "message": message,
    })
    return len(offers)


@transaction.atomic
def submit_driver_offer(driver, booking_id, amount, estimated_arrival_minutes=None) -> BookingResult:
    """
    Propose a different fare for a pending booking.

    Raises:
        StateConflictError: booking not pending, or this driver already has a live offer
        NotPermittedError: not a driver, driver offers disabled, or driver declined the booking
        FareOutOfBandError: amount outside the band around the current fare
    """
    require_driver(driver)
    booking = load_booking(booking_id, for_update=True)
    require_status(booking, Booking.STATUS_PENDING)

    policy = get_fare_adjustment_policy()
    if not policy.enable_driver_adjustment:
        raise NotPermittedError("Driver fare offers are disabled", code="driver_offers_disabled")
    if booking.rejections.filter(driver=driver).exists():
        raise NotPermittedError("You declined this booking", code="booking_declined")

    expire_stale_offers(booking)
    if booking.driver_offers.filter(driver=driver, status="pending").exists():
        raise StateConflictError("You already have a pending offer on this booking", code="offer_already_pending")

    reference = booking.current_fare
    amount = require_within_band(amount, reference, policy.driver_offer_band_percentage, "Offered fare")

    now = timezone.now()
    offer = DriverFareOffer.objects.create(
        booking=booking,
        driver=driver,
        amount=amount,
        reference_fare=reference,
        estimated_arrival_minutes=estimated_arrival_minutes,
        expires_at=now + offer_ttl(),
    )
    append_entry(
        booking,
        kind=FareNegotiationEntry.KIND_DRIVER_OFFER,
        offered_by=driver,
        offered_by_role="driver",
        counterparty=booking.requester,
        amount=amount,
        reference_fare=reference,
        expires_at=offer.expires_at,
    )
    logger.info("Driver %s offered %s on booking %s", driver.id, amount, booking.id)

    total = publish_offers(booking, f"{driver.display_name} offered {amount} {booking.currency}")
    return BookingResult(
        success=True,
        booking=booking,
        message="Offer sent to the customer",
        extra={"offer": offer, "total_offers": total},
    )


def _live_offer(booking: Booking, offer_id) -> DriverFareOffer:
    offer = booking.driver_offers.select_related("driver").filter(pk=offer_id).first()
    if offer is None:
        raise BookingNotFoundError("Offer not found", code="offer_not_found")
    if offer.status == "expired":
        raise StateConflictError("This offer has expired", code="offer_expired")
    if offer.status != "pending":
        raise StateConflictError(f"This offer is already {offer.status}", code="offer_not_pending")
    return offer


@transaction.atomic
def respond_to_driver_offer(requester, booking_id, offer_id, action: str) -> BookingResult:
    """
    Accept or reject one driver's offer.

    Accepting assigns that driver through the same status-guarded update as a
    plain accept, at the offered amount, and turns down every other live offer.
    """
    if action not in ("accept", "reject"):
        raise BookingValidationError("Action must be accept or reject", code="invalid_action")

    booking = load_booking(booking_id, for_update=True)
    require_requester(requester, booking)
    require_status(booking, Booking.STATUS_PENDING)

    expire_stale_offers(booking)
    offer = _live_offer(booking, offer_id)
    now = timezone.now()

    if action == "reject":
        DriverFareOffer.objects.filter(pk=offer.pk, status="pending").update(status="rejected", responded_at=now)
        append_entry(
            booking,
            kind=FareNegotiationEntry.KIND_DRIVER_OFFER_REJECTED,
            offered_by=requester,
            offered_by_role="user",
            counterparty=offer.driver,
            amount=offer.amount,
            reference_fare=offer.reference_fare,
            status="rejected",
        )
        notify_driver(offer.driver_id, "fare_offer_rejected", {
            "bookingId": booking.id,
            "offerId": offer.id,
            "amount": float(offer.amount),
            "reason": "rejected_by_customer",
            "message": "The customer declined your offer.",
        })
        publish_offers(booking, "Offer declined")
        return BookingResult(success=True, booking=booking, message="Offer rejected")

    require_driver_free(offer.driver)
    booking = assign_driver(booking, offer.driver, fare=offer.amount)

    DriverFareOffer.objects.filter(pk=offer.pk).update(status="accepted", responded_at=now)
    reject_competing_offers(booking, offer.driver, reason="another_offer_accepted")
    append_entry(
        booking,
        kind=FareNegotiationEntry.KIND_DRIVER_OFFER_ACCEPTED,
        offered_by=requester,
        offered_by_role="user",
        counterparty=offer.driver,
        amount=offer.amount,
        reference_fare=offer.reference_fare,
        status="accepted",
    )

    driver = offer.driver
    notify_driver(driver.id, "fare_offer_accepted", {
        "bookingId": booking.id,
        "offerId": offer.id,
        "amount": float(offer.amount),
        "message": "The customer accepted your offer.",
    })
    notify_requester(booking, "booking_confirmed", {
        "bookingId": booking.id,
        "driverId": driver.id,
        "driverName": driver.display_name,
        "fare": float(booking.fare),
        "message": f"Booking confirmed with {driver.display_name}.",
    })
    announce_acceptance(booking, driver)

    return BookingResult(success=True, booking=booking, message="Offer accepted", extra={"offer_id": offer.id})


def sweep_expired_offers(now=None) -> int:
    """
    Expire lapsed offers everywhere and refresh the offer list of every
    customer whose pending booking lost one.
    """
    now = now or timezone.now()
    booking_ids = set(
        DriverFareOffer.objects
        .filter(status="pending", expires_at__lte=now)
        .values_list("booking_id", flat=True)
    )
    expired = expire_stale_offers(now=now)
    for booking in Booking.objects.filter(pk__in=booking_ids, status=Booking.STATUS_PENDING):
        publish_offers(booking, "Some offers expired")
    if expired:
        logger.info("Expired %s driver fare offer(s) across %s booking(s)", expired, len(booking_ids))
    return expired
