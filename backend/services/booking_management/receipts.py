"""
Receipt generation on ride completion.

The receipt is the durable record of a ride: the booking's fare snapshot, the
agreed fare, and the waiting time billed at completion.
"""

import logging
from decimal import Decimal

from django.utils import timezone

from bookings.models import Booking, Receipt
from common.taxonomy import ServiceType
from pricing.engine import FareModifiers, MovingDetails, compute_fare, money
from pricing.services import get_rules_or_defaults

logger = logging.getLogger(__name__)


def receipt_number(booking: Booking, when=None) -> str:
    when = timezone.localtime(when or timezone.now())
    return f"RCPT-{when:%Y%m%d%H%M%S}-{booking.id:06d}"


def _ride_minutes(booking: Booking) -> int:
    if not booking.started_at or not booking.completed_at:
        return 0
    return max(0, int((booking.completed_at - booking.started_at).total_seconds() // 60))


def _breakdown(booking: Booking, rules, waiting_minutes):
    details = booking.service_details or {}
    moving = None
    if booking.service_type == ServiceType.SHIFTING_MOVERS:
        moving = MovingDetails.from_payload(details)
    return compute_fare(
        booking.service_type,
        booking.vehicle_type or None,
        booking.service_category or None,
        booking.distance_km,
        route_type=booking.route_type,
        modifiers=FareModifiers(
            waiting_minutes=waiting_minutes,
            helper_requested=booking.helper_requested,
            estimated_duration_minutes=details.get("estimatedDurationMinutes"),
            moving=moving,
        ),
        rules=rules,
    )


def generate_receipt(booking: Booking, waiting_minutes=0, ride_duration_minutes=None) -> Receipt:
    """
    Create the receipt for a completed booking.

    Waiting is billed on top of the agreed fare: the difference between the
    breakdown priced with and without the final waiting minutes (VAT included).
    """
    waiting_minutes = max(0, int(waiting_minutes or 0))
    breakdown = dict(booking.fare_breakdown or {})
    extras = Decimal("0")

    if waiting_minutes:
        rules = get_rules_or_defaults()
        without = _breakdown(booking, rules, 0)
        with_waiting = _breakdown(booking, rules, waiting_minutes)
        extras = with_waiting.total_fare - without.total_fare
        breakdown.update({
            "waitingCharge": float(with_waiting.waiting_charge),
            "overtimeCharge": float(with_waiting.overtime_charge),
            "freeStayMinutes": float(with_waiting.free_stay_minutes),
        })

    total = money(booking.fare + extras)
    breakdown.update({
        "waitingMinutes": waiting_minutes,
        "agreedFare": float(booking.fare),
        "totalFare": float(total),
    })

    if ride_duration_minutes is None:
        ride_duration_minutes = _ride_minutes(booking)

    receipt = Receipt.objects.create(
        booking=booking,
        receipt_number=receipt_number(booking, booking.completed_at),
        pickup_address=booking.pickup_address,
        dropoff_address=booking.dropoff_address,
        distance_km=booking.distance_km,
        ride_duration_minutes=int(ride_duration_minutes),
        waiting_minutes=waiting_minutes,
        fare_breakdown=breakdown,
        agreed_fare=booking.fare,
        total_fare=total,
        currency=booking.currency,
    )
    logger.info("Receipt %s generated for booking %s", receipt.receipt_number, booking.id)
    return receipt
