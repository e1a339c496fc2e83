"""
Core booking lifecycle operations.

Every transition re-reads the booking and writes through a single conditional
UPDATE guarded on the status it expects, so two racing callers can never both
succeed. Notifications go out after the write and are delivered on commit.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from accounts.models import User
from bookings.models import Booking, RejectedDriver
from common.taxonomy import (
    ANY_VEHICLE,
    DriverPreference,
    PINK_CAPTAIN_DRIVER_FLAGS,
    RouteType,
    ServiceType,
    requested_pink_options,
    validate_service_combination,
)
from common.utils.geo import calculate_distance, is_valid_coordinate
from drivers.models import DriverProfile
from pricing.engine import FareModifiers, MovingDetails, compute_fare, money
from pricing.rules import CancellationMilestone
from pricing.services import (
    estimate_demand_ratio,
    get_active_rules,
    get_rules_or_defaults,
    is_night_time,
)
from .bands import raise_limit, require_within_band
from .exceptions import (
    BookingNotFoundError,
    BookingValidationError,
    NoCandidatesError,
    NotPermittedError,
    StateConflictError,
)
from .ledger import close_stale_proposal, open_proposal, original_fare

logger = logging.getLogger(__name__)

DRIVER_ACTIVE_STATUSES = (Booking.STATUS_ACCEPTED, Booking.STATUS_STARTED, Booking.STATUS_IN_PROGRESS)


@dataclass
class BookingResult:
    """Result object for booking operations."""
    success: bool
    booking: Optional[Booking] = None
    message: str = ""
    error_code: Optional[str] = None
    extra: Optional[Dict[str, Any]] = None


# ===================== Loading & actors =====================

def load_booking(booking_id, for_update=False) -> Booking:
    queryset = Booking.objects.select_related("requester", "driver")
    if for_update:
        queryset = queryset.select_for_update(of=("self",))
    try:
        return queryset.get(pk=booking_id)
    except (Booking.DoesNotExist, ValueError, TypeError):
        raise BookingNotFoundError("Booking not found")


def role_in_booking(user, booking: Booking) -> Optional[str]:
    """'user' for the requester, 'driver' for the assigned driver, else None."""
    if user.id == booking.requester_id:
        return "user"
    if booking.driver_id and user.id == booking.driver_id:
        return "driver"
    return None


def require_driver(user):
    if not getattr(user, "is_driver", False):
        raise NotPermittedError("Only drivers can perform this action", code="driver_only")


def require_requester(user, booking: Booking):
    if user.id != booking.requester_id:
        raise NotPermittedError("Only the customer who made this booking can do that")


def require_assigned_driver(user, booking: Booking):
    if not booking.driver_id or user.id != booking.driver_id:
        raise NotPermittedError("Only the assigned driver can do that")


def require_status(booking: Booking, *statuses):
    if booking.status not in statuses:
        raise StateConflictError(
            f"Booking is {booking.status}; expected {' or '.join(statuses)}",
            current_status=booking.status,
        )


def _conflict_after_race(booking_id, expected) -> StateConflictError:
    current = Booking.objects.filter(pk=booking_id).values_list("status", flat=True).first()
    return StateConflictError(
        f"Booking changed while processing; expected {expected}",
        current_status=current,
    )


# ===================== Notification payloads =====================

def notify_requester(booking: Booking, event: str, payload: dict):
    from realtime.notifications import notify_user_event
    notify_user_event(booking.requester_id, event, payload)


def notify_driver(driver_id, event: str, payload: dict):
    from realtime.notifications import notify_driver_event
    notify_driver_event(driver_id, event, payload)


def no_drivers_payload(booking: Booking, message: str) -> dict:
    policy = get_rules_or_defaults().fare_adjustment
    can_raise = policy.enable_pending_increase and booking.resend_attempts < booking.max_resend_attempts
    max_allowed = None
    if can_raise:
        max_allowed = float(raise_limit(booking.current_fare, policy.max_raise_percentage))
    return {
        "requestId": booking.id,
        "message": message,
        "resendAttempts": booking.resend_attempts,
        "maxResendAttempts": booking.max_resend_attempts,
        "canRaiseFare": can_raise,
        "maxAllowedFare": max_allowed,
    }


def notify_status_change(booking: Booking, event: str, message: str, **extra):
    """ride_started / ride_in_progress / ride_completed to both parties."""
    payload = {
        "bookingId": booking.id,
        "status": booking.status,
        "driverId": booking.driver_id,
        "fare": float(booking.fare),
        "timestamp": timezone.now(),
        "message": message,
    }
    payload.update(extra)
    notify_requester(booking, event, payload)
    notify_driver(booking.driver_id, event, payload)


# ===================== Customer Operations =====================

def check_active_booking(user) -> Optional[Booking]:
    return Booking.objects.filter(requester=user, status__in=Booking.ACTIVE_STATUSES).first()


def _validate_request(pickup, dropoff, service_type, vehicle_type, service_category,
                      route_type, driver_preference, pinned_driver_id):
    for label, (lat, lon) in (("pickup", pickup), ("dropoff", dropoff)):
        if not is_valid_coordinate(lat, lon):
            raise BookingValidationError(f"Invalid {label} coordinates", code="invalid_coordinates")

    problems = validate_service_combination(service_type, vehicle_type, service_category)
    if problems:
        raise BookingValidationError("; ".join(problems), code="invalid_service_combination", problems=problems)

    if route_type not in RouteType.values:
        raise BookingValidationError(f"Unknown route type '{route_type}'", code="invalid_route_type")
    if driver_preference not in DriverPreference.values:
        raise BookingValidationError(f"Unknown driver preference '{driver_preference}'", code="invalid_preference")

    if driver_preference == DriverPreference.PINNED:
        if not pinned_driver_id or not User.objects.filter(pk=pinned_driver_id, role="driver").exists():
            raise BookingValidationError("A valid pinned driver is required", code="invalid_pinned_driver")


def quote_fare(
    service_type: str,
    vehicle_type: Optional[str],
    service_category: Optional[str],
    distance_km,
    route_type: str = RouteType.ONE_WAY,
    helper_requested: bool = False,
    service_details: Optional[dict] = None,
    scheduled_for=None,
    rules=None,
):
    """
    Price a trip with server-derived modifiers: night from the start time,
    surge from current demand.

    Raises:
        ConfigurationMissing: no active pricing configuration
    """
    rules = rules or get_active_rules()
    details = service_details or {}
    moving = MovingDetails.from_payload(details) if service_type == ServiceType.SHIFTING_MOVERS else None
    modifiers = FareModifiers(
        is_night=is_night_time(rules, scheduled_for),
        demand_ratio=estimate_demand_ratio(service_type),
        helper_requested=helper_requested,
        estimated_duration_minutes=details.get("estimatedDurationMinutes"),
        moving=moving,
    )
    return compute_fare(
        service_type,
        vehicle_type or None,
        service_category or None,
        distance_km,
        route_type=route_type,
        modifiers=modifiers,
        rules=rules,
    )


@transaction.atomic
def create_booking(
    requester,
    pickup_latitude,
    pickup_longitude,
    dropoff_latitude,
    dropoff_longitude,
    service_type: str,
    vehicle_type: str = "",
    service_category: str = "",
    pickup_address: str = "",
    dropoff_address: str = "",
    pickup_zone: str = "",
    dropoff_zone: str = "",
    route_type: str = RouteType.ONE_WAY,
    driver_preference: str = DriverPreference.NEARBY,
    pink_captain_options: Optional[dict] = None,
    pinned_driver_id: Optional[int] = None,
    search_radius_km: Optional[int] = None,
    helper_requested: bool = False,
    service_details: Optional[dict] = None,
    scheduled_for=None,
    offered_fare=None,
    registry=None,
) -> BookingResult:
    """
    Create a booking, price it, and open the first matching window.

    Args:
        requester: User making the booking
        offered_fare: the customer's own price; must sit within the adjustment
            band around the computed fare. Defaults to the computed fare.
        registry: live session registry override (tests)

    Returns:
        BookingResult; success is False with error_code "no_drivers_available"
        when nobody could be offered the booking. The booking stays pending
        so the customer can raise the fare.

    Raises:
        StateConflictError: requester already has an active booking
        BookingValidationError: bad coordinates, taxonomy or fare
        ConfigurationMissing: no active pricing configuration
    """
    if check_active_booking(requester):
        raise StateConflictError("You already have an active booking", code="active_booking_exists")

    pickup = (pickup_latitude, pickup_longitude)
    dropoff = (dropoff_latitude, dropoff_longitude)
    _validate_request(pickup, dropoff, service_type, vehicle_type, service_category,
                      route_type, driver_preference, pinned_driver_id)

    distance = calculate_distance(float(pickup_latitude), float(pickup_longitude),
                                  float(dropoff_latitude), float(dropoff_longitude))
    rules = get_active_rules()
    breakdown = quote_fare(
        service_type, vehicle_type, service_category, distance,
        route_type=route_type,
        helper_requested=helper_requested,
        service_details=service_details,
        scheduled_for=scheduled_for,
        rules=rules,
    )

    policy = rules.fare_adjustment
    fare = breakdown.total_fare
    if offered_fare is not None:
        band = policy.allowed_adjustment_percentage if policy.enable_user_adjustment else 0
        fare = require_within_band(offered_fare, breakdown.total_fare, band, "Offered fare")

    booking = Booking.objects.create(
        requester=requester,
        pinned_driver_id=pinned_driver_id if driver_preference == DriverPreference.PINNED else None,
        pickup_latitude=round(Decimal(str(pickup_latitude)), 6),
        pickup_longitude=round(Decimal(str(pickup_longitude)), 6),
        pickup_address=pickup_address,
        pickup_zone=pickup_zone,
        dropoff_latitude=round(Decimal(str(dropoff_latitude)), 6),
        dropoff_longitude=round(Decimal(str(dropoff_longitude)), 6),
        dropoff_address=dropoff_address,
        dropoff_zone=dropoff_zone,
        distance_km=money(distance),
        service_type=service_type,
        service_category=breakdown.service_category or "",
        vehicle_type=vehicle_type or "",
        route_type=route_type,
        driver_preference=driver_preference,
        pink_captain_options=pink_captain_options or {},
        search_radius_km=search_radius_km,
        helper_requested=helper_requested,
        service_details=service_details or {},
        scheduled_for=scheduled_for,
        offered_fare=fare,
        fare=fare,
        fare_breakdown=breakdown.as_dict(),
        currency=breakdown.currency,
        max_resend_attempts=policy.max_resend_attempts,
    )
    logger.info("Booking %s created by user %s (%s, %.2f km)", booking.id, requester.id, service_type, distance)

    from services.matching import open_matching_window

    try:
        window = open_matching_window(booking, registry=registry)
    except NoCandidatesError as exc:
        notify_requester(booking, "no_drivers_available", no_drivers_payload(booking, exc.message))
        return BookingResult(
            success=False,
            booking=booking,
            message=exc.message,
            error_code=exc.code,
            extra={"drivers_found": 0},
        )

    notify_requester(booking, "booking_request_created", {
        "requestId": booking.id,
        "message": "Notifying nearby drivers...",
        "driversFound": window.drivers_found,
        "fare": float(booking.fare),
        "matchingWindow": window.number,
    })
    return BookingResult(
        success=True,
        booking=booking,
        message="Notifying nearby drivers...",
        extra={"drivers_found": window.drivers_found},
    )


def get_current_requester_booking(user) -> Optional[Booking]:
    return (
        Booking.objects
        .filter(requester=user, status__in=Booking.ACTIVE_STATUSES)
        .select_related("driver")
        .first()
    )


@transaction.atomic
def cancel_booking(
    actor,
    booking_id,
    reason: str = "",
    progress: float = 0,
    driver_arrived: bool = False,
) -> BookingResult:
    """
    Cancel a pending or accepted booking, by its customer or its driver.

    A customer cancelling after a driver was assigned pays the charge for the
    trip-progress milestone reached. Driver cancellations are always free.
    """
    booking = load_booking(booking_id)
    role = role_in_booking(actor, booking)
    if role is None:
        raise NotPermittedError("Only the customer or the assigned driver can cancel this booking")
    if booking.status not in Booking.CANCELLABLE_STATUSES:
        raise StateConflictError(
            f"Cannot cancel - booking is already {booking.status}", current_status=booking.status
        )

    charge = Decimal("0")
    if role == "user" and booking.driver_id:
        milestone = CancellationMilestone.from_progress(progress, driver_arrived)
        charge = money(get_rules_or_defaults().cancellation_charge(milestone))

    now = timezone.now()
    cancelled = Booking.objects.filter(
        pk=booking.pk, status__in=Booking.CANCELLABLE_STATUSES
    ).update(
        status=Booking.STATUS_CANCELLED,
        cancelled_by=actor,
        cancellation_reason=reason,
        cancellation_charge=charge,
        cancelled_at=now,
        awaiting_fare_agreement=False,
        version=F("version") + 1,
        updated_at=now,
    )
    if not cancelled:
        raise _conflict_after_race(booking.pk, "pending or accepted")

    booking.refresh_from_db()
    booking.driver_offers.filter(status="pending").update(status="withdrawn", responded_at=now)
    if booking.driver_id:
        DriverProfile.objects.filter(user_id=booking.driver_id).update(status="online")

    logger.info("Booking %s cancelled by %s %s (charge %s)", booking.id, role, actor.id, charge)

    message = "Customer cancelled this booking." if role == "user" else "Driver cancelled this booking."
    payload = {
        "requestId": booking.id,
        "cancelledBy": role,
        "reason": reason,
        "cancellationCharge": float(charge),
        "message": message,
    }
    if role == "user":
        from realtime.notifications import broadcast_to_drivers
        from services.matching import dispatched_driver_ids

        recipients = set(dispatched_driver_ids(booking))
        if booking.driver_id:
            recipients.add(booking.driver_id)
        broadcast_to_drivers(sorted(recipients), "booking_cancelled", payload)
    else:
        notify_requester(booking, "booking_cancelled", payload)

    return BookingResult(
        success=True,
        booking=booking,
        message="Booking cancelled successfully",
        extra={"cancellation_charge": float(charge), "was_assigned": bool(booking.driver_id)},
    )


# ===================== Driver Operations =====================

def require_driver_free(driver):
    if Booking.objects.filter(driver=driver, status__in=DRIVER_ACTIVE_STATUSES).exists():
        raise StateConflictError("You already have an active ride", code="driver_busy")


def assign_driver(booking: Booking, driver, fare=None) -> Booking:
    """
    The single atomic check-then-set for acceptance. Exactly one caller wins a
    pending booking; the rest get booking_no_longer_available.
    """
    now = timezone.now()
    changes = {
        "status": Booking.STATUS_ACCEPTED,
        "driver": driver,
        "accepted_at": now,
        "version": F("version") + 1,
        "updated_at": now,
    }
    if fare is not None:
        changes["fare"] = fare

    won = Booking.objects.filter(pk=booking.pk, status=Booking.STATUS_PENDING).update(**changes)
    if not won:
        logger.info("Driver %s lost the race for booking %s", driver.id, booking.pk)
        raise StateConflictError(
            "This booking is no longer available", code="booking_no_longer_available"
        )

    booking.refresh_from_db()
    DriverProfile.objects.filter(user=driver).update(status="busy")
    logger.info("Booking %s accepted by driver %s at %s", booking.id, driver.id, booking.fare)
    close_proposals_with_others(booking, driver)
    return booking


def close_proposals_with_others(booking: Booking, winner):
    """A proposal between the customer and a driver who did not win is void."""
    closing = close_stale_proposal(booking, winner.id)
    if closing is None:
        return
    logger.info("Closed proposal %s on booking %s after driver %s won", closing.responds_to_id, booking.id, winner.id)
    notify_driver(closing.counterparty_id, "fare_negotiation_rejected", {
        "bookingId": booking.id,
        "entryId": closing.id,
        "sequence": closing.sequence,
        "offeredBy": closing.offered_by_id,
        "offeredByRole": closing.offered_by_role,
        "amount": float(closing.amount),
        "originalFare": float(original_fare(booking)),
        "currentFare": float(booking.fare),
        "status": closing.status,
        "expiresAt": None,
        "message": "This booking was accepted by another driver.",
    })


def announce_acceptance(booking: Booking, driver):
    """booking_accepted to the customer; everyone else who saw it is told it is gone."""
    from services.matching import withdraw_booking

    notify_requester(booking, "booking_accepted", {
        "requestId": booking.id,
        "driverId": driver.id,
        "driverName": driver.display_name,
        "fare": float(booking.fare),
        "acceptedAt": booking.accepted_at,
        "message": f"{driver.display_name} accepted your booking.",
    })
    withdraw_booking(booking, "accepted", exclude=[driver.id])


@transaction.atomic
def accept_booking(driver, booking_id) -> BookingResult:
    """
    Accept a pending booking at its current fare.

    Raises:
        StateConflictError: booking no longer pending, or driver already busy
        NotPermittedError: caller is not a driver, or declined this booking
    """
    require_driver(driver)
    booking = load_booking(booking_id)
    if booking.status != Booking.STATUS_PENDING:
        raise StateConflictError(
            "This booking is no longer available", code="booking_no_longer_available"
        )
    if booking.rejections.filter(driver=driver).exists():
        raise NotPermittedError("You declined this booking", code="booking_declined")
    require_driver_free(driver)

    booking = assign_driver(booking, driver)

    now = timezone.now()
    booking.driver_offers.filter(status="pending", driver=driver).update(status="withdrawn", responded_at=now)
    reject_competing_offers(booking, driver, reason="booking_accepted")
    announce_acceptance(booking, driver)

    return BookingResult(success=True, booking=booking, message="Booking accepted")


def reject_competing_offers(booking: Booking, winner, reason: str):
    now = timezone.now()
    losers = list(booking.driver_offers.filter(status="pending").exclude(driver=winner))
    if not losers:
        return
    booking.driver_offers.filter(pk__in=[offer.pk for offer in losers]).update(
        status="rejected", responded_at=now
    )
    for offer in losers:
        notify_driver(offer.driver_id, "fare_offer_rejected", {
            "bookingId": booking.id,
            "offerId": offer.id,
            "amount": float(offer.amount),
            "reason": reason,
            "message": "The customer went with another driver.",
        })


@transaction.atomic
def reject_booking(driver, booking_id, reason: str = "") -> BookingResult:
    """
    Decline a pending booking. Idempotent; the booking itself is unchanged and
    this driver is never offered it again.
    """
    require_driver(driver)
    booking = load_booking(booking_id)
    require_status(booking, Booking.STATUS_PENDING)

    _, created = RejectedDriver.objects.get_or_create(
        booking=booking, driver=driver, defaults={"reason": reason}
    )
    if created:
        booking.driver_offers.filter(driver=driver, status="pending").update(
            status="withdrawn", responded_at=timezone.now()
        )
        notify_requester(booking, "booking_rejected", {
            "requestId": booking.id,
            "driverId": driver.id,
            "reason": reason,
            "message": "A driver declined your booking.",
        })
        logger.info("Driver %s declined booking %s", driver.id, booking.id)

    return BookingResult(
        success=True,
        booking=booking,
        message="Booking declined",
        extra={"already_rejected": not created},
    )


def _advance(booking: Booking, expected, new_status: str, stamp: str, **updates) -> Booking:
    now = timezone.now()
    changes = {
        "status": new_status,
        stamp: now,
        "version": F("version") + 1,
        "updated_at": now,
    }
    changes.update(updates)
    moved = Booking.objects.filter(
        pk=booking.pk, status__in=expected, driver_id=booking.driver_id
    ).update(**changes)
    if not moved:
        raise _conflict_after_race(booking.pk, " or ".join(expected))
    booking.refresh_from_db()
    return booking


@transaction.atomic
def start_ride(driver, booking_id) -> BookingResult:
    """
    Start an accepted booking. Blocked while a fare proposal is open on it;
    a proposal that lapsed unanswered lifts the block.
    """
    booking = load_booking(booking_id)
    require_assigned_driver(driver, booking)
    require_status(booking, Booking.STATUS_ACCEPTED)

    if booking.awaiting_fare_agreement and open_proposal(booking):
        raise StateConflictError(
            "A fare proposal is awaiting a response", code="awaiting_fare_agreement"
        )

    booking = _advance(
        booking, (Booking.STATUS_ACCEPTED,), Booking.STATUS_STARTED, "started_at",
        awaiting_fare_agreement=False,
    )
    logger.info("Booking %s started by driver %s", booking.id, driver.id)
    notify_status_change(booking, "ride_started", "Your ride has started.")
    return BookingResult(success=True, booking=booking, message="Ride started")


@transaction.atomic
def mark_in_progress(driver, booking_id) -> BookingResult:
    booking = load_booking(booking_id)
    require_assigned_driver(driver, booking)
    require_status(booking, Booking.STATUS_STARTED)

    booking = _advance(booking, (Booking.STATUS_STARTED,), Booking.STATUS_IN_PROGRESS, "in_progress_at")
    notify_status_change(booking, "ride_in_progress", "Your ride is in progress.")
    return BookingResult(success=True, booking=booking, message="Ride in progress")


@transaction.atomic
def complete_ride(driver, booking_id, waiting_minutes: int = 0, ride_duration_minutes=None) -> BookingResult:
    """
    Complete a started or in-progress booking and generate its receipt.

    Returns:
        BookingResult with the receipt under extra["receipt"]
    """
    booking = load_booking(booking_id)
    require_assigned_driver(driver, booking)
    require_status(booking, Booking.STATUS_STARTED, Booking.STATUS_IN_PROGRESS)

    booking = _advance(
        booking,
        (Booking.STATUS_STARTED, Booking.STATUS_IN_PROGRESS),
        Booking.STATUS_COMPLETED,
        "completed_at",
    )

    from .receipts import generate_receipt
    receipt = generate_receipt(booking, waiting_minutes, ride_duration_minutes)

    DriverProfile.objects.filter(user=driver).update(status="online")
    User.objects.filter(pk=driver.pk).update(completed_rides=F("completed_rides") + 1)
    logger.info("Booking %s completed by driver %s", booking.id, driver.id)

    notify_status_change(
        booking, "ride_completed", "Your ride is complete.",
        receiptNumber=receipt.receipt_number,
        totalFare=float(receipt.total_fare),
        currency=receipt.currency,
    )
    return BookingResult(
        success=True,
        booking=booking,
        message="Ride completed",
        extra={"receipt": receipt},
    )


def get_current_driver_booking(driver) -> Optional[Booking]:
    return (
        Booking.objects
        .filter(driver=driver, status__in=DRIVER_ACTIVE_STATUSES)
        .select_related("requester")
        .first()
    )


# ===================== Reads =====================

def get_booking_for(user, booking_id) -> Booking:
    """
    A booking is visible to its customer, its assigned driver, and, while
    pending, to any driver.
    """
    booking = load_booking(booking_id)
    if role_in_booking(user, booking):
        return booking
    if booking.status == Booking.STATUS_PENDING and getattr(user, "is_driver", False):
        return booking
    raise NotPermittedError("You cannot view this booking")


def _driver_can_serve(profile: DriverProfile, gender: str, booking: Booking) -> bool:
    if booking.driver_preference == DriverPreference.PINNED:
        return booking.pinned_driver_id == profile.user_id
    if booking.driver_preference == DriverPreference.PINK_CAPTAIN:
        if gender != "female" or not profile.pink_captain_mode:
            return False
        return all(
            getattr(profile, PINK_CAPTAIN_DRIVER_FLAGS[option])
            for option in requested_pink_options(booking.pink_captain_options)
        )
    return True


def pending_bookings_for_driver(driver, radius_km: Optional[float] = None) -> List[Tuple[Booking, float]]:
    """
    Pending bookings a driver could take right now: a service their active
    vehicles cover, within radius of their last location, and not declined.

    Returns:
        (booking, distance_km) pairs, nearest first
    """
    require_driver(driver)
    try:
        profile = driver.driver_profile
    except DriverProfile.DoesNotExist:
        return []
    if not profile.has_location:
        return []

    vehicles = list(
        driver.vehicles.filter(status="approved", is_active=True).values_list("service_type", "vehicle_type")
    )
    if not vehicles:
        return []
    service_types = {service for service, _ in vehicles}
    vehicle_types = {vehicle for _, vehicle in vehicles}

    radius = float(radius_km or settings.MATCHING_DEFAULT_RADIUS_KM)
    origin = (float(profile.current_latitude), float(profile.current_longitude))

    bookings = (
        Booking.objects
        .filter(status=Booking.STATUS_PENDING, service_type__in=service_types)
        .exclude(rejections__driver=driver)
        .select_related("requester")
    )

    visible = []
    for booking in bookings:
        if booking.vehicle_type and booking.vehicle_type != ANY_VEHICLE and booking.vehicle_type not in vehicle_types:
            continue
        if not _driver_can_serve(profile, driver.gender, booking):
            continue
        distance = calculate_distance(origin[0], origin[1], *booking.pickup_point)
        limit = settings.MATCHING_PINK_CAPTAIN_RADIUS_KM if (
            booking.driver_preference == DriverPreference.PINK_CAPTAIN
        ) else radius
        if distance <= limit or booking.driver_preference == DriverPreference.PINNED:
            visible.append((booking, round(distance, 2)))

    visible.sort(key=lambda pair: (pair[1], pair[0].id))
    return visible
