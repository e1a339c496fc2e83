"""
Driver-facing booking payloads.

Coordinates are sent as [longitude, latitude] pairs, the order the mobile
clients render.
"""

from typing import Optional

from bookings.models import Booking


def location_payload(address, zone, point) -> dict:
    latitude, longitude = point
    return {
        "address": address or "",
        "zone": zone or "",
        "coordinates": [longitude, latitude],
    }


def requester_payload(user) -> dict:
    """Who the driver is picking up."""
    return {
        "id": user.id,
        "username": user.username,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "email": user.email,
        "phoneNumber": user.phone_number,
        "gender": user.gender,
        "kycLevel": user.kyc_level,
        "kycStatus": user.kyc_status,
        "role": user.role,
        "rating": float(user.rating),
    }


def booking_request_payload(booking: Booking, driver_distance_km: Optional[float] = None) -> dict:
    """The booking as a driver sees it in new_booking_request."""
    return {
        "requestId": booking.id,
        "from": location_payload(
            booking.pickup_address, booking.pickup_zone, booking.pickup_point
        ),
        "to": location_payload(
            booking.dropoff_address, booking.dropoff_zone, booking.dropoff_point
        ),
        "fare": float(booking.current_fare),
        "offeredFare": float(booking.offered_fare),
        "raisedFare": float(booking.raised_fare) if booking.raised_fare is not None else None,
        "currency": booking.currency,
        "distance": float(booking.distance_km),
        "distanceInMeters": int(round(booking.distance_km * 1000)),
        "driverDistance": driver_distance_km,
        "user": requester_payload(booking.requester),
        "serviceType": booking.service_type,
        "serviceCategory": booking.service_category or "",
        "vehicleType": booking.vehicle_type or "",
        "routeType": booking.route_type,
        "driverPreference": booking.driver_preference,
        "pinkCaptainOptions": {k: bool(v) for k, v in (booking.pink_captain_options or {}).items()},
        "helperRequested": booking.helper_requested,
        "matchingWindow": booking.matching_window,
        "createdAt": booking.requested_at,
    }


def fare_increased_payload(booking: Booking, previous_fare, driver_distance_km=None) -> dict:
    payload = booking_request_payload(booking, driver_distance_km)
    payload["previousFare"] = float(previous_fare)
    payload["newFare"] = float(booking.current_fare)
    return payload
