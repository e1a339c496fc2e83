"""
Driver directory query.

Finds the drivers a booking may be offered to. Filtering order:
    1. role, KYC, active flag, online status
    2. Pink Captain: female drivers whose opt-ins cover every requested sub-option
    3. pinned preference short-circuits everything above to the one pinned driver
    4. an approved, active vehicle for the service (and vehicle type)
    5. drivers who already rejected the booking
    6. distance from pickup within the effective radius
    7. a live WebSocket session in the session registry
    8. nearest first, capped
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from django.conf import settings
from django.contrib.auth import get_user_model

from common.taxonomy import (
    ANY_VEHICLE,
    DriverPreference,
    PINK_CAPTAIN_DRIVER_FLAGS,
    requested_pink_options,
)
from common.utils.geo import calculate_distance
from drivers.models import DriverProfile, Vehicle
from realtime.sessions import SessionRegistry, get_session_registry

User = get_user_model()
logger = logging.getLogger(__name__)

MAX_NEARBY_RADIUS_KM = 50.0


@dataclass
class CandidateQuery:
    latitude: float
    longitude: float
    service_type: str
    vehicle_type: Optional[str] = None
    preference: str = DriverPreference.NEARBY
    pink_captain_options: Dict[str, bool] = field(default_factory=dict)
    pinned_driver_id: Optional[int] = None
    exclude_driver_ids: Iterable[int] = ()
    radius_km: Optional[float] = None
    limit: Optional[int] = None


@dataclass
class DriverCandidate:
    """Ephemeral query result; never persisted."""
    driver_id: int
    name: str
    rating: float
    latitude: Optional[float]
    longitude: Optional[float]
    vehicle: Dict[str, Any]
    connected: bool
    distance_km: Optional[float]

    @property
    def rank_key(self):
        distance = self.distance_km if self.distance_km is not None else float("inf")
        return (distance, self.driver_id)


def effective_radius_km(query: CandidateQuery) -> float:
    if query.preference == DriverPreference.PINK_CAPTAIN:
        return float(settings.MATCHING_PINK_CAPTAIN_RADIUS_KM)
    if query.radius_km:
        return max(1.0, min(float(query.radius_km), MAX_NEARBY_RADIUS_KM))
    return float(settings.MATCHING_DEFAULT_RADIUS_KM)


def eligible_drivers():
    """Step 1: verified, active, online drivers with a known location."""
    return (
        User.objects
        .filter(
            role='driver',
            is_active=True,
            kyc_level__gte=User.KYC_FULLY_APPROVED_LEVEL,
            kyc_status='approved',
            driver_profile__status='online',
            driver_profile__current_latitude__isnull=False,
            driver_profile__current_longitude__isnull=False,
        )
        .select_related('driver_profile')
    )


def _matching_vehicles(driver_ids, service_type, vehicle_type) -> Dict[int, Vehicle]:
    vehicles = Vehicle.objects.filter(
        driver_id__in=driver_ids,
        service_type=service_type,
        status='approved',
        is_active=True,
    )
    if vehicle_type and vehicle_type != ANY_VEHICLE:
        vehicles = vehicles.filter(vehicle_type=vehicle_type)

    by_driver: Dict[int, Vehicle] = {}
    for vehicle in vehicles.order_by('id'):
        by_driver.setdefault(vehicle.driver_id, vehicle)
    return by_driver


def _location_of(user):
    try:
        profile = user.driver_profile
    except DriverProfile.DoesNotExist:
        return None, None
    if not profile.has_location:
        return None, None
    return float(profile.current_latitude), float(profile.current_longitude)


def _build_candidate(user, vehicle, distance_km, connected) -> DriverCandidate:
    lat, lon = _location_of(user)
    return DriverCandidate(
        driver_id=user.id,
        name=user.display_name,
        rating=float(user.rating),
        latitude=lat,
        longitude=lon,
        vehicle=vehicle.summary() if vehicle else {},
        connected=connected,
        distance_km=round(distance_km, 2) if distance_km is not None else None,
    )


def _resolve_pinned(query: CandidateQuery, registry: SessionRegistry, excluded) -> List[DriverCandidate]:
    """
    The pinned driver skips eligibility, capability, radius and liveness checks.
    Only an inactive account or a prior rejection of this booking removes them.
    """
    if not query.pinned_driver_id or int(query.pinned_driver_id) in excluded:
        return []

    user = (
        User.objects
        .filter(id=query.pinned_driver_id, role='driver', is_active=True)
        .select_related('driver_profile')
        .first()
    )
    if user is None:
        return []

    vehicle = user.vehicles.filter(is_active=True, service_type=query.service_type).first()
    lat, lon = _location_of(user)
    distance = None
    if lat is not None:
        distance = calculate_distance(query.latitude, query.longitude, lat, lon)

    return [_build_candidate(user, vehicle, distance, registry.is_connected(user.id))]


def find_candidates(query: CandidateQuery, registry: Optional[SessionRegistry] = None) -> List[DriverCandidate]:
    """
    Return the ranked candidate list for a pickup, or an empty list.

    Args:
        query: pickup point, service parameters and preference mode
        registry: live session registry; defaults to the process-wide one

    Returns:
        Candidates sorted nearest first, capped at query.limit
        (settings.MATCHING_MAX_CANDIDATES by default)
    """
    registry = registry or get_session_registry()
    excluded = {int(driver_id) for driver_id in (query.exclude_driver_ids or ())}
    limit = query.limit or settings.MATCHING_MAX_CANDIDATES

    if query.preference == DriverPreference.PINNED:
        return _resolve_pinned(query, registry, excluded)

    drivers = eligible_drivers()

    if query.preference == DriverPreference.PINK_CAPTAIN:
        drivers = drivers.filter(gender='female', driver_profile__pink_captain_mode=True)
        for option in requested_pink_options(query.pink_captain_options):
            drivers = drivers.filter(**{f"driver_profile__{PINK_CAPTAIN_DRIVER_FLAGS[option]}": True})

    vehicles = _matching_vehicles(
        drivers.values_list('id', flat=True), query.service_type, query.vehicle_type
    )
    if not vehicles:
        return []

    radius = effective_radius_km(query)
    in_range = []
    for user in drivers.filter(id__in=list(vehicles)).exclude(id__in=excluded):
        lat, lon = _location_of(user)
        distance = calculate_distance(query.latitude, query.longitude, lat, lon)
        if distance <= radius:
            in_range.append((user, distance))

    if not in_range:
        return []

    live = registry.connected_drivers([user.id for user, _ in in_range])
    ghosts = len(in_range) - len(live)
    if ghosts:
        logger.debug("Dropped %s online driver(s) without a live session", ghosts)

    candidates = [
        _build_candidate(user, vehicles[user.id], distance, True)
        for user, distance in in_range
        if user.id in live
    ]
    candidates.sort(key=lambda candidate: candidate.rank_key)
    return candidates[:limit]


def count_available_drivers(service_type: str) -> int:
    """Online, verified drivers holding an active vehicle for the service type."""
    return (
        eligible_drivers()
        .filter(
            vehicles__service_type=service_type,
            vehicles__status='approved',
            vehicles__is_active=True,
        )
        .distinct()
        .count()
    )
