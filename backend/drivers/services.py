import logging

from django.utils import timezone

from drivers.models import DriverProfile

logger = logging.getLogger(__name__)

PREFERENCE_FIELDS = (
    "pink_captain_mode",
    "accept_female_only",
    "accept_family_rides",
    "accept_safe_rides",
    "accept_family_with_guardian_male",
    "accept_male_without_female",
    "accept_no_male_companion",
)


# DRIVER STATUS UPDATE
def update_driver_status(profile: DriverProfile, new_status: str):
    """
    Update driver availability status (online/busy/offline).
    Going online does not make a driver matchable on its own: a live
    WebSocket session is also required.
    """
    profile.status = new_status
    profile.save(update_fields=["status"])
    logger.info("Driver %s status -> %s", profile.user_id, new_status)
    return profile


def update_driver_location(profile: DriverProfile, lat, lon):
    """
    Update driver location. Used by:
    - HTTP fallback
    - WebSocket driver location frames
    """
    profile.current_latitude = lat
    profile.current_longitude = lon
    profile.last_location_update = timezone.now()
    profile.save(update_fields=["current_latitude", "current_longitude", "last_location_update"])
    return profile


def update_ride_preferences(profile: DriverProfile, **flags):
    """Set Pink Captain opt-in flags. Unknown keys are ignored."""
    changed = []
    for name, value in flags.items():
        if name in PREFERENCE_FIELDS:
            setattr(profile, name, bool(value))
            changed.append(name)
    if changed:
        profile.save(update_fields=changed)
    return profile
