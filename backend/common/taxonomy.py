"""
Service taxonomy shared by pricing, driver matching and bookings.

Values are the exact strings the mobile clients send and receive.
"""

from django.db import models


class ServiceType(models.TextChoices):
    CAR_CAB = 'car cab', 'Car Cab'
    BIKE = 'bike', 'Bike'
    CAR_RECOVERY = 'car recovery', 'Car Recovery'
    SHIFTING_MOVERS = 'shifting & movers', 'Shifting & Movers'


class RouteType(models.TextChoices):
    ONE_WAY = 'one_way', 'One Way'
    TWO_WAY = 'two_way', 'Round Trip'


class DriverPreference(models.TextChoices):
    NEARBY = 'nearby', 'Nearby'
    PINNED = 'pinned', 'Pinned Driver'
    FAVORITE = 'favorite', 'Favorite'
    PINK_CAPTAIN = 'pink_captain', 'Pink Captain'


ANY_VEHICLE = 'any'

# service type -> allowed vehicle types
VEHICLE_TYPES = {
    ServiceType.CAR_CAB: (
        'economy', 'premium', 'xl', 'family', 'luxury',
    ),
    ServiceType.BIKE: (
        'economy', 'premium', 'vip',
    ),
    ServiceType.CAR_RECOVERY: (
        'flatbed towing', 'wheel lift towing',
        'on-road winching', 'off-road winching',
        'battery jump start', 'fuel delivery',
        'luxury & exotic car recovery', 'accident & collision recovery',
        'heavy-duty vehicle recovery', 'basement pull-out',
    ),
    ServiceType.SHIFTING_MOVERS: (
        'mini pickup', 'suzuki carry', 'small van',
        'medium truck', 'mazda', 'covered van',
        'large truck', '6-wheeler', 'container truck',
    ),
}

# service type -> category -> vehicle types in that category
SERVICE_CATEGORIES = {
    ServiceType.CAR_RECOVERY: {
        'towing services': ('flatbed towing', 'wheel lift towing'),
        'winching services': ('on-road winching', 'off-road winching'),
        'roadside assistance': ('battery jump start', 'fuel delivery'),
        'specialized/heavy recovery': (
            'luxury & exotic car recovery',
            'accident & collision recovery',
            'heavy-duty vehicle recovery',
            'basement pull-out',
        ),
    },
    ServiceType.SHIFTING_MOVERS: {
        'small mover': ('mini pickup', 'suzuki carry', 'small van'),
        'medium mover': ('medium truck', 'mazda', 'covered van'),
        'heavy mover': ('large truck', '6-wheeler', 'container truck'),
    },
}


class PinkCaptainOption(models.TextChoices):
    FEMALE_PASSENGERS_ONLY = 'femalePassengersOnly', 'Female passengers only'
    FAMILY_RIDES = 'familyRides', 'Family rides'
    SAFE_ZONE_RIDES = 'safeZoneRides', 'Safe zone rides'
    FAMILY_WITH_GUARDIAN_MALE = 'familyWithGuardianMale', 'Family with guardian male'
    MALE_WITHOUT_FEMALE = 'maleWithoutFemale', 'Male without female'
    NO_MALE_COMPANION = 'noMaleCompanion', 'No male companion'


# requester sub-option -> DriverProfile opt-in flag
PINK_CAPTAIN_DRIVER_FLAGS = {
    PinkCaptainOption.FEMALE_PASSENGERS_ONLY: 'accept_female_only',
    PinkCaptainOption.FAMILY_RIDES: 'accept_family_rides',
    PinkCaptainOption.SAFE_ZONE_RIDES: 'accept_safe_rides',
    PinkCaptainOption.FAMILY_WITH_GUARDIAN_MALE: 'accept_family_with_guardian_male',
    PinkCaptainOption.MALE_WITHOUT_FEMALE: 'accept_male_without_female',
    PinkCaptainOption.NO_MALE_COMPANION: 'accept_no_male_companion',
}


def category_for_vehicle(service_type, vehicle_type):
    """Return the category a vehicle type belongs to, or None."""
    for category, vehicles in SERVICE_CATEGORIES.get(service_type, {}).items():
        if vehicle_type in vehicles:
            return category
    return None


def validate_service_combination(service_type, vehicle_type=None, service_category=None):
    """
    Check a service/vehicle/category triple against the allow-lists.

    Returns a list of problems; an empty list means the combination is valid.
    """
    problems = []
    if service_type not in ServiceType.values:
        return [f"Unknown service type '{service_type}'"]

    allowed = VEHICLE_TYPES[ServiceType(service_type)]
    if vehicle_type and vehicle_type != ANY_VEHICLE and vehicle_type not in allowed:
        problems.append(f"Vehicle type '{vehicle_type}' is not offered for {service_type}")

    if service_category:
        categories = SERVICE_CATEGORIES.get(ServiceType(service_type), {})
        if service_category not in categories:
            problems.append(f"Category '{service_category}' is not offered for {service_type}")
        elif vehicle_type and vehicle_type != ANY_VEHICLE and vehicle_type not in categories[service_category]:
            problems.append(f"Vehicle type '{vehicle_type}' does not belong to category '{service_category}'")

    return problems


def requested_pink_options(options) -> list:
    """Normalise a requester's pink captain option flags into the enabled option list."""
    options = options or {}
    return [opt for opt in PinkCaptainOption if options.get(opt.value)]
