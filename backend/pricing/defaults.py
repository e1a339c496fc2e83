"""
Default pricing document installed by `manage.py seed_pricing`.

Service, category and vehicle keys are the taxonomy wire values so rule tables
can be keyed by enum without any name transformation. Stored documents are
merged over this one, so an admin document only needs the keys it changes.
"""

import copy

_ITEMS = ("bed", "fridge", "sofa", "table", "chair", "wardrobe",
          "washingMachine", "tv", "microwave", "other")


def _per_item(*amounts):
    return dict(zip(_ITEMS, amounts))


DEFAULT_PRICING_DOCUMENT = {
    "currency": "AED",
    "baseFare": {"amount": 50, "coverageKm": 6},
    "perKmRate": {
        "afterBaseCoverage": 7.5,
        "cityWiseAdjustment": {"enabled": True, "aboveKm": 10, "adjustedRate": 5},
    },
    "minimumFare": 50,
    "platformFee": {"percentage": 15, "driverShare": 7.5, "customerShare": 7.5},
    "cancellationCharges": {
        "beforeArrival": 2,
        "after25PercentDistance": 5,
        "after50PercentDistance": 5,
        "afterArrival": 10,
    },
    "waitingCharges": {"freeMinutes": 5, "perMinuteRate": 2, "maximumCharge": 20},
    "nightCharges": {
        "enabled": True,
        "startHour": 22,
        "endHour": 6,
        "fixedAmount": 10,
        "multiplier": 1.25,
    },
    "surgePricing": {
        "enabled": True,
        "levels": [
            {"demandRatio": 2, "multiplier": 1.5},
            {"demandRatio": 3, "multiplier": 2.0},
        ],
    },
    "vat": {"enabled": True, "percentage": 5},
    "roundTrip": {"multiplier": 1.8},
    "fareAdjustment": {
        "allowedAdjustmentPercentage": 3,
        "driverOfferBandPercentage": 3,
        "enableUserFareAdjustment": True,
        "enableDriverFareAdjustment": True,
        "enablePendingBookingFareIncrease": True,
        "maxRaisePercentage": 50,
        "maxResendAttempts": 3,
    },
    "serviceTypes": {
        "car cab": {
            "minimumFare": 40,
            "helperCharge": 0,
            "vehicleTypes": {
                "economy": {"baseFare": 50, "perKmRate": 7.5},
                "premium": {"baseFare": 60, "perKmRate": 9},
                "luxury": {"baseFare": 80, "perKmRate": 12},
                "xl": {"baseFare": 70, "perKmRate": 10},
                "family": {"baseFare": 65, "perKmRate": 8.5},
            },
        },
        "bike": {
            "baseFare": 25,
            "perKmRate": 4,
            "minimumFare": 15,
            "helperCharge": 0,
            "vehicleTypes": {
                "economy": {"baseFare": 20, "perKmRate": 3},
                "premium": {"baseFare": 25, "perKmRate": 4},
                "vip": {"baseFare": 30, "perKmRate": 5},
            },
        },
        "car recovery": {
            "baseFare": 50,
            "coverageKm": 6,
            "perKmRate": 7.5,
            "minimumFare": 50,
            "helperCharge": {
                "default": 25,
                "categories": {
                    "towing services": 30,
                    "winching services": 35,
                    "roadside assistance": 20,
                    "specialized/heavy recovery": 50,
                },
            },
            "categories": {
                "towing services": {
                    "convenienceFee": 50,
                    "vehicleTypes": {
                        "flatbed towing": {"convenienceFee": 100},
                        "wheel lift towing": {"convenienceFee": 80},
                    },
                },
                "winching services": {
                    "convenienceFee": 70,
                    "vehicleTypes": {
                        "off-road winching": {"convenienceFee": 90},
                    },
                },
                "roadside assistance": {
                    "convenienceFee": 60,
                    "vehicleTypes": {
                        "battery jump start": {"convenienceFee": 60},
                        "fuel delivery": {"convenienceFee": 80},
                    },
                },
                "specialized/heavy recovery": {
                    "convenienceFee": 150,
                    "perKmRate": 10,
                    "vehicleTypes": {
                        "heavy-duty vehicle recovery": {"baseFare": 80, "convenienceFee": 150},
                    },
                },
            },
            "freeStayMinutes": {"enabled": True, "ratePerKm": 0.5, "maximumMinutes": 60},
            "refreshment": {"perMinuteCharge": 1, "maximumCharge": 30},
            "refreshmentAlert": {"enabled": True, "minimumDistanceKm": 20, "minimumDurationMinutes": 30},
        },
        "shifting & movers": {
            "baseFare": 100,
            "coverageKm": 5,
            "perKmRate": 15,
            "minimumFare": 100,
            "helperCharge": 20,
            "categories": {
                "small mover": {},
                "medium mover": {"baseFare": 150, "perKmRate": 18},
                "heavy mover": {"baseFare": 250, "perKmRate": 25},
            },
            "basicServices": {
                "loadingUnloading": {"flatFee": 20, "baseLimit": 3},
                "packing": {"flatFee": 20, "baseLimit": 3},
                "fixing": {"flatFee": 20, "baseLimit": 3},
            },
            "stairsPerFloor": _per_item(5, 15, 8, 4, 2, 10, 12, 6, 3, 5),
            "liftPerItem": _per_item(5, 7, 6, 3, 2, 8, 9, 4, 2, 4),
            "liftBaseFloors": 1,
            "perItem": {
                "loadingUnloading": _per_item(20, 30, 15, 10, 5, 18, 25, 12, 8, 12),
                "packing": _per_item(15, 10, 12, 8, 5, 20, 15, 10, 6, 8),
                "fixing": _per_item(20, 35, 15, 10, 8, 25, 30, 15, 12, 15),
            },
        },
    },
    "appointmentServices": {"fixedAppointmentFee": 5, "surveyTimeoutHours": 24},
}


def merge_documents(base, override):
    """Deep-merge override onto a copy of base. Lists are replaced, not merged."""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_documents(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def default_document():
    return copy.deepcopy(DEFAULT_PRICING_DOCUMENT)
