"""
Structured pricing rules built once from a configuration document.

Every lookup the engine performs (rate card, helper charge, convenience fee)
is resolved here into tables keyed by taxonomy values, so fare computation
never walks the raw document.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Tuple

from common.taxonomy import SERVICE_CATEGORIES, VEHICLE_TYPES, ServiceType, category_for_vehicle
from pricing.defaults import DEFAULT_PRICING_DOCUMENT, merge_documents
from pricing.exceptions import UnknownServiceError

ZERO = Decimal("0")


def to_decimal(value, default=ZERO) -> Decimal:
    if value is None:
        return default
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class CancellationMilestone(str, Enum):
    BEFORE_ARRIVAL = "beforeArrival"
    AFTER_25_PERCENT = "after25PercentDistance"
    AFTER_50_PERCENT = "after50PercentDistance"
    AFTER_ARRIVAL = "afterArrival"

    @classmethod
    def from_progress(cls, progress=0, driver_arrived=False):
        """Map trip progress (0..1 of the driver's approach) to the charge tier."""
        if driver_arrived:
            return cls.AFTER_ARRIVAL
        progress = float(progress or 0)
        if progress >= 0.5:
            return cls.AFTER_50_PERCENT
        if progress >= 0.25:
            return cls.AFTER_25_PERCENT
        return cls.BEFORE_ARRIVAL


@dataclass(frozen=True)
class RateCard:
    base_fare: Decimal
    coverage_km: Decimal
    per_km_rate: Decimal

    def overlay(self, layer) -> "RateCard":
        layer = layer or {}
        return RateCard(
            base_fare=to_decimal(layer.get("baseFare"), self.base_fare),
            coverage_km=to_decimal(layer.get("coverageKm"), self.coverage_km),
            per_km_rate=to_decimal(layer.get("perKmRate"), self.per_km_rate),
        )


@dataclass(frozen=True)
class CityWiseAdjustment:
    enabled: bool
    above_km: Decimal
    adjusted_rate: Decimal


@dataclass(frozen=True)
class NightPolicy:
    enabled: bool
    start_hour: int
    end_hour: int
    fixed_amount: Decimal
    multiplier: Decimal

    def covers_hour(self, hour: int) -> bool:
        if not self.enabled:
            return False
        if self.start_hour == self.end_hour:
            return False
        if self.start_hour < self.end_hour:
            return self.start_hour <= hour < self.end_hour
        # window wraps midnight, e.g. 22 -> 6
        return hour >= self.start_hour or hour < self.end_hour


@dataclass(frozen=True)
class SurgeTier:
    demand_ratio: Decimal
    multiplier: Decimal


@dataclass(frozen=True)
class WaitingPolicy:
    free_minutes: Decimal
    per_minute_rate: Decimal
    maximum_charge: Decimal


@dataclass(frozen=True)
class PlatformFeePolicy:
    percentage: Decimal
    driver_share: Decimal
    customer_share: Decimal


@dataclass(frozen=True)
class RecoveryRoundTripPolicy:
    free_stay_enabled: bool
    minutes_per_km: Decimal
    maximum_free_minutes: Decimal
    overtime_per_minute: Decimal
    overtime_cap: Decimal
    alert_enabled: bool
    alert_distance_km: Decimal
    alert_duration_minutes: Decimal


@dataclass(frozen=True)
class BasicServiceRate:
    flat_fee: Decimal
    base_limit: int


@dataclass(frozen=True)
class MovingTables:
    basic_services: Dict[str, BasicServiceRate]
    per_item: Dict[str, Dict[str, Decimal]]
    stairs_per_floor: Dict[str, Decimal]
    lift_per_item: Dict[str, Decimal]
    lift_base_floors: int


@dataclass(frozen=True)
class FareAdjustmentPolicy:
    allowed_adjustment_percentage: Decimal
    driver_offer_band_percentage: Decimal
    enable_user_adjustment: bool
    enable_driver_adjustment: bool
    enable_pending_increase: bool
    max_raise_percentage: Decimal
    max_resend_attempts: int


@dataclass(frozen=True)
class AppointmentPolicy:
    fixed_fee: Decimal
    survey_timeout_hours: int


@dataclass(frozen=True)
class ServiceRules:
    service_type: ServiceType
    minimum_fare: Decimal
    rate_cards: Dict[Tuple[Optional[str], Optional[str]], RateCard]
    helper_charges: Dict[Optional[str], Decimal]
    convenience_fees: Dict[Tuple[Optional[str], Optional[str]], Decimal] = field(default_factory=dict)

    def _keys(self, category, vehicle_type):
        category = category or category_for_vehicle(self.service_type, vehicle_type)
        return [(category, vehicle_type), (None, vehicle_type), (category, None), (None, None)]

    def rate_card(self, category=None, vehicle_type=None) -> RateCard:
        """Most specific card wins: sub-service, then category, then service type."""
        for key in self._keys(category, vehicle_type):
            if key in self.rate_cards:
                return self.rate_cards[key]
        return self.rate_cards[(None, None)]

    def helper_charge(self, category=None, vehicle_type=None) -> Decimal:
        category = category or category_for_vehicle(self.service_type, vehicle_type)
        return self.helper_charges.get(category, self.helper_charges.get(None, ZERO))

    def convenience_fee(self, category=None, vehicle_type=None) -> Decimal:
        for key in self._keys(category, vehicle_type):
            if key in self.convenience_fees:
                return self.convenience_fees[key]
        return ZERO


@dataclass(frozen=True)
class PricingRules:
    currency: str
    services: Dict[ServiceType, ServiceRules]
    city_wise: CityWiseAdjustment
    platform_fee: PlatformFeePolicy
    cancellation_charges: Dict[CancellationMilestone, Decimal]
    waiting: WaitingPolicy
    night: NightPolicy
    surge_enabled: bool
    surge_tiers: Tuple[SurgeTier, ...]
    vat_enabled: bool
    vat_percentage: Decimal
    round_trip_multiplier: Decimal
    recovery_round_trip: RecoveryRoundTripPolicy
    moving: MovingTables
    fare_adjustment: FareAdjustmentPolicy
    appointments: AppointmentPolicy

    def service(self, service_type) -> ServiceRules:
        try:
            return self.services[ServiceType(service_type)]
        except (ValueError, KeyError):
            raise UnknownServiceError(f"No pricing for service type '{service_type}'")

    def cancellation_charge(self, milestone: CancellationMilestone) -> Decimal:
        return self.cancellation_charges.get(CancellationMilestone(milestone), ZERO)

    @classmethod
    def from_document(cls, document) -> "PricingRules":
        doc = merge_documents(DEFAULT_PRICING_DOCUMENT, document)
        return _build_rules(doc)


# ---------------------- Builders ----------------------

def _build_helper_table(raw) -> Dict[Optional[str], Decimal]:
    if isinstance(raw, dict):
        table = {None: to_decimal(raw.get("default"))}
        for category, amount in (raw.get("categories") or {}).items():
            table[category] = to_decimal(amount)
        return table
    return {None: to_decimal(raw)}


def _build_service(service_type: ServiceType, service_doc, global_card: RateCard, global_minimum) -> ServiceRules:
    service_card = global_card.overlay(service_doc)
    rate_cards = {(None, None): service_card}
    convenience = {}
    categories_doc = service_doc.get("categories") or {}

    for category, vehicles in SERVICE_CATEGORIES.get(service_type, {}).items():
        category_doc = categories_doc.get(category) or {}
        category_card = service_card.overlay(category_doc)
        rate_cards[(category, None)] = category_card
        if "convenienceFee" in category_doc:
            convenience[(category, None)] = to_decimal(category_doc["convenienceFee"])

        vehicle_docs = category_doc.get("vehicleTypes") or {}
        for vehicle_type in vehicles:
            vehicle_doc = vehicle_docs.get(vehicle_type) or (service_doc.get("vehicleTypes") or {}).get(vehicle_type)
            rate_cards[(category, vehicle_type)] = category_card.overlay(vehicle_doc)
            if vehicle_doc and "convenienceFee" in vehicle_doc:
                convenience[(category, vehicle_type)] = to_decimal(vehicle_doc["convenienceFee"])

    # services without categories carry vehicle overrides at service level
    for vehicle_type in VEHICLE_TYPES.get(service_type, ()):
        vehicle_doc = (service_doc.get("vehicleTypes") or {}).get(vehicle_type)
        if vehicle_doc and (None, vehicle_type) not in rate_cards:
            rate_cards[(None, vehicle_type)] = service_card.overlay(vehicle_doc)

    return ServiceRules(
        service_type=service_type,
        minimum_fare=to_decimal(service_doc.get("minimumFare"), global_minimum),
        rate_cards=rate_cards,
        helper_charges=_build_helper_table(service_doc.get("helperCharge", 0)),
        convenience_fees=convenience,
    )


def _build_moving_tables(doc) -> MovingTables:
    basic = {
        name: BasicServiceRate(
            flat_fee=to_decimal(entry.get("flatFee")),
            base_limit=int(entry.get("baseLimit", 0)),
        )
        for name, entry in (doc.get("basicServices") or {}).items()
    }
    per_item = {
        name: {item: to_decimal(amount) for item, amount in table.items()}
        for name, table in (doc.get("perItem") or {}).items()
    }
    return MovingTables(
        basic_services=basic,
        per_item=per_item,
        stairs_per_floor={k: to_decimal(v) for k, v in (doc.get("stairsPerFloor") or {}).items()},
        lift_per_item={k: to_decimal(v) for k, v in (doc.get("liftPerItem") or {}).items()},
        lift_base_floors=int(doc.get("liftBaseFloors", 1)),
    )


def _build_rules(doc) -> PricingRules:
    base = doc["baseFare"]
    per_km = doc["perKmRate"]
    city = per_km.get("cityWiseAdjustment") or {}
    global_card = RateCard(
        base_fare=to_decimal(base.get("amount")),
        coverage_km=to_decimal(base.get("coverageKm")),
        per_km_rate=to_decimal(per_km.get("afterBaseCoverage")),
    )
    global_minimum = to_decimal(doc.get("minimumFare"))

    services_doc = doc.get("serviceTypes") or {}
    services = {
        service_type: _build_service(service_type, services_doc.get(service_type.value) or {}, global_card, global_minimum)
        for service_type in ServiceType
    }

    recovery = services_doc.get(ServiceType.CAR_RECOVERY.value) or {}
    free_stay = recovery.get("freeStayMinutes") or {}
    refreshment = recovery.get("refreshment") or {}
    alert = recovery.get("refreshmentAlert") or {}

    surge = doc.get("surgePricing") or {}
    tiers = sorted(
        (SurgeTier(to_decimal(level["demandRatio"]), to_decimal(level["multiplier"]))
         for level in surge.get("levels") or []),
        key=lambda tier: tier.demand_ratio,
        reverse=True,
    )

    night = doc.get("nightCharges") or {}
    waiting = doc.get("waitingCharges") or {}
    platform = doc.get("platformFee") or {}
    vat = doc.get("vat") or {}
    adjustment = doc.get("fareAdjustment") or {}
    appointments = doc.get("appointmentServices") or {}

    return PricingRules(
        currency=doc.get("currency", "AED"),
        services=services,
        city_wise=CityWiseAdjustment(
            enabled=bool(city.get("enabled", False)),
            above_km=to_decimal(city.get("aboveKm")),
            adjusted_rate=to_decimal(city.get("adjustedRate")),
        ),
        platform_fee=PlatformFeePolicy(
            percentage=to_decimal(platform.get("percentage")),
            driver_share=to_decimal(platform.get("driverShare")),
            customer_share=to_decimal(platform.get("customerShare")),
        ),
        cancellation_charges={
            milestone: to_decimal((doc.get("cancellationCharges") or {}).get(milestone.value))
            for milestone in CancellationMilestone
        },
        waiting=WaitingPolicy(
            free_minutes=to_decimal(waiting.get("freeMinutes")),
            per_minute_rate=to_decimal(waiting.get("perMinuteRate")),
            maximum_charge=to_decimal(waiting.get("maximumCharge")),
        ),
        night=NightPolicy(
            enabled=bool(night.get("enabled", False)),
            start_hour=int(night.get("startHour", 22)),
            end_hour=int(night.get("endHour", 6)),
            fixed_amount=to_decimal(night.get("fixedAmount")),
            multiplier=to_decimal(night.get("multiplier"), Decimal("1")),
        ),
        surge_enabled=bool(surge.get("enabled", False)),
        surge_tiers=tuple(tiers),
        vat_enabled=bool(vat.get("enabled", False)),
        vat_percentage=to_decimal(vat.get("percentage")),
        round_trip_multiplier=to_decimal((doc.get("roundTrip") or {}).get("multiplier"), Decimal("1.8")),
        recovery_round_trip=RecoveryRoundTripPolicy(
            free_stay_enabled=bool(free_stay.get("enabled", False)),
            minutes_per_km=to_decimal(free_stay.get("ratePerKm")),
            maximum_free_minutes=to_decimal(free_stay.get("maximumMinutes")),
            overtime_per_minute=to_decimal(refreshment.get("perMinuteCharge")),
            overtime_cap=to_decimal(refreshment.get("maximumCharge")),
            alert_enabled=bool(alert.get("enabled", False)),
            alert_distance_km=to_decimal(alert.get("minimumDistanceKm")),
            alert_duration_minutes=to_decimal(alert.get("minimumDurationMinutes")),
        ),
        moving=_build_moving_tables(services_doc.get(ServiceType.SHIFTING_MOVERS.value) or {}),
        fare_adjustment=FareAdjustmentPolicy(
            allowed_adjustment_percentage=to_decimal(adjustment.get("allowedAdjustmentPercentage"), Decimal("3")),
            driver_offer_band_percentage=to_decimal(adjustment.get("driverOfferBandPercentage"), Decimal("3")),
            enable_user_adjustment=bool(adjustment.get("enableUserFareAdjustment", True)),
            enable_driver_adjustment=bool(adjustment.get("enableDriverFareAdjustment", True)),
            enable_pending_increase=bool(adjustment.get("enablePendingBookingFareIncrease", True)),
            max_raise_percentage=to_decimal(adjustment.get("maxRaisePercentage"), Decimal("50")),
            max_resend_attempts=int(adjustment.get("maxResendAttempts", 3)),
        ),
        appointments=AppointmentPolicy(
            fixed_fee=to_decimal(appointments.get("fixedAppointmentFee")),
            survey_timeout_hours=int(appointments.get("surveyTimeoutHours", 24)),
        ),
    )


DEFAULT_RULES = PricingRules.from_document({})
