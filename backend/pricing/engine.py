"""
Fare computation.

compute_fare() is a pure function over a PricingRules snapshot. Steps run in a
fixed order and every intermediate value stays unrounded; only the returned
line items are rounded to 2 decimal places.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional

from common.taxonomy import RouteType, ServiceType, category_for_vehicle
from pricing.rules import (
    CancellationMilestone,
    PricingRules,
    RecoveryRoundTripPolicy,
    ZERO,
    to_decimal,
)

ONE = Decimal("1")
HUNDRED = Decimal("100")
CENT = Decimal("0.01")


def money(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class CancellationRequest:
    cancelled_by: str  # "user" | "driver"
    milestone: CancellationMilestone = CancellationMilestone.BEFORE_ARRIVAL


@dataclass
class MovingDetails:
    """Shifting & movers extras: item counts plus selected services and floor access."""
    items: Dict[str, int] = field(default_factory=dict)
    loading_unloading: bool = False
    packing: bool = False
    fixing: bool = False
    pickup_floor: int = 0
    pickup_access: str = "ground"  # ground | stairs | lift
    dropoff_floor: int = 0
    dropoff_access: str = "ground"

    @classmethod
    def from_payload(cls, payload) -> Optional["MovingDetails"]:
        if not payload:
            return None
        services = payload.get("selectedServices") or {}
        pickup = payload.get("pickupFloor") or {}
        dropoff = payload.get("dropoffFloor") or {}
        return cls(
            items={k: int(v) for k, v in (payload.get("items") or {}).items() if int(v) > 0},
            loading_unloading=bool(services.get("loadingUnloading")),
            packing=bool(services.get("packing")),
            fixing=bool(services.get("fixing")),
            pickup_floor=int(pickup.get("floor", 0)),
            pickup_access=pickup.get("accessType", "ground"),
            dropoff_floor=int(dropoff.get("floor", 0)),
            dropoff_access=dropoff.get("accessType", "ground"),
        )

    @property
    def total_items(self) -> int:
        return sum(self.items.values())


@dataclass
class FareModifiers:
    is_night: bool = False
    demand_ratio: float = 1.0
    waiting_minutes: float = 0
    helper_requested: bool = False
    estimated_duration_minutes: Optional[float] = None
    cancellation: Optional[CancellationRequest] = None
    moving: Optional[MovingDetails] = None


@dataclass
class FareBreakdown:
    currency: str
    service_type: str
    vehicle_type: Optional[str]
    service_category: Optional[str]
    route_type: str
    distance_km: Decimal
    base_fare: Decimal
    distance_fare: Decimal
    subtotal: Decimal
    round_trip_applied: bool
    minimum_fare_applied: bool
    night_charge: Decimal
    surge_multiplier: Decimal
    surge_charge: Decimal
    waiting_charge: Decimal
    overtime_charge: Decimal
    free_stay_minutes: Decimal
    helper_charge: Decimal
    moving_charge: Decimal
    convenience_fee: Decimal
    cancellation_charge: Decimal
    platform_fee: Decimal
    platform_fee_driver_share: Decimal
    platform_fee_customer_share: Decimal
    vat_amount: Decimal
    total_fare: Decimal
    moving_details: Dict[str, Decimal] = field(default_factory=dict)
    alerts: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        """JSON-ready camelCase representation (receipts, booking snapshots, events)."""
        return {
            "currency": self.currency,
            "serviceType": self.service_type,
            "vehicleType": self.vehicle_type,
            "serviceCategory": self.service_category,
            "routeType": self.route_type,
            "distanceKm": float(self.distance_km),
            "baseFare": float(self.base_fare),
            "distanceFare": float(self.distance_fare),
            "subtotal": float(self.subtotal),
            "roundTripApplied": self.round_trip_applied,
            "minimumFareApplied": self.minimum_fare_applied,
            "nightCharge": float(self.night_charge),
            "surgeMultiplier": float(self.surge_multiplier),
            "surgeCharge": float(self.surge_charge),
            "waitingCharge": float(self.waiting_charge),
            "overtimeCharge": float(self.overtime_charge),
            "freeStayMinutes": float(self.free_stay_minutes),
            "helperCharge": float(self.helper_charge),
            "movingCharge": float(self.moving_charge),
            "movingDetails": {k: float(v) for k, v in self.moving_details.items()},
            "convenienceFee": float(self.convenience_fee),
            "cancellationCharge": float(self.cancellation_charge),
            "platformFee": float(self.platform_fee),
            "platformFeeDriverShare": float(self.platform_fee_driver_share),
            "platformFeeCustomerShare": float(self.platform_fee_customer_share),
            "vatAmount": float(self.vat_amount),
            "totalFare": float(self.total_fare),
            "alerts": list(self.alerts),
        }


# ---------------------- Step helpers ----------------------

def _distance_fare(distance: Decimal, card, city_wise) -> Decimal:
    if distance <= card.coverage_km:
        return ZERO
    chargeable_km = distance - card.coverage_km
    if city_wise.enabled and distance > city_wise.above_km:
        adjusted_km = distance - max(city_wise.above_km, card.coverage_km)
        standard_km = chargeable_km - adjusted_km
        return standard_km * card.per_km_rate + adjusted_km * city_wise.adjusted_rate
    return chargeable_km * card.per_km_rate


def _surge(rules: PricingRules, demand_ratio: Decimal, subtotal: Decimal):
    if not rules.surge_enabled or demand_ratio <= ONE:
        return ONE, ZERO
    for tier in rules.surge_tiers:
        if demand_ratio >= tier.demand_ratio:
            return tier.multiplier, subtotal * (tier.multiplier - ONE)
    return ONE, ZERO


def _waiting_charge(rules: PricingRules, minutes: Decimal) -> Decimal:
    policy = rules.waiting
    if minutes <= policy.free_minutes:
        return ZERO
    return min((minutes - policy.free_minutes) * policy.per_minute_rate, policy.maximum_charge)


def _recovery_overtime(policy: RecoveryRoundTripPolicy, distance: Decimal, minutes: Decimal):
    """Free stay scales with distance; minutes beyond it are billed as overtime."""
    if not policy.free_stay_enabled:
        return ZERO, ZERO
    free_minutes = min(distance * policy.minutes_per_km, policy.maximum_free_minutes)
    if minutes <= free_minutes:
        return free_minutes, ZERO
    return free_minutes, min((minutes - free_minutes) * policy.overtime_per_minute, policy.overtime_cap)


def _items_fare(rates: Dict[str, Decimal], items: Dict[str, int], multiplier=ONE) -> Decimal:
    fallback = rates.get("other", ZERO)
    return sum(
        (rates.get(item, fallback) * qty * multiplier for item, qty in items.items()),
        ZERO,
    )


def _basic_service_fare(rules: PricingRules, name: str, moving: MovingDetails) -> Decimal:
    rate = rules.moving.basic_services.get(name)
    per_item = rules.moving.per_item.get(name, {})
    if rate is None:
        return _items_fare(per_item, moving.items)
    extra_items = moving.total_items - rate.base_limit
    if extra_items <= 0:
        return rate.flat_fee
    average = (sum(per_item.values(), ZERO) / len(per_item)) if per_item else ZERO
    return rate.flat_fee + extra_items * average


def _floor_fare(rules: PricingRules, floor: int, access: str, items: Dict[str, int]) -> Decimal:
    if floor <= 0:
        return ZERO
    if access == "stairs":
        return _items_fare(rules.moving.stairs_per_floor, items, Decimal(floor))
    if access == "lift" and floor > rules.moving.lift_base_floors:
        return _items_fare(rules.moving.lift_per_item, items)
    return ZERO


def _moving_charge(rules: PricingRules, moving: Optional[MovingDetails]):
    if moving is None:
        return ZERO, {}
    details = {}
    if moving.loading_unloading:
        details["loadingUnloading"] = _basic_service_fare(rules, "loadingUnloading", moving)
    if moving.packing:
        details["packing"] = _basic_service_fare(rules, "packing", moving)
    if moving.fixing:
        details["fixing"] = _basic_service_fare(rules, "fixing", moving)
    pickup = _floor_fare(rules, moving.pickup_floor, moving.pickup_access, moving.items)
    dropoff = _floor_fare(rules, moving.dropoff_floor, moving.dropoff_access, moving.items)
    if pickup:
        details["pickupFloor"] = pickup
    if dropoff:
        details["dropoffFloor"] = dropoff
    return sum(details.values(), ZERO), details


# ---------------------- Entry point ----------------------

def compute_fare(
    service_type: str,
    vehicle_type: Optional[str],
    service_category: Optional[str],
    distance_km,
    route_type: str = RouteType.ONE_WAY,
    modifiers: Optional[FareModifiers] = None,
    rules: Optional[PricingRules] = None,
) -> FareBreakdown:
    """
    Compute an itemized fare.

    Args:
        service_type: taxonomy service type
        vehicle_type: vehicle/sub-service type, may be None
        service_category: category, derived from vehicle_type when omitted
        distance_km: straight-line trip distance
        route_type: one_way or two_way
        modifiers: situational inputs (night, demand, waiting, helper, ...)
        rules: configuration snapshot; the active configuration when omitted

    Raises:
        ConfigurationMissing: no rules passed and no active configuration
        UnknownServiceError: service type not priced
    """
    if rules is None:
        from pricing.services import get_active_rules
        rules = get_active_rules()
    modifiers = modifiers or FareModifiers()

    service = rules.service(service_type)
    is_recovery = service.service_type == ServiceType.CAR_RECOVERY
    is_round_trip = route_type == RouteType.TWO_WAY
    category = service_category or category_for_vehicle(service.service_type, vehicle_type)
    distance = to_decimal(distance_km)

    # 1-3. rate card, distance banding, subtotal
    card = service.rate_card(category, vehicle_type)
    distance_fare = _distance_fare(distance, card, rules.city_wise)
    subtotal = card.base_fare + distance_fare

    round_trip_applied = is_round_trip and not is_recovery
    if round_trip_applied:
        subtotal = subtotal * rules.round_trip_multiplier

    # 4. minimum fare floor
    minimum_applied = subtotal < service.minimum_fare
    if minimum_applied:
        subtotal = service.minimum_fare

    # 5. night surcharge, larger of fixed vs percentage
    night = ZERO
    if modifiers.is_night and rules.night.enabled:
        night = max(rules.night.fixed_amount, subtotal * (rules.night.multiplier - ONE))

    # 6. surge
    surge_multiplier, surge = _surge(rules, to_decimal(modifiers.demand_ratio, ONE), subtotal)

    # 7. waiting, or free stay + overtime for recovery round trips
    waiting_minutes = to_decimal(modifiers.waiting_minutes)
    waiting = overtime = free_stay = ZERO
    alerts = []
    if is_recovery and is_round_trip:
        policy = rules.recovery_round_trip
        free_stay, overtime = _recovery_overtime(policy, distance, waiting_minutes)
        duration = to_decimal(modifiers.estimated_duration_minutes)
        if policy.alert_enabled and (
            distance >= policy.alert_distance_km or duration >= policy.alert_duration_minutes
        ):
            alerts.append("refreshment_recommended")
    else:
        waiting = _waiting_charge(rules, waiting_minutes)

    # 8. helper
    helper = service.helper_charge(category, vehicle_type) if modifiers.helper_requested else ZERO

    moving = ZERO
    moving_details = {}
    if service.service_type == ServiceType.SHIFTING_MOVERS:
        moving, moving_details = _moving_charge(rules, modifiers.moving)

    # 9. convenience fee
    convenience = service.convenience_fee(category, vehicle_type) if is_recovery else ZERO

    # 10. cancellation, never charged for driver cancellations
    cancellation = ZERO
    if modifiers.cancellation and modifiers.cancellation.cancelled_by != "driver":
        cancellation = rules.cancellation_charge(modifiers.cancellation.milestone)

    # 11. platform fee, excluded from the customer total
    chargeable = subtotal + night + surge + waiting + overtime + helper + moving
    platform = rules.platform_fee
    platform_fee = chargeable * platform.percentage / HUNDRED
    if platform.percentage:
        driver_share = platform_fee * platform.driver_share / platform.percentage
        customer_share = platform_fee * platform.customer_share / platform.percentage
    else:
        driver_share = customer_share = ZERO

    # 12. VAT base includes the convenience fee but not the platform fee
    vat = ZERO
    if rules.vat_enabled:
        vat = (chargeable + convenience) * rules.vat_percentage / HUNDRED

    # 13. total
    total = chargeable + convenience + vat + cancellation

    # 14. round at the end
    return FareBreakdown(
        currency=rules.currency,
        service_type=str(service.service_type.value),
        vehicle_type=vehicle_type,
        service_category=category,
        route_type=str(route_type),
        distance_km=money(distance),
        base_fare=money(card.base_fare),
        distance_fare=money(distance_fare),
        subtotal=money(subtotal),
        round_trip_applied=round_trip_applied,
        minimum_fare_applied=minimum_applied,
        night_charge=money(night),
        surge_multiplier=surge_multiplier,
        surge_charge=money(surge),
        waiting_charge=money(waiting),
        overtime_charge=money(overtime),
        free_stay_minutes=money(free_stay),
        helper_charge=money(helper),
        moving_charge=money(moving),
        moving_details={k: money(v) for k, v in moving_details.items()},
        convenience_fee=money(convenience),
        cancellation_charge=money(cancellation),
        platform_fee=money(platform_fee),
        platform_fee_driver_share=money(driver_share),
        platform_fee_customer_share=money(customer_share),
        vat_amount=money(vat),
        total_fare=money(total),
        alerts=alerts,
    )
