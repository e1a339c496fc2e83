from decimal import Decimal, InvalidOperation

from pricing.engine import money
from .exceptions import BookingValidationError, FareOutOfBandError

HUNDRED = Decimal("100")


def parse_amount(value) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise BookingValidationError("Amount must be a number", code="invalid_amount")
    if not amount.is_finite() or amount <= 0:
        raise BookingValidationError("Amount must be a positive number", code="invalid_amount")
    return amount


def fare_band(reference, percentage):
    """Inclusive (min, max) around `reference`, rounded to cents."""
    reference = Decimal(reference)
    spread = reference * Decimal(percentage) / HUNDRED
    return money(reference - spread), money(reference + spread)


def require_within_band(value, reference, percentage, what="Fare") -> Decimal:
    """
    Raises:
        FareOutOfBandError: carrying the valid minimum and maximum
    """
    amount = parse_amount(value)
    minimum, maximum = fare_band(reference, percentage)
    if amount < minimum or amount > maximum:
        raise FareOutOfBandError(
            f"{what} must be between {minimum} and {maximum}",
            minimum=minimum,
            maximum=maximum,
        )
    return money(amount)


def raise_limit(current_fare, max_raise_percentage) -> Decimal:
    """Highest fare a single raise may reach: current plus max_raise_percentage."""
    current_fare = Decimal(current_fare)
    return money(current_fare + current_fare * Decimal(max_raise_percentage) / HUNDRED)
