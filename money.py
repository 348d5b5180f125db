from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

from errors import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


# -------------------------------
# Helper casting functions
# -------------------------------
def as_decimal(value: Any, field: str = "amount") -> Decimal:
    """Cast ints, strings and Decimals to Decimal. Floats go through str()."""
    if isinstance(value, bool) or value is None or value == "":
        raise ValidationError(f"{field} is required and must be numeric")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise ValidationError(f"{field} must be numeric, got {value!r}")
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return result


def as_optional_decimal(value: Any, field: str = "amount") -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return as_decimal(value, field)


def round_money(value: Decimal) -> Decimal:
    """Round half-up to the currency's minor unit (2 decimal places)."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, rate_pct: Decimal) -> Decimal:
    return round_money(amount * rate_pct / HUNDRED)


def require_non_negative(value: Decimal, field: str) -> Decimal:
    if value < 0:
        raise ValidationError(f"{field} must be >= 0, got {value}")
    return value


def require_rate(value: Any, field: str) -> Decimal:
    rate = as_decimal(value, field)
    if rate < 0 or rate > HUNDRED:
        raise ValidationError(f"{field} must be within [0, 100], got {rate}")
    return rate
