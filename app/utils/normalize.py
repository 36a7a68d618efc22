from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def utcnow() -> datetime:
    """Naive UTC now; every DateTime column in the app stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_money(value) -> Optional[Decimal]:
    """Exact two-place decimal, or None when there is no value."""
    if value is None:
        return None
    if not isinstance(value, Decimal):
        # str() keeps floats like 12.5 from turning into 12.4999...
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def minor_to_money(minor_units: Optional[int]) -> Optional[Decimal]:
    if minor_units is None:
        return None
    return (Decimal(minor_units) / 100).quantize(CENT)
