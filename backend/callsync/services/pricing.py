from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from callsync.core.config import settings
from callsync.schemas import ResolvedOwnership

FOUR_PLACES = Decimal("0.0001")

Number = Union[int, float, str, Decimal]


def to_decimal(value: Optional[Number]) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value))
    except (ArithmeticError, ValueError):
        return None
    return result if result.is_finite() else None


def estimate_call_cost(duration_seconds: int, rate_per_minute: Number) -> Decimal:
    """Per-minute pricing shared with the dashboards: ``minutes * rate``, 4 places."""
    minutes = Decimal(max(0, duration_seconds)) / Decimal(60)
    rate = to_decimal(rate_per_minute) or Decimal("0")
    return (minutes * rate).quantize(FOUR_PLACES, rounding=ROUND_HALF_UP)


class RatePolicy:
    def __init__(self, fallback_rate: Number = settings.fallback_rate_per_minute) -> None:
        self.fallback_rate = to_decimal(fallback_rate) or Decimal("0")

    def rate_for(self, ownership: ResolvedOwnership) -> Decimal:
        rate = to_decimal(ownership.rate_per_minute)
        if rate is None or rate <= 0:
            return self.fallback_rate
        return rate

    def revenue(self, duration_seconds: int, ownership: ResolvedOwnership) -> Decimal:
        return estimate_call_cost(duration_seconds, self.rate_for(ownership))
