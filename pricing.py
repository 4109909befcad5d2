"""Unit price and shipping arithmetic for order placement."""

from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional, Tuple

FREE_SHIPPING_THRESHOLD = 100.0

SHIPPING_RATES = {
    "Express": 15.0,
    "Next Day": 25.0,
}
STANDARD_RATE = 10.0
DEFAULT_RATE = 10.0


def _as_utc(value: datetime) -> datetime:
    # Mongo hands back naive datetimes unless the client is tz_aware
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def effective_price(product: Mapping[str, Any], now: Optional[datetime] = None) -> float:
    """Price of one unit after any discount that is still valid at `now`.

    A discount counts only when its percentage is positive and its valid_until
    is set and not in the past. Otherwise the list price is returned as-is.
    """
    price = float(product.get("price", 0))
    discount = product.get("discount") or {}
    percentage = discount.get("percentage") or 0
    valid_until = discount.get("valid_until")
    if percentage <= 0 or valid_until is None:
        return price

    now = _as_utc(now or datetime.now(timezone.utc))
    if _as_utc(valid_until) < now:
        return price
    return price * (1 - min(percentage, 100) / 100)


def shipping_cost(method: str, subtotal: float) -> float:
    if method == "Standard":
        return 0.0 if subtotal >= FREE_SHIPPING_THRESHOLD else STANDARD_RATE
    return SHIPPING_RATES.get(method, DEFAULT_RATE)


def order_totals(lines: Iterable[Mapping[str, Any]], method: str) -> Tuple[float, float, float]:
    """Return (subtotal, shipping, total) for priced lines, rounded to cents."""
    subtotal = round(sum(line["price"] * line["quantity"] for line in lines), 2)
    shipping = shipping_cost(method, subtotal)
    return subtotal, shipping, round(subtotal + shipping, 2)
