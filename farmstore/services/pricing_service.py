"""
Pricing Service - unit prices, discounts and savings.

All money is whole KES. A discount is a percentage off the catalog price and
the discounted price is rounded half-up to a whole unit. The same rounding is
used by the cart preview, the checkout totals, settlement and receipts so the
charged amount always reconciles with what the cashier was shown.

Products and discounts may be ORM rows, snapshot dicts or any object exposing
the same attribute names.
"""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

HUNDRED = Decimal('100')


def field(obj: Any, name: str, default: Any = None) -> Any:
    """Read `name` from a dict snapshot or an object."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _percentage(discount: Any) -> Decimal:
    if discount is None:
        return Decimal('0')
    raw = field(discount, 'percentage')
    if raw is None:
        return Decimal('0')
    try:
        pct = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        return Decimal('0')
    return min(pct, HUNDRED)


def has_discount(discount: Any) -> bool:
    """True only for a discount with a positive percentage."""
    return _percentage(discount) > 0


def discounted_unit_price(product: Any, discount: Any = None) -> int:
    """
    Unit price after `discount`.

    Returns the catalog price unchanged when the discount is absent or its
    percentage is zero or negative.
    """
    price = int(field(product, 'price', 0))
    pct = _percentage(discount)
    if pct <= 0:
        return price

    discounted = Decimal(price) - (Decimal(price) * pct / HUNDRED)
    return int(discounted.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def savings_per_unit(product: Any, discount: Any = None) -> int:
    """Catalog price minus discounted price."""
    return int(field(product, 'price', 0)) - discounted_unit_price(product, discount)


def _as_utc(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    # Naive timestamps are stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_discount_active(discount: Any, at: Optional[datetime] = None) -> bool:
    """Whether `at` falls inside the discount window (bounds inclusive)."""
    if discount is None:
        return False
    at = _as_utc(at) if at is not None else utcnow()
    start = _as_utc(field(discount, 'start_date'))
    end = _as_utc(field(discount, 'end_date'))
    if start is not None and at < start:
        return False
    if end is not None and at > end:
        return False
    return True


def select_active_discount(discounts: Iterable[Any], at: Optional[datetime] = None) -> Optional[Any]:
    """
    Pick the one discount that applies at `at`.

    Largest percentage wins; equal percentages fall back to the lowest id so
    the choice never depends on store iteration order.
    """
    active = [d for d in (discounts or []) if is_discount_active(d, at)]
    if not active:
        return None

    def sort_key(d):
        discount_id = field(d, 'id')
        return (-_percentage(d), discount_id is None, discount_id if discount_id is not None else 0)

    return sorted(active, key=sort_key)[0]


def price_line(product: Any, discount: Any, quantity: int) -> dict:
    """Price breakdown for `quantity` units of `product`."""
    unit_price = int(field(product, 'price', 0))
    discounted = discounted_unit_price(product, discount)
    line_original = unit_price * quantity
    line_total = discounted * quantity
    return {
        'unit_price': unit_price,
        'discounted_unit_price': discounted,
        'discount_percentage': float(_percentage(discount)) if has_discount(discount) else 0.0,
        'quantity': quantity,
        'line_original': line_original,
        'line_total': line_total,
        'line_savings': line_original - line_total,
    }
