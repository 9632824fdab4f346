"""Display price calculation from a base price and a markup policy."""

import enum
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple, Union

Number = Union[int, float, Decimal]


class MarkupType(str, enum.Enum):
    NONE = "none"
    AMOUNT = "amount"
    PERCENTAGE = "percentage"
    VENDOR_DEFAULT = "vendor_default"


def display_price(base_price: Number, markup_type: Optional[str], markup_value: Optional[Number]) -> int:
    """
    Compute the price shown to buyers.

    ``vendor_default`` must be resolved by the caller (see
    :func:`resolve_markup`); passed through unresolved it behaves like
    ``none``. The result is rounded half-up to whole currency units and never
    drops below zero, so a negative markup can discount but not invert a price.
    """
    base = Decimal(str(base_price or 0))
    value = Decimal(str(markup_value or 0))

    kind = MarkupType(markup_type) if markup_type else MarkupType.NONE
    if kind == MarkupType.AMOUNT:
        result = base + value
    elif kind == MarkupType.PERCENTAGE:
        result = base + base * (value / Decimal(100))
    else:
        result = base

    rounded = int(result.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return max(rounded, 0)


def resolve_markup(
    vehicle_type: Optional[str],
    vehicle_value: Optional[Number],
    vendor_type: Optional[str] = None,
    vendor_value: Optional[Number] = None,
) -> Tuple[MarkupType, float]:
    """Return the concrete (type, value) pair a vehicle's price should use."""
    kind = MarkupType(vehicle_type) if vehicle_type else MarkupType.VENDOR_DEFAULT
    if kind != MarkupType.VENDOR_DEFAULT:
        return kind, float(vehicle_value or 0)

    vendor_kind = MarkupType(vendor_type) if vendor_type else MarkupType.NONE
    # A vendor cannot defer to itself
    if vendor_kind == MarkupType.VENDOR_DEFAULT:
        return MarkupType.NONE, 0.0
    return vendor_kind, float(vendor_value or 0)
