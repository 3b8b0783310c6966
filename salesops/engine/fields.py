"""
Field Resolution Helpers

Coercion of loosely-typed source fields and the ordered fallback
resolver used for "current, else original, else derived" lookups.
"""

import math
import re
from decimal import Decimal
from typing import Any, Optional


def first_present(*candidates: Any) -> Any:
    """
    Return the first candidate that is not None.

    Example:
        first_present(order.current_subtotal, order.subtotal)
    """
    for candidate in candidates:
        if candidate is not None:
            return candidate
    return None


def to_money(value: Any) -> float:
    """
    Coerce a monetary field to float.

    None, NaN and infinities read as 0. Strings must be numeric; any other
    value raises ValueError or TypeError so the caller can treat the
    record as malformed.
    """
    if value is None:
        return 0.0
    if isinstance(value, bool):
        raise TypeError(f"Boolean is not a monetary value: {value!r}")
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    elif isinstance(value, str):
        number = float(value.strip()) if value.strip() else 0.0
    else:
        raise TypeError(f"Unsupported monetary value: {value!r}")

    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def to_optional_money(value: Any) -> Optional[float]:
    """Like to_money, but keeps None as None"""
    if value is None:
        return None
    return to_money(value)


def to_quantity(value: Any) -> float:
    """Coerce a quantity field; None reads as 0"""
    return to_money(value)


def approx_equal(a: float, b: float, tolerance: float = 0.02) -> bool:
    """Absolute-tolerance comparison"""
    return abs(a - b) <= tolerance


_WHITESPACE = re.compile(r"\s+")


def normalize_name(value: Optional[str]) -> str:
    """Trim, collapse inner whitespace and lower-case a display name"""
    if not value:
        return ""
    return _WHITESPACE.sub(" ", value.strip()).lower()
