"""Value coercion helpers shared by rule validation and evaluation."""

import math
from typing import Any


def to_number(value: Any) -> float | None:
    """Coerce a value to a float for numeric comparison.

    Booleans and numbers convert directly and numeric strings are parsed.
    Everything else, including None and NaN, yields None.
    """
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number):
        return None
    return number
