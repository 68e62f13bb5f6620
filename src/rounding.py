"""
Rounding for reported minutes and ratios

Python's round() sends exact halves to the even neighbour (round(30.25, 1) == 30.2).
Reported values round halves away from zero instead, so 30.25 minutes is 30.3 and a
bias of -0.25 minutes is -0.3. Exact halves are common here because
duration_seconds / 60 often ends in .25, .5 or .75.
"""

import math
from typing import Optional


def round_half_up(value: float, digits: int = 0) -> float:
    """
    Round to the given number of decimals, halves away from zero

    Example:
        >>> round_half_up(44.5)
        45.0
        >>> round_half_up(-0.25, 1)
        -0.3
    """
    factor = 10**digits
    rounded = math.floor(abs(value) * factor + 0.5) / factor
    if value < 0 and rounded:
        return -rounded
    return rounded


def round_or_none(value: Optional[float], digits: int) -> Optional[float]:
    return None if value is None else round_half_up(value, digits)
