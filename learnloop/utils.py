"""Small numeric helpers shared by scoring and scheduling."""
from __future__ import annotations

import math

# absorbs float noise such as 35 * 3.0 * 0.3 == 31.499999999999996
_EPSILON = 1e-9


def round_half_up(value: float) -> int:
    """
    Round to the nearest integer with halves going up (2.5 -> 3, -2.5 -> -2).

    Python's built-in round() uses banker's rounding, which would award
    2 points for a 2.5 wager.
    """
    return int(math.floor(value + 0.5 + _EPSILON))
