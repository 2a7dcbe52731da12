"""Pure arithmetic for the rebalancer kernel.

Every function is stateless and operates on plain Python ints.

Rounding is explicit: TWAP and deviation use `//` (truncating for the
non-negative operands used here), so decisions land in the same bps bucket
as an unsigned-integer implementation of the same formulas.
"""

from __future__ import annotations

BPS_SCALE: int = 10_000
MAX_UINT256: int = 2**256 - 1


def is_uint(x: object) -> bool:
    """True for a non-bool int in ``[0, MAX_UINT256]``."""
    return isinstance(x, int) and not isinstance(x, bool) and 0 <= x <= MAX_UINT256


def abs_diff(a: int, b: int) -> int:
    return a - b if a >= b else b - a


# -- TWAP --------------------------------------------------------------------

def accumulate(cumulative_price: int, price: int, time_diff: int) -> int:
    """Cumulative price after ``price`` has held for ``time_diff`` seconds."""
    return cumulative_price + price * time_diff


def twap(cumulative_price: int, observation_period: int) -> int:
    """Average price over the observation window (truncating).

    ``observation_period`` must be positive; initialization and the admin
    setter both reject zero.
    """
    return cumulative_price // observation_period


# -- Range decision ----------------------------------------------------------

def deviation_bps(current_price: int, average: int) -> int | None:
    """``|current - average| * 10000 // average``; None when ``average == 0``."""
    if average == 0:
        return None
    return abs_diff(current_price, average) * BPS_SCALE // average


def gate_open(now: int, last_reallocation: int, min_reallocation_time: int) -> bool:
    """True once at least ``min_reallocation_time`` has passed since the last move."""
    return now - last_reallocation >= min_reallocation_time
