"""Range evaluation shared by the engine and the controller shell.

The shell calls `plan_reallocation` / `plan_return` before touching any
collaborator, so it only deposits or withdraws when the kernel step that
follows will take the same branch.
"""

from __future__ import annotations

from dataclasses import dataclass

from .math import deviation_bps, gate_open, twap
from .types import Decision, RebalancerState


@dataclass(frozen=True)
class RangeCheck:
    decision: Decision
    twap: int = 0
    deviation_bps: int = 0


def current_twap(state: RebalancerState) -> int:
    return twap(state.cumulative_price, state.observation_period)


def plan_reallocation(state: RebalancerState, now: int, current_price: int) -> RangeCheck:
    """Evaluate `check_and_reallocate` without applying it.

    Order: time gate, then zero-average guard, then threshold.
    """
    if not gate_open(now, state.last_reallocation, state.min_reallocation_time):
        return RangeCheck(Decision.GATED)
    avg = current_twap(state)
    dev = deviation_bps(current_price, avg)
    if dev is None:
        return RangeCheck(Decision.NO_SIGNAL)
    if dev > state.price_range:
        return RangeCheck(Decision.OUT_OF_RANGE, avg, dev)
    return RangeCheck(Decision.IN_RANGE, avg, dev)


def plan_return(state: RebalancerState, current_price: int) -> RangeCheck:
    """Evaluate `move_to_lp_if_in_range` without applying it (not time-gated)."""
    if state.amount_in_lending == 0:
        return RangeCheck(Decision.NOT_PARKED)
    avg = current_twap(state)
    dev = deviation_bps(current_price, avg)
    if dev is None:
        return RangeCheck(Decision.NO_SIGNAL)
    if dev <= state.price_range:
        return RangeCheck(Decision.IN_RANGE, avg, dev)
    return RangeCheck(Decision.OUT_OF_RANGE, avg, dev)
