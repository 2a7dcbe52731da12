"""Guard functions for the rebalancer kernel.

One pure function per action. Each returns None when the action is allowed in
the given PRE-state, or the rejection string otherwise. Guards run before any
update, so a rejected step never mutates the record.

Accepted no-ops (debounce, below-threshold, in-range) are not guard failures;
they are branches of the update functions.
"""

from __future__ import annotations

from .decision import plan_reallocation
from .math import BPS_SCALE, MAX_UINT256
from .types import ActionParams, Decision, ErrorCode, RebalancerState


def _overflow(field: str) -> str:
    return f"overflow:{field}"


def guard_update_twap(state: RebalancerState, params: ActionParams) -> str | None:
    time_diff = params.now - state.last_timestamp
    if time_diff <= 0:
        return ErrorCode.INVALID_TWAP.value
    if state.cumulative_price + state.last_price * time_diff > MAX_UINT256:
        return _overflow("cumulative_price")
    return None


def guard_check_and_reallocate(state: RebalancerState, params: ActionParams) -> str | None:
    check = plan_reallocation(state, params.now, params.price)
    if check.decision is Decision.OUT_OF_RANGE:
        if state.amount_in_lending + params.amount > MAX_UINT256:
            return _overflow("amount_in_lending")
    return None


def guard_move_to_lp_if_in_range(state: RebalancerState, params: ActionParams) -> str | None:
    return None


def guard_collect_lending_fees(state: RebalancerState, params: ActionParams) -> str | None:
    if state.total_lending_fees + params.amount > MAX_UINT256:
        return _overflow("total_lending_fees")
    return None


def guard_collect_lp_fees(state: RebalancerState, params: ActionParams) -> str | None:
    if state.lp_fees + params.amount > MAX_UINT256:
        return _overflow("lp_fees")
    return None


def guard_auto_compound_lp_fees(state: RebalancerState, params: ActionParams) -> str | None:
    if not state.auto_compound_enabled:
        return ErrorCode.AUTO_COMPOUND_DISABLED.value
    if state.total_compounded + state.lp_fees > MAX_UINT256:
        return _overflow("total_compounded")
    return None


def guard_set_auto_compound(state: RebalancerState, params: ActionParams) -> str | None:
    if not isinstance(params.enabled, bool):
        return ErrorCode.INVALID_AMOUNT.value
    return None


def guard_set_min_compound_amount(state: RebalancerState, params: ActionParams) -> str | None:
    return None


def guard_set_min_reallocation_time(state: RebalancerState, params: ActionParams) -> str | None:
    return None


def guard_set_price_range(state: RebalancerState, params: ActionParams) -> str | None:
    if not (1 <= params.amount <= BPS_SCALE):
        return ErrorCode.INVALID_RANGE.value
    return None


def guard_set_observation_period(state: RebalancerState, params: ActionParams) -> str | None:
    if params.amount <= 0:
        return ErrorCode.INVALID_TWAP.value
    return None


def guard_set_lending_protocol(state: RebalancerState, params: ActionParams) -> str | None:
    """Reject empty identifiers, and any switch while liquidity is parked."""
    if not isinstance(params.lending_protocol, str) or not params.lending_protocol.strip():
        return ErrorCode.INVALID_LENDING_PROTOCOL.value
    if state.amount_in_lending != 0:
        return ErrorCode.INVALID_LENDING_PROTOCOL.value
    return None
