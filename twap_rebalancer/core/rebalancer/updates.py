"""State transition functions for the rebalancer kernel.

One pure function per action. Each returns a new `RebalancerState` with the
action's updates applied, evaluated against the PRE-state, via
`dataclasses.replace()` on the frozen record.

No-op branches return the pre-state object itself, so a debounced or
below-threshold call leaves the record unchanged.
"""

from __future__ import annotations

from dataclasses import replace

from .decision import plan_reallocation, plan_return
from .math import accumulate
from .types import ActionParams, Decision, RebalancerState


def apply_update_twap(state: RebalancerState, params: ActionParams) -> RebalancerState:
    # The interval since the last observation is weighted by the price that
    # held during it.
    time_diff = params.now - state.last_timestamp
    return replace(
        state,
        cumulative_price=accumulate(state.cumulative_price, state.last_price, time_diff),
        last_price=params.price,
        last_timestamp=params.now,
    )


def apply_check_and_reallocate(state: RebalancerState, params: ActionParams) -> RebalancerState:
    check = plan_reallocation(state, params.now, params.price)
    if check.decision is not Decision.OUT_OF_RANGE or params.amount == 0:
        return state
    return replace(
        state,
        amount_in_lending=state.amount_in_lending + params.amount,
        last_reallocation=params.now,
    )


def apply_move_to_lp_if_in_range(state: RebalancerState, params: ActionParams) -> RebalancerState:
    check = plan_return(state, params.price)
    if check.decision is not Decision.IN_RANGE:
        return state
    return replace(state, amount_in_lending=0, last_reallocation=params.now)


def apply_collect_lending_fees(state: RebalancerState, params: ActionParams) -> RebalancerState:
    return replace(
        state,
        total_lending_fees=state.total_lending_fees + params.amount,
        last_fee_collection=params.now,
        last_reallocation=(
            params.now if state.fee_collection_resets_gate else state.last_reallocation
        ),
    )


def apply_collect_lp_fees(state: RebalancerState, params: ActionParams) -> RebalancerState:
    return replace(
        state,
        lp_fees=state.lp_fees + params.amount,
        last_lp_fee_collection=params.now,
    )


def apply_auto_compound_lp_fees(state: RebalancerState, params: ActionParams) -> RebalancerState:
    if state.lp_fees < state.min_compound_amount:
        return state
    return replace(
        state,
        lp_fees=0,
        total_compounded=state.total_compounded + state.lp_fees,
    )


def apply_set_auto_compound(state: RebalancerState, params: ActionParams) -> RebalancerState:
    return replace(state, auto_compound_enabled=params.enabled)


def apply_set_min_compound_amount(state: RebalancerState, params: ActionParams) -> RebalancerState:
    return replace(state, min_compound_amount=params.amount)


def apply_set_min_reallocation_time(state: RebalancerState, params: ActionParams) -> RebalancerState:
    return replace(state, min_reallocation_time=params.amount)


def apply_set_price_range(state: RebalancerState, params: ActionParams) -> RebalancerState:
    return replace(state, price_range=params.amount)


def apply_set_observation_period(state: RebalancerState, params: ActionParams) -> RebalancerState:
    return replace(state, observation_period=params.amount)


def apply_set_lending_protocol(state: RebalancerState, params: ActionParams) -> RebalancerState:
    return replace(state, lending_protocol=params.lending_protocol.strip())
