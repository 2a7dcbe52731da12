"""Invariant checkers for the rebalancer kernel.

State invariants take the post-state alone. Transition invariants take the
(pre, post, params) triple and encode the monotonicity rules of the record.
`check_all()` returns the list of violated invariant IDs (empty = all pass).
"""

from __future__ import annotations

from typing import Callable

from .math import BPS_SCALE, is_uint
from .types import Action, ActionParams, RebalancerState

UINT_FIELDS: tuple[str, ...] = (
    "last_price",
    "last_timestamp",
    "cumulative_price",
    "observation_period",
    "amount_in_lending",
    "last_fee_collection",
    "last_reallocation",
    "total_lending_fees",
    "lp_fees",
    "last_lp_fee_collection",
    "min_compound_amount",
    "total_compounded",
    "min_reallocation_time",
    "price_range",
)

TIMESTAMP_FIELDS: tuple[str, ...] = (
    "last_timestamp",
    "last_reallocation",
    "last_fee_collection",
    "last_lp_fee_collection",
)


def clock_high_water(s: RebalancerState) -> int:
    """Newest timestamp held in the record."""
    return max(getattr(s, name) for name in TIMESTAMP_FIELDS)


# -- State invariants ---------------------------------------------------------

def inv_uint_fields(s: RebalancerState) -> bool:
    return all(is_uint(getattr(s, name)) for name in UINT_FIELDS)


def inv_observation_period_positive(s: RebalancerState) -> bool:
    return s.observation_period > 0


def inv_price_range_bounded(s: RebalancerState) -> bool:
    return 1 <= s.price_range <= BPS_SCALE


def inv_lending_protocol_set(s: RebalancerState) -> bool:
    return isinstance(s.lending_protocol, str) and bool(s.lending_protocol.strip())


def inv_flags_are_bool(s: RebalancerState) -> bool:
    return isinstance(s.auto_compound_enabled, bool) and isinstance(s.fee_collection_resets_gate, bool)


# -- Transition invariants ----------------------------------------------------

def tinv_cumulative_monotone(pre: RebalancerState, post: RebalancerState, params: ActionParams) -> bool:
    return post.cumulative_price >= pre.cumulative_price


def tinv_lp_fees_ledger(pre: RebalancerState, post: RebalancerState, params: ActionParams) -> bool:
    if post.lp_fees == pre.lp_fees:
        return True
    if params.action is Action.COLLECT_LP_FEES:
        return post.lp_fees > pre.lp_fees
    if params.action is Action.AUTO_COMPOUND_LP_FEES:
        return post.lp_fees == 0
    return False


def tinv_lending_moves_only(pre: RebalancerState, post: RebalancerState, params: ActionParams) -> bool:
    if post.amount_in_lending == pre.amount_in_lending:
        return True
    if params.action is Action.CHECK_AND_REALLOCATE:
        return post.amount_in_lending > pre.amount_in_lending
    if params.action is Action.MOVE_TO_LP_IF_IN_RANGE:
        return post.amount_in_lending == 0
    return False


def tinv_timestamps_monotone(pre: RebalancerState, post: RebalancerState, params: ActionParams) -> bool:
    return all(getattr(post, name) >= getattr(pre, name) for name in TIMESTAMP_FIELDS)


# ---------------------------------------------------------------------------
# Registry + check_all
# ---------------------------------------------------------------------------

INVARIANT_REGISTRY: dict[str, Callable[[RebalancerState], bool]] = {
    "inv_uint_fields": inv_uint_fields,
    "inv_observation_period_positive": inv_observation_period_positive,
    "inv_price_range_bounded": inv_price_range_bounded,
    "inv_lending_protocol_set": inv_lending_protocol_set,
    "inv_flags_are_bool": inv_flags_are_bool,
}

TRANSITION_REGISTRY: dict[str, Callable[[RebalancerState, RebalancerState, ActionParams], bool]] = {
    "tinv_cumulative_monotone": tinv_cumulative_monotone,
    "tinv_lp_fees_ledger": tinv_lp_fees_ledger,
    "tinv_lending_moves_only": tinv_lending_moves_only,
    "tinv_timestamps_monotone": tinv_timestamps_monotone,
}


def check_all(state: RebalancerState) -> list[str]:
    """Return list of violated state invariant IDs (empty = all pass)."""
    return [
        inv_id
        for inv_id, check_fn in INVARIANT_REGISTRY.items()
        if not check_fn(state)
    ]


def check_transition(pre: RebalancerState, post: RebalancerState, params: ActionParams) -> list[str]:
    """Return list of violated transition invariant IDs."""
    return [
        inv_id
        for inv_id, check_fn in TRANSITION_REGISTRY.items()
        if not check_fn(pre, post, params)
    ]
