"""Property tests for the rebalancer kernel.

Covers the accumulator (exact sum, monotone), the reallocation debounce,
the LP fee ledger and the compounding threshold.
"""

from __future__ import annotations

import importlib.util
from dataclasses import replace

import pytest

if importlib.util.find_spec("hypothesis") is None:  # pragma: no cover
    pytest.skip("hypothesis not installed", allow_module_level=True)

from hypothesis import given, settings, strategies as st

from twap_rebalancer.core.rebalancer import (
    Action,
    ActionParams,
    Decision,
    Event,
    RebalancerConfig,
    initial_state,
    step,
    step_or_raise,
)

_PRICE = st.integers(min_value=0, max_value=10**30)


def _config(**overrides) -> RebalancerConfig:
    base = dict(
        lending_protocol="aave-v3",
        observation_period=3600,
        min_reallocation_time=1800,
        price_range=100,
    )
    base.update(overrides)
    return RebalancerConfig(**base)


@settings(max_examples=200, deadline=None)
@given(
    initial_price=_PRICE,
    observations=st.lists(
        st.tuples(st.integers(min_value=1, max_value=10**6), _PRICE), min_size=1, max_size=25
    ),
)
def test_cumulative_is_exact_weighted_sum(initial_price, observations) -> None:
    s = initial_state(_config(initial_price=initial_price), 0)
    expected = 0
    prev_price = initial_price
    now = 0
    for dt, price in observations:
        now += dt
        before = s.cumulative_price
        s = step_or_raise(s, ActionParams(action=Action.UPDATE_TWAP, now=now, price=price)).state
        expected += prev_price * dt
        prev_price = price
        assert s.cumulative_price >= before
        assert s.cumulative_price == expected
        assert s.last_timestamp == now


@settings(max_examples=200, deadline=None)
@given(
    avg=st.integers(min_value=1, max_value=10**12),
    first_price=_PRICE,
    second_price=_PRICE,
    start=st.integers(min_value=1800, max_value=10**6),
    gap=st.integers(min_value=0, max_value=1799),
    idle=st.integers(min_value=0, max_value=10**18),
)
def test_calls_inside_interval_do_not_change_record(avg, first_price, second_price, start, gap, idle) -> None:
    base = replace(initial_state(_config(), 0), cumulative_price=avg * 3600)
    first = step_or_raise(
        base, ActionParams(action=Action.CHECK_AND_REALLOCATE, now=start, price=first_price, amount=idle)
    )
    if first.state is base:
        # Nothing moved: pin the gate to the first call so the second one is inside it.
        first_state = replace(base, last_reallocation=start)
    else:
        first_state = first.state
    second = step_or_raise(
        first_state,
        ActionParams(action=Action.CHECK_AND_REALLOCATE, now=start + gap, price=second_price, amount=idle),
    )
    assert second.state == first_state
    assert second.effect.decision is Decision.GATED
    assert second.effect.event is None


@settings(max_examples=200, deadline=None)
@given(
    collections=st.lists(st.integers(min_value=0, max_value=10**24), max_size=20),
    threshold=st.integers(min_value=0, max_value=10**25),
)
def test_lp_fee_ledger_and_threshold(collections, threshold) -> None:
    s = initial_state(_config(auto_compound_enabled=True, min_compound_amount=threshold), 0)
    now = 0
    for amount in collections:
        now += 1
        s = step_or_raise(s, ActionParams(action=Action.COLLECT_LP_FEES, now=now, amount=amount)).state
    assert s.lp_fees == sum(collections)

    r = step_or_raise(s, ActionParams(action=Action.AUTO_COMPOUND_LP_FEES, now=now))
    if s.lp_fees >= threshold:
        assert r.state.lp_fees == 0
        assert r.state.total_compounded == s.lp_fees
        assert r.effect.event is Event.LP_FEES_COMPOUNDED
        assert r.effect.amount == s.lp_fees
    else:
        assert r.state is s
        assert r.effect.event is None


@settings(max_examples=100, deadline=None)
@given(lp_fees=st.integers(min_value=0, max_value=10**24), now=st.integers(min_value=0, max_value=10**6))
def test_compounding_disabled_always_rejects(lp_fees, now) -> None:
    s = replace(initial_state(_config(), 0), lp_fees=lp_fees)
    r = step(s, ActionParams(action=Action.AUTO_COMPOUND_LP_FEES, now=now))
    assert not r.accepted
    assert r.rejection == "auto_compound_disabled"


@settings(max_examples=200, deadline=None)
@given(
    avg=st.integers(min_value=1, max_value=10**9),
    price=st.integers(min_value=0, max_value=10**10),
    bps=st.integers(min_value=1, max_value=10000),
)
def test_move_decisions_agree_on_the_band(avg, price, bps) -> None:
    # For a given TWAP and range, exactly one of "park" / "return" fires.
    s = replace(initial_state(_config(price_range=bps), 0), cumulative_price=avg * 3600)
    out = step_or_raise(s, ActionParams(action=Action.CHECK_AND_REALLOCATE, now=1800, price=price, amount=1))
    parked = replace(s, amount_in_lending=1)
    back = step_or_raise(parked, ActionParams(action=Action.MOVE_TO_LP_IF_IN_RANGE, now=1800, price=price, amount=1))
    assert (out.effect.event is Event.MOVED_TO_LENDING) != (back.effect.event is Event.MOVED_TO_LP)
