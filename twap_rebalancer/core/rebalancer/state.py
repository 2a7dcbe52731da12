"""State construction and serialization for the rebalancer kernel.

`initial_state(config, now)` validates a `RebalancerConfig` and returns the
record a freshly deployed controller starts from.

Round-trip property (tested): `state_from_dict(state_to_dict(s)) == s` for all valid states.
"""

from __future__ import annotations

from typing import Any, Mapping

from .errors import InvalidAmountError, InvalidLendingProtocolError, InvalidRangeError, InvalidTWAPError
from .invariants import check_all
from .math import BPS_SCALE, is_uint
from .types import RebalancerConfig, RebalancerState

# Auto-derived from RebalancerState field definitions (single source of truth).
STATE_VAR_NAMES: tuple[str, ...] = tuple(RebalancerState.__dataclass_fields__)

_BOOL_VARS = frozenset({"auto_compound_enabled", "fee_collection_resets_gate"})
_STR_VARS = frozenset({"lending_protocol"})


def validate_config(config: RebalancerConfig) -> None:
    """Fail closed on a configuration the kernel cannot run with."""
    if not isinstance(config.lending_protocol, str) or not config.lending_protocol.strip():
        raise InvalidLendingProtocolError("lending_protocol must be a non-empty string")
    if not is_uint(config.observation_period) or config.observation_period == 0:
        raise InvalidTWAPError(f"observation_period must be positive: {config.observation_period!r}")
    if not is_uint(config.price_range) or not (1 <= config.price_range <= BPS_SCALE):
        raise InvalidRangeError(f"price_range must be in [1, {BPS_SCALE}] bps: {config.price_range!r}")
    for name in ("min_reallocation_time", "min_compound_amount", "initial_price"):
        val = getattr(config, name)
        if not is_uint(val):
            raise InvalidAmountError(f"{name} must be an unsigned int: {val!r}")
    for name in ("auto_compound_enabled", "fee_collection_resets_gate"):
        if not isinstance(getattr(config, name), bool):
            raise InvalidAmountError(f"{name} must be a bool")


def initial_state(config: RebalancerConfig, now: int) -> RebalancerState:
    """Create the controller record at time ``now``.

    Every timestamp starts at ``now``: the first TWAP interval is measured
    from deployment and the reallocation gate opens ``min_reallocation_time``
    after it.
    """
    validate_config(config)
    if not is_uint(now):
        raise InvalidAmountError(f"now must be an unsigned int: {now!r}")
    state = RebalancerState(
        last_price=config.initial_price,
        last_timestamp=now,
        cumulative_price=0,
        observation_period=config.observation_period,
        lending_protocol=config.lending_protocol.strip(),
        amount_in_lending=0,
        last_fee_collection=now,
        last_reallocation=now,
        total_lending_fees=0,
        lp_fees=0,
        last_lp_fee_collection=now,
        auto_compound_enabled=config.auto_compound_enabled,
        min_compound_amount=config.min_compound_amount,
        total_compounded=0,
        min_reallocation_time=config.min_reallocation_time,
        price_range=config.price_range,
        fee_collection_resets_gate=config.fee_collection_resets_gate,
    )
    violations = check_all(state)
    if violations:  # pragma: no cover - validate_config covers every invariant
        raise ValueError(f"initial state violates invariants: {violations}")
    return state


def state_to_dict(state: RebalancerState) -> dict[str, bool | int | str]:
    """Serialize a RebalancerState to a plain dict."""
    return {name: getattr(state, name) for name in STATE_VAR_NAMES}


def state_from_dict(d: Mapping[str, Any]) -> RebalancerState:
    """Deserialize a dict to a RebalancerState. Raises KeyError on missing fields."""
    kwargs: dict[str, Any] = {}
    for name in STATE_VAR_NAMES:
        val = d[name]
        if name in _BOOL_VARS:
            if not isinstance(val, bool):
                raise TypeError(f"state var {name!r} must be bool, got {type(val).__name__}")
            kwargs[name] = val
        elif name in _STR_VARS:
            if not isinstance(val, str):
                raise TypeError(f"state var {name!r} must be str, got {type(val).__name__}")
            kwargs[name] = val
        elif isinstance(val, int) and not isinstance(val, bool):
            kwargs[name] = int(val)  # normalize int subclasses
        else:
            raise TypeError(f"state var {name!r} must be int, got {type(val).__name__}")
    state = RebalancerState(**kwargs)
    violations = check_all(state)
    if violations:
        raise ValueError(f"state violates invariants: {', '.join(violations)}")
    return state
