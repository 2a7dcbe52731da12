"""Dispatch-table engine for the rebalancer kernel.

``step(state, params)`` is the single entry point. It:

1. Validates parameter domains (unsigned 256-bit integers).
2. Rejects clock readings older than the record's newest timestamp.
3. Dispatches to the correct guard / update / effect functions.
4. Checks state and transition invariants on the post-state.
5. Returns a ``StepResult`` (accepted or rejected with reason).

Rejections happen before the update is returned, so the caller's record is
never partially mutated.
"""

from __future__ import annotations

from typing import Callable

from .effects import (
    effect_admin,
    effect_auto_compound_lp_fees,
    effect_check_and_reallocate,
    effect_collect_lending_fees,
    effect_collect_lp_fees,
    effect_move_to_lp_if_in_range,
    effect_update_twap,
)
from .errors import (
    AutoCompoundDisabledError,
    ClockRegressionError,
    InvalidAmountError,
    InvalidLendingProtocolError,
    InvalidRangeError,
    InvalidTWAPError,
    RebalancerError,
    RebalancerInvariantError,
    RebalancerOverflowError,
)
from .guards import (
    guard_auto_compound_lp_fees,
    guard_check_and_reallocate,
    guard_collect_lending_fees,
    guard_collect_lp_fees,
    guard_move_to_lp_if_in_range,
    guard_set_auto_compound,
    guard_set_lending_protocol,
    guard_set_min_compound_amount,
    guard_set_min_reallocation_time,
    guard_set_observation_period,
    guard_set_price_range,
    guard_update_twap,
)
from .invariants import check_all, check_transition, clock_high_water
from .math import is_uint
from .types import Action, ActionParams, Effect, ErrorCode, RebalancerState, StepResult
from .updates import (
    apply_auto_compound_lp_fees,
    apply_check_and_reallocate,
    apply_collect_lending_fees,
    apply_collect_lp_fees,
    apply_move_to_lp_if_in_range,
    apply_set_auto_compound,
    apply_set_lending_protocol,
    apply_set_min_compound_amount,
    apply_set_min_reallocation_time,
    apply_set_observation_period,
    apply_set_price_range,
    apply_update_twap,
)

GuardFn = Callable[[RebalancerState, ActionParams], str | None]
UpdateFn = Callable[[RebalancerState, ActionParams], RebalancerState]
EffectFn = Callable[[RebalancerState, RebalancerState, ActionParams], Effect]

_DISPATCH: dict[Action, tuple[GuardFn, UpdateFn, EffectFn]] = {
    Action.UPDATE_TWAP: (
        guard_update_twap, apply_update_twap, effect_update_twap,
    ),
    Action.CHECK_AND_REALLOCATE: (
        guard_check_and_reallocate, apply_check_and_reallocate, effect_check_and_reallocate,
    ),
    Action.MOVE_TO_LP_IF_IN_RANGE: (
        guard_move_to_lp_if_in_range, apply_move_to_lp_if_in_range, effect_move_to_lp_if_in_range,
    ),
    Action.COLLECT_LENDING_FEES: (
        guard_collect_lending_fees, apply_collect_lending_fees, effect_collect_lending_fees,
    ),
    Action.COLLECT_LP_FEES: (
        guard_collect_lp_fees, apply_collect_lp_fees, effect_collect_lp_fees,
    ),
    Action.AUTO_COMPOUND_LP_FEES: (
        guard_auto_compound_lp_fees, apply_auto_compound_lp_fees, effect_auto_compound_lp_fees,
    ),
    Action.SET_AUTO_COMPOUND: (
        guard_set_auto_compound, apply_set_auto_compound, effect_admin,
    ),
    Action.SET_MIN_COMPOUND_AMOUNT: (
        guard_set_min_compound_amount, apply_set_min_compound_amount, effect_admin,
    ),
    Action.SET_MIN_REALLOCATION_TIME: (
        guard_set_min_reallocation_time, apply_set_min_reallocation_time, effect_admin,
    ),
    Action.SET_PRICE_RANGE: (
        guard_set_price_range, apply_set_price_range, effect_admin,
    ),
    Action.SET_OBSERVATION_PERIOD: (
        guard_set_observation_period, apply_set_observation_period, effect_admin,
    ),
    Action.SET_LENDING_PROTOCOL: (
        guard_set_lending_protocol, apply_set_lending_protocol, effect_admin,
    ),
}

# Per-action parameter fields that must be uint256 (``now`` is always checked).
_UINT_PARAMS: dict[Action, tuple[str, ...]] = {
    Action.UPDATE_TWAP: ("price",),
    Action.CHECK_AND_REALLOCATE: ("price", "amount"),
    Action.MOVE_TO_LP_IF_IN_RANGE: ("price", "amount"),
    Action.COLLECT_LENDING_FEES: ("amount",),
    Action.COLLECT_LP_FEES: ("amount",),
    Action.AUTO_COMPOUND_LP_FEES: (),
    Action.SET_AUTO_COMPOUND: (),
    Action.SET_MIN_COMPOUND_AMOUNT: ("amount",),
    Action.SET_MIN_REALLOCATION_TIME: ("amount",),
    Action.SET_PRICE_RANGE: ("amount",),
    Action.SET_OBSERVATION_PERIOD: ("amount",),
    Action.SET_LENDING_PROTOCOL: (),
}


def _validate_params(params: ActionParams) -> str | None:
    """Check parameter domains. Returns rejection reason or None."""
    for field in ("now",) + _UINT_PARAMS.get(params.action, ()):
        if not is_uint(getattr(params, field)):
            return ErrorCode.INVALID_AMOUNT.value
    return None


def step(state: RebalancerState, params: ActionParams) -> StepResult:
    """Execute one action against the given state.

    Returns ``StepResult`` with ``accepted=True`` on success,
    or ``accepted=False`` with a ``rejection`` reason string.
    """
    entry = _DISPATCH.get(params.action)
    if entry is None:
        return StepResult(accepted=False, rejection=f"unknown_action:{params.action}")

    domain_err = _validate_params(params)
    if domain_err is not None:
        return StepResult(accepted=False, rejection=domain_err)

    if params.now < clock_high_water(state):
        return StepResult(accepted=False, rejection=ErrorCode.CLOCK_REGRESSED.value)

    guard_fn, update_fn, effect_fn = entry

    guard_err = guard_fn(state, params)
    if guard_err is not None:
        return StepResult(accepted=False, rejection=guard_err)

    new_state = update_fn(state, params)

    violations = check_all(new_state) + check_transition(state, new_state, params)
    if violations:
        return StepResult(
            accepted=False,
            rejection=f"invariant:{','.join(violations)}",
        )

    effect = effect_fn(state, new_state, params)
    return StepResult(accepted=True, state=new_state, effect=effect)


_ERRORS_BY_CODE: dict[str, type[RebalancerError]] = {
    ErrorCode.INVALID_TWAP.value: InvalidTWAPError,
    ErrorCode.INVALID_LENDING_PROTOCOL.value: InvalidLendingProtocolError,
    ErrorCode.INVALID_AMOUNT.value: InvalidAmountError,
    ErrorCode.INVALID_RANGE.value: InvalidRangeError,
    ErrorCode.AUTO_COMPOUND_DISABLED.value: AutoCompoundDisabledError,
    ErrorCode.CLOCK_REGRESSED.value: ClockRegressionError,
}


def error_for(reason: str) -> RebalancerError:
    """Build the exception matching a ``StepResult.rejection`` string."""
    if reason.startswith("overflow:"):
        return RebalancerOverflowError(reason, code=reason)
    if reason.startswith("invariant:"):
        return RebalancerInvariantError(reason.removeprefix("invariant:").split(","))
    error_cls = _ERRORS_BY_CODE.get(reason)
    if error_cls is None:
        return RebalancerError(reason, code=reason)
    return error_cls(reason)


def step_or_raise(state: RebalancerState, params: ActionParams) -> StepResult:
    """Like ``step()`` but raises on rejection instead of returning a result.

    Raises:
        InvalidTWAPError: Zero time delta, or zero observation period.
        InvalidLendingProtocolError: Bad or locked lending protocol identifier.
        InvalidAmountError: Parameter outside the uint256 domain.
        InvalidRangeError: ``price_range`` outside ``[1, 10000]``.
        AutoCompoundDisabledError: Compounding while the toggle is off.
        ClockRegressionError: ``now`` older than the record.
        RebalancerOverflowError: A uint256 field would overflow.
        RebalancerInvariantError: Post-state violates one or more invariants.
    """
    result = step(state, params)
    if result.accepted:
        return result
    raise error_for(result.rejection or "")
