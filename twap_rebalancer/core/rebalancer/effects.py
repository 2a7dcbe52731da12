"""Effect functions for the rebalancer kernel.

One pure function per action. Each builds the ``Effect`` from the PRE-state
(for the decision and the amounts that moved) and the POST-state (for the
balances left behind). ``event`` is set exactly when the step performed a
triggering transition.
"""

from __future__ import annotations

from .decision import RangeCheck, plan_reallocation, plan_return
from .types import Action, ActionParams, Decision, Effect, Event, RebalancerState


def _effect(
    action: Action,
    decision: Decision,
    post: RebalancerState,
    *,
    event: Event | None = None,
    amount: int = 0,
    check: RangeCheck | None = None,
) -> Effect:
    return Effect(
        action=action,
        decision=decision,
        event=event,
        amount=amount,
        twap=check.twap if check is not None else 0,
        deviation_bps=check.deviation_bps if check is not None else 0,
        amount_in_lending_after=post.amount_in_lending,
        lp_fees_after=post.lp_fees,
    )


def effect_update_twap(pre: RebalancerState, post: RebalancerState, params: ActionParams) -> Effect:
    return _effect(Action.UPDATE_TWAP, Decision.APPLIED, post)


def effect_check_and_reallocate(
    pre: RebalancerState, post: RebalancerState, params: ActionParams,
) -> Effect:
    check = plan_reallocation(pre, params.now, params.price)
    if check.decision is not Decision.OUT_OF_RANGE:
        return _effect(Action.CHECK_AND_REALLOCATE, check.decision, post, check=check)
    if params.amount == 0:
        return _effect(Action.CHECK_AND_REALLOCATE, Decision.NOTHING_IDLE, post, check=check)
    return _effect(
        Action.CHECK_AND_REALLOCATE,
        check.decision,
        post,
        event=Event.MOVED_TO_LENDING,
        amount=params.amount,
        check=check,
    )


def effect_move_to_lp_if_in_range(
    pre: RebalancerState, post: RebalancerState, params: ActionParams,
) -> Effect:
    check = plan_return(pre, params.price)
    if check.decision is not Decision.IN_RANGE:
        return _effect(Action.MOVE_TO_LP_IF_IN_RANGE, check.decision, post, check=check)
    return _effect(
        Action.MOVE_TO_LP_IF_IN_RANGE,
        check.decision,
        post,
        event=Event.MOVED_TO_LP,
        amount=params.amount,
        check=check,
    )


def effect_collect_lending_fees(
    pre: RebalancerState, post: RebalancerState, params: ActionParams,
) -> Effect:
    return _effect(
        Action.COLLECT_LENDING_FEES, Decision.APPLIED, post,
        event=Event.LENDING_FEES_COLLECTED, amount=params.amount,
    )


def effect_collect_lp_fees(pre: RebalancerState, post: RebalancerState, params: ActionParams) -> Effect:
    return _effect(
        Action.COLLECT_LP_FEES, Decision.APPLIED, post,
        event=Event.LP_FEES_COLLECTED, amount=params.amount,
    )


def effect_auto_compound_lp_fees(
    pre: RebalancerState, post: RebalancerState, params: ActionParams,
) -> Effect:
    if post is pre:
        return _effect(Action.AUTO_COMPOUND_LP_FEES, Decision.BELOW_THRESHOLD, post)
    return _effect(
        Action.AUTO_COMPOUND_LP_FEES, Decision.APPLIED, post,
        event=Event.LP_FEES_COMPOUNDED, amount=pre.lp_fees,
    )


def effect_admin(pre: RebalancerState, post: RebalancerState, params: ActionParams) -> Effect:
    """Setters change configuration only and never notify."""
    return _effect(params.action, Decision.APPLIED, post)
