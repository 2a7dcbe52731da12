"""
Rebalance controller: the imperative shell around the `rebalancer` kernel.

The controller owns the single controller record. For every operation it:
- reads the clock once,
- asks the kernel which branch the step will take (`plan_*`, dry-run steps),
- calls the lending protocol / pool only when that branch needs them,
- runs the real kernel step with the collaborator results,
- persists and commits the new record, then notifies listeners.

Nothing is committed until every collaborator call for the operation has
returned, so a failure anywhere leaves the record exactly as it was.
Collaborator calls are the only points where control leaves the controller;
re-entering any operation during one raises `RebalancerReentrancyError`.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Callable, Iterator, List, Optional, Union

from ..core.rebalancer import (
    Action,
    ActionParams,
    Decision,
    Event,
    RebalancerConfig,
    RebalancerError,
    RebalancerReentrancyError,
    RebalancerState,
    StepResult,
    current_twap,
    initial_state,
    plan_reallocation,
    plan_return,
    step_or_raise,
)
from ..core.rebalancer.math import is_uint
from .collaborators import Clock, Identity, LendingProtocol, LiquidityPool, StaticIdentity
from .snapshot import FileStateStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    """Structured event published once per triggering transition."""

    event: Event
    controller: str
    timestamp: int
    amount: int
    lending_protocol: str
    twap: int = 0
    deviation_bps: int = 0
    amount_in_lending_after: int = 0
    lp_fees_after: int = 0


Listener = Callable[[Notification], None]
IdentityLike = Union[Identity, str]


def _state_property(name: str) -> property:
    def getter(self: "RebalanceController"):
        return getattr(self._state, name)

    getter.__name__ = name
    getter.__doc__ = f"Current `{name}` of the controller record."
    return property(getter)


class RebalanceController:
    """Drives one controller record against injected collaborators."""

    def __init__(
        self,
        state: RebalancerState,
        *,
        clock: Clock,
        lending: LendingProtocol,
        pool: LiquidityPool,
        identity: IdentityLike = "rebalancer",
        store: Optional[FileStateStore] = None,
    ) -> None:
        self._state = state
        self._clock = clock
        self._lending = lending
        self._pool = pool
        self._identity = identity if isinstance(identity, Identity) else StaticIdentity(identity)
        self._store = store
        self._listeners: List[Listener] = []
        self._busy = False

    # -- construction ------------------------------------------------------

    @classmethod
    def initialize(
        cls,
        config: RebalancerConfig,
        *,
        clock: Clock,
        lending: LendingProtocol,
        pool: LiquidityPool,
        identity: IdentityLike = "rebalancer",
        store: Optional[FileStateStore] = None,
    ) -> "RebalanceController":
        """Create the controller record. It can only be created once per store."""
        if store is not None and store.exists():
            raise RebalancerError(
                f"controller record already exists at {store.path}", code="already_initialized"
            )
        now = clock.now()
        state = initial_state(config, now)
        if store is not None:
            store.save(state)
        controller = cls(state, clock=clock, lending=lending, pool=pool, identity=identity, store=store)
        logger.info(
            "initialized controller %s at t=%d (lending=%s period=%ds gate=%ds range=%dbps)",
            controller.identity, now, state.lending_protocol, state.observation_period,
            state.min_reallocation_time, state.price_range,
        )
        return controller

    @classmethod
    def restore(
        cls,
        store: FileStateStore,
        *,
        clock: Clock,
        lending: LendingProtocol,
        pool: LiquidityPool,
        identity: IdentityLike = "rebalancer",
    ) -> "RebalanceController":
        """Resume from a persisted record."""
        state = store.load()
        controller = cls(state, clock=clock, lending=lending, pool=pool, identity=identity, store=store)
        logger.info("restored controller %s from %s", controller.identity, store.path)
        return controller

    # -- read accessors ----------------------------------------------------

    @property
    def state(self) -> RebalancerState:
        return self._state

    @property
    def identity(self) -> str:
        return self._identity.self_identity()

    last_price = _state_property("last_price")
    last_timestamp = _state_property("last_timestamp")
    cumulative_price = _state_property("cumulative_price")
    observation_period = _state_property("observation_period")
    lending_protocol = _state_property("lending_protocol")
    amount_in_lending = _state_property("amount_in_lending")
    last_fee_collection = _state_property("last_fee_collection")
    last_reallocation = _state_property("last_reallocation")
    total_lending_fees = _state_property("total_lending_fees")
    lp_fees = _state_property("lp_fees")
    last_lp_fee_collection = _state_property("last_lp_fee_collection")
    auto_compound_enabled = _state_property("auto_compound_enabled")
    min_compound_amount = _state_property("min_compound_amount")
    total_compounded = _state_property("total_compounded")
    min_reallocation_time = _state_property("min_reallocation_time")
    price_range = _state_property("price_range")
    fee_collection_resets_gate = _state_property("fee_collection_resets_gate")

    def twap(self) -> int:
        """``cumulative_price // observation_period``."""
        return current_twap(self._state)

    # -- listeners ---------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # -- TWAP accumulator --------------------------------------------------

    def update_twap(self, price: int) -> StepResult:
        with self._exclusive():
            params = ActionParams(action=Action.UPDATE_TWAP, now=self._clock.now(), price=price)
            result = self._step(params)
            self._commit(params, result)
            logger.debug(
                "twap observation price=%d at t=%d cumulative=%d",
                price, params.now, result.state.cumulative_price,
            )
            return result

    # -- decision engine ---------------------------------------------------

    def check_and_reallocate(self, current_price: int) -> StepResult:
        """Park idle pool capital in the lending protocol when out of range."""
        with self._exclusive():
            now = self._clock.now()
            params = ActionParams(action=Action.CHECK_AND_REALLOCATE, now=now, price=current_price)
            check = plan_reallocation(self._state, now, current_price)
            if check.decision is Decision.OUT_OF_RANGE:
                idle = self._pool.idle_capital()
                # Dry run with the full idle amount before any funds move.
                self._step(replace(params, amount=idle))
                if idle > 0:
                    logger.debug("depositing %d into %s", idle, self._state.lending_protocol)
                    deposited = self._moved_amount("deposit", idle, self._lending.deposit(idle))
                    params = replace(params, amount=deposited)
            else:
                logger.debug(
                    "check_and_reallocate no-op at t=%d: %s (twap=%d deviation=%dbps)",
                    now, check.decision.value, check.twap, check.deviation_bps,
                )
            result = self._step(params)
            self._commit(params, result)
            return result

    def move_to_lp_if_in_range(self, current_price: int) -> StepResult:
        """Withdraw everything parked in the lending protocol once back in range."""
        with self._exclusive():
            now = self._clock.now()
            params = ActionParams(action=Action.MOVE_TO_LP_IF_IN_RANGE, now=now, price=current_price)
            check = plan_return(self._state, current_price)
            if check.decision is Decision.IN_RANGE:
                parked = self._state.amount_in_lending
                self._step(replace(params, amount=parked))
                logger.debug("withdrawing %d from %s", parked, self._state.lending_protocol)
                withdrawn = self._moved_amount("withdraw", parked, self._lending.withdraw(parked))
                params = replace(params, amount=withdrawn)
            else:
                logger.debug(
                    "move_to_lp_if_in_range no-op at t=%d: %s", now, check.decision.value,
                )
            result = self._step(params)
            self._commit(params, result)
            return result

    # -- fees & compounding ------------------------------------------------

    def collect_lending_fees(self) -> StepResult:
        with self._exclusive():
            now = self._clock.now()
            params = ActionParams(action=Action.COLLECT_LENDING_FEES, now=now)
            self._step(params)
            params = replace(params, amount=self._lending.accrued_yield())
            result = self._step(params)
            self._commit(params, result)
            return result

    def collect_lp_fees(self) -> StepResult:
        with self._exclusive():
            now = self._clock.now()
            params = ActionParams(action=Action.COLLECT_LP_FEES, now=now)
            self._step(params)
            params = replace(params, amount=self._pool.fees_owed())
            result = self._step(params)
            self._commit(params, result)
            return result

    def auto_compound_lp_fees(self) -> StepResult:
        """Reinvest accrued LP fees once they reach ``min_compound_amount``.

        Raises `AutoCompoundDisabledError` when the toggle is off; a balance
        below the threshold is an accepted no-op.
        """
        with self._exclusive():
            params = ActionParams(action=Action.AUTO_COMPOUND_LP_FEES, now=self._clock.now())
            result = self._step(params)
            if result.effect.event is Event.LP_FEES_COMPOUNDED:
                if result.effect.amount > 0:
                    self._pool.reinvest(result.effect.amount)
            else:
                logger.debug(
                    "auto_compound no-op: lp_fees=%d below min_compound_amount=%d",
                    self._state.lp_fees, self._state.min_compound_amount,
                )
            self._commit(params, result)
            return result

    # -- admin setters -----------------------------------------------------

    def set_auto_compound(self, enabled: bool) -> StepResult:
        return self._admin(ActionParams(action=Action.SET_AUTO_COMPOUND, enabled=enabled))

    def set_min_compound_amount(self, amount: int) -> StepResult:
        return self._admin(ActionParams(action=Action.SET_MIN_COMPOUND_AMOUNT, amount=amount))

    def set_min_reallocation_time(self, seconds: int) -> StepResult:
        return self._admin(ActionParams(action=Action.SET_MIN_REALLOCATION_TIME, amount=seconds))

    def set_price_range(self, bps: int) -> StepResult:
        return self._admin(ActionParams(action=Action.SET_PRICE_RANGE, amount=bps))

    def set_observation_period(self, seconds: int) -> StepResult:
        return self._admin(ActionParams(action=Action.SET_OBSERVATION_PERIOD, amount=seconds))

    def set_lending_protocol(self, identifier: str) -> StepResult:
        return self._admin(
            ActionParams(action=Action.SET_LENDING_PROTOCOL, lending_protocol=identifier)
        )

    def _admin(self, params: ActionParams) -> StepResult:
        with self._exclusive():
            params = replace(params, now=self._clock.now())
            result = self._step(params)
            self._commit(params, result)
            logger.info("%s applied by %s", params.action.value, self.identity)
            return result

    # -- internals ---------------------------------------------------------

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if self._busy:
            raise RebalancerReentrancyError("operation entered while another is in progress")
        self._busy = True
        try:
            yield
        finally:
            self._busy = False

    def _moved_amount(self, call: str, requested: int, reported: object) -> int:
        """Amount to record for a deposit or withdrawal that has already happened.

        Funds have moved by the time the lending protocol answers, so an answer
        outside the uint256 domain cannot reject the step. The requested
        amount, which the dry run already accepted, is recorded instead.
        """
        if is_uint(reported):
            return reported
        logger.error(
            "%s: lending %s returned %r; recording requested amount %d",
            self.identity, call, reported, requested,
        )
        return requested

    def _step(self, params: ActionParams) -> StepResult:
        try:
            return step_or_raise(self._state, params)
        except RebalancerError as exc:
            logger.warning("%s rejected at t=%d: %s", params.action.value, params.now, exc.code)
            raise

    def _commit(self, params: ActionParams, result: StepResult) -> None:
        new_state = result.state
        if new_state is not self._state and self._store is not None:
            self._store.save(new_state)
        self._state = new_state

        effect = result.effect
        if effect is None or effect.event is None:
            return
        identity = self.identity
        logger.info(
            "%s: %s amount=%d at t=%d (in_lending=%d lp_fees=%d)",
            identity, effect.event.value, effect.amount, params.now,
            effect.amount_in_lending_after, effect.lp_fees_after,
        )
        notification = Notification(
            event=effect.event,
            controller=identity,
            timestamp=params.now,
            amount=effect.amount,
            lending_protocol=new_state.lending_protocol,
            twap=effect.twap,
            deviation_bps=effect.deviation_bps,
            amount_in_lending_after=effect.amount_in_lending_after,
            lp_fees_after=effect.lp_fees_after,
        )
        for listener in list(self._listeners):
            listener(notification)
