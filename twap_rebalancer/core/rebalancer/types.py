"""Data types for the `rebalancer` kernel.

All types are frozen dataclasses (immutable). One `RebalancerState` holds the
whole controller record: TWAP accumulator, lending position, LP fee ledger and
configuration form a single consistency domain.

Units/conventions:
- prices are integer quote-token units,
- times are integer seconds (host clock),
- `price_range` is basis points (1/10_000),
- every amount is an unsigned integer bounded by `MAX_UINT256`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, unique


@unique
class Action(Enum):
    """One member per kernel operation."""
    UPDATE_TWAP = "update_twap"
    CHECK_AND_REALLOCATE = "check_and_reallocate"
    MOVE_TO_LP_IF_IN_RANGE = "move_to_lp_if_in_range"
    COLLECT_LENDING_FEES = "collect_lending_fees"
    COLLECT_LP_FEES = "collect_lp_fees"
    AUTO_COMPOUND_LP_FEES = "auto_compound_lp_fees"
    SET_AUTO_COMPOUND = "set_auto_compound"
    SET_MIN_COMPOUND_AMOUNT = "set_min_compound_amount"
    SET_MIN_REALLOCATION_TIME = "set_min_reallocation_time"
    SET_PRICE_RANGE = "set_price_range"
    SET_OBSERVATION_PERIOD = "set_observation_period"
    SET_LENDING_PROTOCOL = "set_lending_protocol"


@unique
class Event(Enum):
    """Notifications emitted by triggering transitions."""
    MOVED_TO_LENDING = "MovedToLending"
    MOVED_TO_LP = "MovedToLP"
    LENDING_FEES_COLLECTED = "LendingFeesCollected"
    LP_FEES_COLLECTED = "LPFeesCollected"
    LP_FEES_COMPOUNDED = "LPFeesCompounded"


@unique
class Decision(Enum):
    """Outcome of a range evaluation (see `decision.py`)."""
    GATED = "gated"
    NO_SIGNAL = "no_signal"
    NOT_PARKED = "not_parked"
    IN_RANGE = "in_range"
    OUT_OF_RANGE = "out_of_range"
    NOTHING_IDLE = "nothing_idle"
    BELOW_THRESHOLD = "below_threshold"
    APPLIED = "applied"


@unique
class ErrorCode(Enum):
    """Rejection codes carried by `StepResult.rejection`."""
    INVALID_TWAP = "invalid_twap"
    INVALID_LENDING_PROTOCOL = "invalid_lending_protocol"
    INVALID_AMOUNT = "invalid_amount"
    INVALID_RANGE = "invalid_range"
    AUTO_COMPOUND_DISABLED = "auto_compound_disabled"
    CLOCK_REGRESSED = "clock_regressed"


@dataclass(frozen=True)
class RebalancerConfig:
    """Initialization parameters for a controller record."""

    lending_protocol: str
    observation_period: int
    min_reallocation_time: int
    price_range: int
    min_compound_amount: int = 0
    auto_compound_enabled: bool = False
    initial_price: int = 0
    fee_collection_resets_gate: bool = False


@dataclass(frozen=True)
class RebalancerState:
    """Complete controller record."""

    # TWAP accumulator
    last_price: int = 0
    last_timestamp: int = 0
    cumulative_price: int = 0
    observation_period: int = 1

    # Lending / idle capital
    lending_protocol: str = ""
    amount_in_lending: int = 0
    last_fee_collection: int = 0
    last_reallocation: int = 0
    total_lending_fees: int = 0

    # LP fees
    lp_fees: int = 0
    last_lp_fee_collection: int = 0
    auto_compound_enabled: bool = False
    min_compound_amount: int = 0
    total_compounded: int = 0

    # Configuration
    min_reallocation_time: int = 0
    price_range: int = 100
    fee_collection_resets_gate: bool = False


@dataclass(frozen=True)
class ActionParams:
    """Parameters for an action. Unused fields default to 0/False/""."""

    action: Action
    now: int = 0                  # shared: host clock reading
    price: int = 0                # update_twap / check_and_reallocate / move_to_lp_if_in_range
    amount: int = 0               # deposited / withdrawn / yield / fees owed / setter values
    enabled: bool = False         # set_auto_compound
    lending_protocol: str = ""    # set_lending_protocol


@dataclass(frozen=True)
class Effect:
    """Post-state observables emitted after a successful step.

    `event` is None for accepted no-ops and for steps that never notify
    (TWAP updates, admin setters).
    """

    action: Action
    decision: Decision
    event: Event | None = None
    amount: int = 0
    twap: int = 0
    deviation_bps: int = 0
    amount_in_lending_after: int = 0
    lp_fees_after: int = 0


@dataclass(frozen=True)
class StepResult:
    """Result of a single engine step."""

    accepted: bool
    state: RebalancerState | None = None
    effect: Effect | None = None
    rejection: str | None = None
