"""`rebalancer`: pure-Python TWAP rebalancing kernel.

Three subsystems share one controller record:
- a TWAP accumulator fed by price observations,
- a decision engine that parks liquidity in a lending protocol when the
  price drifts more than `price_range` bps from the TWAP, and brings it back
  once it is in range again,
- an LP fee ledger with threshold-gated auto-compounding.

Transitions are deterministic and integer-only, state is immutable (frozen
dataclasses), and guards and invariant checks fail closed.

Public API:
- `initial_state(config, now) -> RebalancerState`
- `step(state, params) -> StepResult`
- `step_or_raise(state, params) -> StepResult` (raises on rejection)
- `plan_reallocation(state, now, price)` / `plan_return(state, price)`
"""

from .decision import RangeCheck, current_twap, plan_reallocation, plan_return
from .engine import error_for, step, step_or_raise
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
    RebalancerReentrancyError,
)
from .state import initial_state, state_from_dict, state_to_dict, validate_config
from .types import (
    Action,
    ActionParams,
    Decision,
    Effect,
    ErrorCode,
    Event,
    RebalancerConfig,
    RebalancerState,
    StepResult,
)

__all__ = [
    "step",
    "step_or_raise",
    "error_for",
    "initial_state",
    "validate_config",
    "state_from_dict",
    "state_to_dict",
    "current_twap",
    "plan_reallocation",
    "plan_return",
    "RangeCheck",
    "Action",
    "ActionParams",
    "Decision",
    "Effect",
    "ErrorCode",
    "Event",
    "RebalancerConfig",
    "RebalancerState",
    "StepResult",
    "RebalancerError",
    "InvalidTWAPError",
    "InvalidLendingProtocolError",
    "InvalidAmountError",
    "InvalidRangeError",
    "AutoCompoundDisabledError",
    "ClockRegressionError",
    "RebalancerOverflowError",
    "RebalancerInvariantError",
    "RebalancerReentrancyError",
]
