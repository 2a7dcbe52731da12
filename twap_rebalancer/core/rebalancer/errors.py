"""Exception types for the rebalancer kernel.

Used by ``step_or_raise()`` in ``engine.py`` and by ``initial_state()`` for
callers that prefer exceptions over ``StepResult`` inspection.
"""

from __future__ import annotations


class RebalancerError(Exception):
    """Base class; ``code`` is the rejection string the kernel produced."""

    code: str = "rejected"

    def __init__(self, message: str | None = None, *, code: str | None = None) -> None:
        if code is not None:
            self.code = code
        super().__init__(message or self.code)


class InvalidTWAPError(RebalancerError):
    """Zero/negative observation interval, or an unusable observation period."""

    code = "invalid_twap"


class InvalidLendingProtocolError(RebalancerError):
    code = "invalid_lending_protocol"


class InvalidAmountError(RebalancerError):
    code = "invalid_amount"


class InvalidRangeError(RebalancerError):
    code = "invalid_range"


class AutoCompoundDisabledError(RebalancerError):
    code = "auto_compound_disabled"


class ClockRegressionError(RebalancerError):
    """Raised when ``now`` is older than a timestamp already on record."""

    code = "clock_regressed"


class RebalancerOverflowError(RebalancerError):
    """Raised when a uint256 field would overflow."""

    code = "overflow"


class RebalancerInvariantError(RebalancerError):
    """Raised when a post-state violates one or more invariants."""

    code = "invariant"

    def __init__(self, violations: list[str]) -> None:
        self.violations = violations
        super().__init__(f"invariant violations: {', '.join(violations)}")


class RebalancerReentrancyError(RebalancerError):
    """Raised when an operation is entered while another is still running."""

    code = "reentrant_call"
