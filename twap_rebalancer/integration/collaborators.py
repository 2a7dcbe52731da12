"""
External collaborators consumed by the rebalance controller.

The controller only sees these interfaces. Real lending-protocol and pool
adapters live outside this package; the stubs here are deterministic
stand-ins for tests, trace replay and dry runs.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import List, Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    def now(self) -> int:
        """Current time in integer seconds, non-decreasing."""


@runtime_checkable
class Identity(Protocol):
    def self_identity(self) -> str:
        """Identifier attached to every notification."""


@runtime_checkable
class LendingProtocol(Protocol):
    def deposit(self, amount: int) -> int:
        """Deposit ``amount``; returns the amount actually deposited."""

    def withdraw(self, amount: int) -> int:
        """Withdraw ``amount``; returns the amount actually withdrawn."""

    def accrued_yield(self) -> int:
        """Yield accrued since the previous call."""


@runtime_checkable
class LiquidityPool(Protocol):
    def idle_capital(self) -> int:
        """Capital of this position that is not earning in the active range."""

    def fees_owed(self) -> int:
        """LP fees owed to this position since the previous call."""

    def reinvest(self, amount: int) -> None:
        """Add ``amount`` of collected fees back into the position."""


class SystemClock:
    """Wall clock, truncated to whole seconds."""

    def now(self) -> int:
        return int(time.time())


@dataclass(frozen=True)
class StaticIdentity:
    """Fixed identifier, e.g. the deployment name of the controller."""

    name: str

    def self_identity(self) -> str:
        return self.name


@dataclass
class ManualClock:
    """Clock driven explicitly by the caller."""

    current: int = 0

    def now(self) -> int:
        return self.current

    def set(self, timestamp: int) -> None:
        if timestamp < self.current:
            raise ValueError(f"clock cannot move backwards: {timestamp} < {self.current}")
        self.current = timestamp

    def advance(self, seconds: int) -> None:
        if seconds < 0:
            raise ValueError(f"seconds must be non-negative: {seconds}")
        self.current += seconds


@dataclass
class StubLendingProtocol:
    """Echoes deposits and withdrawals and pays a fixed yield per collection.

    ``yield_per_collection`` defaults to 0, matching a lending integration
    whose yield query has not been wired up yet.
    """

    yield_per_collection: int = 0
    balance: int = 0

    def deposit(self, amount: int) -> int:
        self.balance += amount
        return amount

    def withdraw(self, amount: int) -> int:
        if amount > self.balance:
            raise ValueError(f"withdraw exceeds balance: {amount} > {self.balance}")
        self.balance -= amount
        return amount

    def accrued_yield(self) -> int:
        return self.yield_per_collection


@dataclass
class StubLiquidityPool:
    """Pool position with settable idle capital and a fixed fee per collection.

    The pool does not see lending movements; callers that simulate them
    adjust ``idle`` themselves. Reinvested amounts are recorded in
    ``reinvested``.
    """

    idle: int = 0
    fees_per_collection: int = 0
    reinvested: List[int] = field(default_factory=list)

    def idle_capital(self) -> int:
        return self.idle

    def fees_owed(self) -> int:
        return self.fees_per_collection

    def reinvest(self, amount: int) -> None:
        self.reinvested.append(amount)
