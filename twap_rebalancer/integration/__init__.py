"""
Integration shell for the rebalancer kernel: collaborators, controller,
configuration, snapshots and trace replay.
"""

from .collaborators import (
    Clock,
    Identity,
    LendingProtocol,
    LiquidityPool,
    ManualClock,
    StubLendingProtocol,
    StaticIdentity,
    StubLiquidityPool,
    SystemClock,
)
from .config import ConfigError, ControllerSettings, LoadedConfig, load_config
from .controller import Notification, RebalanceController
from .snapshot import FileStateStore, RebalancerSnapshot, SnapshotError, snapshot_from_state

__all__ = [
    "Clock",
    "Identity",
    "LendingProtocol",
    "LiquidityPool",
    "ManualClock",
    "SystemClock",
    "StaticIdentity",
    "StubLendingProtocol",
    "StubLiquidityPool",
    "ConfigError",
    "ControllerSettings",
    "LoadedConfig",
    "load_config",
    "Notification",
    "RebalanceController",
    "FileStateStore",
    "RebalancerSnapshot",
    "SnapshotError",
    "snapshot_from_state",
]
