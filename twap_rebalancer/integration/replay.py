"""
Deterministic trace replay for the rebalance controller.

A trace is a YAML (or JSON) document:

    config:            # same layout as config.py
      rebalancer: {...}
    start: 0           # clock reading at initialization
    pool: {idle_capital: 1000, fees_per_collection: 5}
    lending: {yield_per_collection: 0}
    steps:
      - {at: 1000, op: update_twap, price: 100}
      - {at: 4600, op: check_and_reallocate, price: 150}

Each step runs against stub collaborators driven by a manual clock. Rejected
steps are recorded with their error code and the replay continues. The report
lists per-step outcomes, every notification, the final record and its
snapshot commitment.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import yaml

from ..core.rebalancer import Event, RebalancerError, StepResult, state_to_dict
from .collaborators import ManualClock, StubLendingProtocol, StubLiquidityPool
from .config import ConfigError, require_int, require_mapping, require_str, config_from_mapping
from .controller import Notification, RebalanceController
from .snapshot import snapshot_from_state

logger = logging.getLogger(__name__)

# op -> (trace argument name, controller method argument kind)
_OPS: Dict[str, tuple[Optional[str], str]] = {
    "update_twap": ("price", "int"),
    "check_and_reallocate": ("price", "int"),
    "move_to_lp_if_in_range": ("price", "int"),
    "collect_lending_fees": (None, ""),
    "collect_lp_fees": (None, ""),
    "auto_compound_lp_fees": (None, ""),
    "set_auto_compound": ("enabled", "bool"),
    "set_min_compound_amount": ("amount", "int"),
    "set_min_reallocation_time": ("seconds", "int"),
    "set_price_range": ("bps", "int"),
    "set_observation_period": ("seconds", "int"),
    "set_lending_protocol": ("identifier", "str"),
}

# Trace-only ops that drive the stub pool instead of the controller.
_POOL_OPS = frozenset({"set_idle_capital", "set_fees_per_collection"})


def _notification_to_dict(n: Notification) -> Dict[str, Any]:
    d = asdict(n)
    d["event"] = n.event.value
    return d


def _step_outcome(result: StepResult) -> Dict[str, Any]:
    effect = result.effect
    out: Dict[str, Any] = {"ok": True}
    if effect is not None:
        out["decision"] = effect.decision.value
        if effect.event is not None:
            out["event"] = effect.event.value
            out["amount"] = effect.amount
    return out


def _step_argument(step: Mapping[str, Any], name: str, kind: str, *, where: str) -> Any:
    if name not in step:
        raise ConfigError(f"{where}.{name} is required")
    value = step[name]
    if kind == "int":
        # Negative values are passed through so the controller rejects them.
        if not isinstance(value, int) or isinstance(value, bool):
            raise ConfigError(f"{where}.{name} must be an int")
        return value
    if kind == "bool":
        if not isinstance(value, bool):
            raise ConfigError(f"{where}.{name} must be a bool")
        return value
    return require_str(value, name=f"{where}.{name}")


def run_trace(trace: Mapping[str, Any]) -> Dict[str, Any]:
    """Replay ``trace`` and return the JSON-serializable report."""
    trace = require_mapping(trace, name="trace")
    loaded = config_from_mapping(trace.get("config"))
    pool_cfg = require_mapping(trace.get("pool") or {}, name="pool")
    lending_cfg = require_mapping(trace.get("lending") or {}, name="lending")
    steps = trace.get("steps") or []
    if not isinstance(steps, list):
        raise ConfigError("steps must be a list")

    clock = ManualClock(require_int(trace.get("start", 0), name="start"))
    pool = StubLiquidityPool(
        idle=require_int(pool_cfg.get("idle_capital", 0), name="pool.idle_capital"),
        fees_per_collection=require_int(
            pool_cfg.get("fees_per_collection", 0), name="pool.fees_per_collection"
        ),
    )
    lending = StubLendingProtocol(
        yield_per_collection=require_int(
            lending_cfg.get("yield_per_collection", 0), name="lending.yield_per_collection"
        ),
    )
    controller = RebalanceController.initialize(
        loaded.rebalancer,
        clock=clock,
        lending=lending,
        pool=pool,
        identity=loaded.controller.identity,
    )

    notifications: List[Dict[str, Any]] = []

    def on_notification(n: Notification) -> None:
        # Liquidity leaving or re-entering the pool changes its idle capital.
        if n.event is Event.MOVED_TO_LENDING:
            pool.idle -= n.amount
        elif n.event is Event.MOVED_TO_LP:
            pool.idle += n.amount
        notifications.append(_notification_to_dict(n))

    controller.subscribe(on_notification)
    logger.info("replaying %d steps for %s", len(steps), controller.identity)

    outcomes: List[Dict[str, Any]] = []
    for i, raw_step in enumerate(steps):
        where = f"steps[{i}]"
        step = require_mapping(raw_step, name=where)
        op = require_str(step.get("op"), name=f"{where}.op")
        at = require_int(step.get("at", clock.now()), name=f"{where}.at")
        if at < clock.now():
            raise ConfigError(f"{where}.at moves the clock backwards ({at} < {clock.now()})")
        clock.set(at)

        if op in _POOL_OPS:
            value = _step_argument(step, "amount", "int", where=where)
            if op == "set_idle_capital":
                pool.idle = value
            else:
                pool.fees_per_collection = value
            outcomes.append({"at": at, "op": op, "ok": True})
            continue

        entry = _OPS.get(op)
        if entry is None:
            raise ConfigError(f"{where}.op: unknown operation {op!r}")
        arg_name, kind = entry
        method = getattr(controller, op)
        args = [] if arg_name is None else [_step_argument(step, arg_name, kind, where=where)]
        try:
            result = method(*args)
        except RebalancerError as exc:
            logger.info("%s: step %d (%s) rejected: %s", controller.identity, i, op, exc.code)
            outcomes.append({"at": at, "op": op, "ok": False, "error": exc.code})
            continue
        outcomes.append({"at": at, "op": op, **_step_outcome(result)})

    snapshot = snapshot_from_state(controller.state)
    return {
        "controller": controller.identity,
        "steps": outcomes,
        "notifications": notifications,
        "final_state": state_to_dict(controller.state),
        "twap": controller.twap(),
        "commitment": snapshot.commitment_hex(),
    }


def load_trace(path: str | Path) -> Mapping[str, Any]:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"trace file not found: {path}")
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"{path}: invalid YAML: {exc}") from exc


def main(argv: Optional[Sequence[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Replay a rebalancer trace and print a JSON report.")
    ap.add_argument("trace", type=str, help="YAML/JSON trace file")
    ap.add_argument("--out", type=str, default="", help="write the report here instead of stdout")
    ap.add_argument("--log-level", type=str, default="WARNING")
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        report = run_trace(load_trace(args.trace))
    except (ConfigError, FileNotFoundError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    payload = json.dumps(report, indent=2, sort_keys=True)
    if args.out:
        out_path = Path(args.out)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(payload + "\n", encoding="utf-8")
        print(f"Wrote {out_path}")
    else:
        print(payload)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
