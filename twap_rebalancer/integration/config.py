"""
Fail-closed YAML configuration for a rebalance controller.

Layout:

    controller:
      identity: "rebalancer-1"
    rebalancer:
      lending_protocol: "aave-v3"
      observation_period: 3600
      min_reallocation_time: 1800
      price_range: 100
      min_compound_amount: 0
      auto_compound_enabled: false
      initial_price: 0
      fee_collection_resets_gate: false

Unknown keys are rejected. Range checks beyond types are left to
`validate_config` so file and programmatic configs fail the same way.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping

import yaml

from ..core.rebalancer import RebalancerConfig, RebalancerError, validate_config


class ConfigError(ValueError):
    """Raised for malformed configuration files."""


@dataclass(frozen=True)
class ControllerSettings:
    identity: str = "rebalancer"


@dataclass(frozen=True)
class LoadedConfig:
    controller: ControllerSettings
    rebalancer: RebalancerConfig


_REQUIRED_INT = ("observation_period", "min_reallocation_time", "price_range")
_OPTIONAL_INT = ("min_compound_amount", "initial_price")
_OPTIONAL_BOOL = ("auto_compound_enabled", "fee_collection_resets_gate")
_ALLOWED_REBALANCER_KEYS = frozenset(f.name for f in fields(RebalancerConfig))
_ALLOWED_CONTROLLER_KEYS = frozenset(f.name for f in fields(ControllerSettings))


def require_mapping(obj: Any, *, name: str) -> Mapping[str, Any]:
    if not isinstance(obj, Mapping):
        raise ConfigError(f"{name} must be a mapping")
    return obj


def require_str(obj: Any, *, name: str) -> str:
    if not isinstance(obj, str) or not obj.strip():
        raise ConfigError(f"{name} must be a non-empty string")
    return obj.strip()


def require_int(obj: Any, *, name: str) -> int:
    if not isinstance(obj, int) or isinstance(obj, bool):
        raise ConfigError(f"{name} must be an int")
    if obj < 0:
        raise ConfigError(f"{name} must be non-negative")
    return obj


def require_bool(obj: Any, *, name: str) -> bool:
    if not isinstance(obj, bool):
        raise ConfigError(f"{name} must be a bool")
    return obj


def _reject_unknown(section: Mapping[str, Any], allowed: frozenset[str], *, name: str) -> None:
    unknown = sorted(set(section) - allowed)
    if unknown:
        raise ConfigError(f"unknown {name} keys: {', '.join(unknown)}")


def rebalancer_config_from_mapping(section: Mapping[str, Any]) -> RebalancerConfig:
    section = require_mapping(section, name="rebalancer")
    _reject_unknown(section, _ALLOWED_REBALANCER_KEYS, name="rebalancer")

    kwargs: dict[str, Any] = {
        "lending_protocol": require_str(section.get("lending_protocol"), name="rebalancer.lending_protocol"),
    }
    for key in _REQUIRED_INT:
        if key not in section:
            raise ConfigError(f"rebalancer.{key} is required")
        kwargs[key] = require_int(section[key], name=f"rebalancer.{key}")
    for key in _OPTIONAL_INT:
        if key in section:
            kwargs[key] = require_int(section[key], name=f"rebalancer.{key}")
    for key in _OPTIONAL_BOOL:
        if key in section:
            kwargs[key] = require_bool(section[key], name=f"rebalancer.{key}")

    config = RebalancerConfig(**kwargs)
    try:
        validate_config(config)
    except RebalancerError as exc:
        raise ConfigError(f"rebalancer: {exc}") from exc
    return config


def config_from_mapping(obj: Any) -> LoadedConfig:
    root = require_mapping(obj, name="config")
    _reject_unknown(root, frozenset({"controller", "rebalancer"}), name="top-level")
    if "rebalancer" not in root:
        raise ConfigError("rebalancer section is required")

    controller_section = require_mapping(root.get("controller") or {}, name="controller")
    _reject_unknown(controller_section, _ALLOWED_CONTROLLER_KEYS, name="controller")
    controller = ControllerSettings()
    if "identity" in controller_section:
        controller = ControllerSettings(
            identity=require_str(controller_section["identity"], name="controller.identity")
        )

    return LoadedConfig(
        controller=controller,
        rebalancer=rebalancer_config_from_mapping(root["rebalancer"]),
    )


def load_config(path: str | Path) -> LoadedConfig:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"config file not found: {path}")
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"{path}: invalid YAML: {exc}") from exc
    return config_from_mapping(raw)
