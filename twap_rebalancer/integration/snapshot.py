"""
Controller record snapshots and the durable file store.

Goals:
- Deterministic JSON serialization for hashing / audit.
- Round-trippable into the kernel `RebalancerState`.
- Explicit versioning for future layout changes.
"""

from __future__ import annotations

import hashlib
import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping

from ..core.rebalancer import RebalancerState, state_from_dict, state_to_dict


SNAPSHOT_VERSION = 1
_DOMAIN = "twap_rebalancer/snapshot"


class SnapshotError(ValueError):
    """Raised for malformed, mismatched or tampered snapshots."""


def canonical_json_bytes(value: Any) -> bytes:
    """
    Canonical JSON encoding for hashing.

    Rules: UTF-8, sorted keys, no whitespace, NaN rejected, floats rejected.
    """
    _reject_floats(value)
    return json.dumps(
        value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False
    ).encode("utf-8")


def _reject_floats(value: Any) -> None:
    if isinstance(value, float):
        raise TypeError("floats are not allowed in canonical encoding")
    if isinstance(value, dict):
        for v in value.values():
            _reject_floats(v)
    elif isinstance(value, (list, tuple)):
        for item in value:
            _reject_floats(item)


def _domain_sep(version: int) -> bytes:
    return f"{_DOMAIN}:v{version}".encode("utf-8") + b"\x00"


@dataclass(frozen=True)
class RebalancerSnapshot:
    """
    Versioned snapshot of a controller record.

    The commitment is *not* included inside `data` to avoid self-reference.
    """

    version: int
    data: Dict[str, Any]

    def canonical_bytes(self) -> bytes:
        return canonical_json_bytes(self.data)

    def commitment_hex(self) -> str:
        return hashlib.sha256(_domain_sep(self.version) + self.canonical_bytes()).hexdigest()

    def to_json_dict(self) -> Dict[str, Any]:
        return {"version": self.version, "commitment": self.commitment_hex(), "data": self.data}


def snapshot_from_state(state: RebalancerState, *, version: int = SNAPSHOT_VERSION) -> RebalancerSnapshot:
    if not isinstance(version, int) or isinstance(version, bool) or version <= 0:
        raise ValueError("version must be a positive int")
    return RebalancerSnapshot(version=version, data=state_to_dict(state))


def state_from_snapshot(snapshot: RebalancerSnapshot) -> RebalancerState:
    if snapshot.version != SNAPSHOT_VERSION:
        raise SnapshotError(f"unsupported snapshot version: {snapshot.version}")
    try:
        return state_from_dict(snapshot.data)
    except (KeyError, TypeError, ValueError) as exc:
        raise SnapshotError(f"invalid snapshot data: {exc}") from exc


def snapshot_from_json_dict(obj: Mapping[str, Any]) -> RebalancerSnapshot:
    """Parse and verify a snapshot produced by `RebalancerSnapshot.to_json_dict()`."""
    if not isinstance(obj, Mapping):
        raise SnapshotError("snapshot must be an object")
    version = obj.get("version")
    data = obj.get("data")
    commitment = obj.get("commitment")
    if not isinstance(version, int) or isinstance(version, bool):
        raise SnapshotError("snapshot version must be an int")
    if not isinstance(data, dict):
        raise SnapshotError("snapshot data must be an object")
    if not isinstance(commitment, str):
        raise SnapshotError("snapshot commitment must be a string")
    snapshot = RebalancerSnapshot(version=version, data=data)
    if snapshot.commitment_hex() != commitment.lower():
        raise SnapshotError("snapshot commitment mismatch")
    return snapshot


class FileStateStore:
    """Durable controller record backed by one JSON file.

    Writes go to a temporary file in the same directory and are moved into
    place with `os.replace`, so a crash mid-write leaves the previous record.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> RebalancerState:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise SnapshotError(f"{self.path}: invalid JSON: {exc}") from exc
        return state_from_snapshot(snapshot_from_json_dict(raw))

    def save(self, state: RebalancerState) -> str:
        """Persist ``state``; returns the snapshot commitment."""
        snapshot = snapshot_from_state(state)
        payload = json.dumps(snapshot.to_json_dict(), indent=2, sort_keys=True) + "\n"
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=self.path.name + ".", suffix=".tmp", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return snapshot.commitment_hex()
