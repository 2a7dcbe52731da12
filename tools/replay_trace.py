#!/usr/bin/env python3
"""
Replay a rebalancer trace against stub collaborators.

Example:
  python3 tools/replay_trace.py traces/out_of_range.yaml --out /tmp/report.json
"""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from twap_rebalancer.integration.replay import main


if __name__ == "__main__":
    raise SystemExit(main())
