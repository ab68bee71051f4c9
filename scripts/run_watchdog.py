#!/usr/bin/env python3
"""Run the software watchdog from a source checkout.

Usage examples:
  - python scripts/run_watchdog.py 500 --activate --publish
  - python scripts/run_watchdog.py 500 --api-port 9500

Same arguments as the installed ``sw-watchdog`` command.
"""

from __future__ import annotations

import sys
from pathlib import Path


# Ensure src is on sys.path (similar to the tests)
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from sw_watchdog.app.main import main  # type: ignore  # noqa: E402


if __name__ == "__main__":
    main()
