#!/usr/bin/env python3
"""Run caselink from a source checkout: ``python run.py repair-links data.json``."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from caselink.cli import main  # noqa: E402

if __name__ == "__main__":
    raise SystemExit(main())
