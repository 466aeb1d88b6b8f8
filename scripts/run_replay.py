from __future__ import annotations

import sys

from live_timing.cli.main import cli

"""Runnable wrapper for the replay server.

Equivalent to `live-timing replay`; kept for tooling that expects a file.
Example: python scripts/run_replay.py --file race.json --speed 20
"""

if __name__ == "__main__":  # pragma: no cover
    cli(["replay", *sys.argv[1:]])
