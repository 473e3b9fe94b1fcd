"""A build step that checkpoints its progress and exits cleanly when signalled.

Run it under the wrapper so it is told to stop before Cloud Build kills it:

    cloudbuild-timeout --before-timeout 2m "$PROJECT_ID" "$BUILD_ID" -- \
        python examples/graceful_step.py /workspace/step_state.json
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path
import signal
import sys
import time


_stop = False


def _handle(sig: int, _frame) -> None:
    global _stop
    _stop = True
    print(f"received {signal.Signals(sig).name}, writing checkpoint...", flush=True)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument("state_path", nargs="?", default="step_state.json")
    parser.add_argument("--units", type=int, default=600)
    parser.add_argument("--unit-seconds", type=float, default=0.1)
    args = parser.parse_args(argv)

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)

    state_path = Path(args.state_path)
    lock_path = state_path.with_suffix(".lock")
    lock_path.touch()

    completed = 0
    try:
        while not _stop and completed < args.units:
            time.sleep(args.unit_seconds)
            completed += 1
    finally:
        state_path.write_text(
            json.dumps({"completed_units": completed, "interrupted": _stop}),
            encoding="utf-8",
        )
        lock_path.unlink(missing_ok=True)

    print(f"step finished after {completed} units", flush=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
