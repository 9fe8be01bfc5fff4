#!/usr/bin/env python3
"""Cron-safe wrapper around a single wg-guardian pass."""

from __future__ import annotations

import argparse
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional, Sequence

import fcntl

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from wg_guardian.runner import configure_logging, main as run_main  # noqa: E402

LOG_FILE = REPO_ROOT / "logs" / "guardian.log"
LOCK_FILE = REPO_ROOT / "state" / "guardian.lock"


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run wg-guardian once under an exclusive lock")
    parser.add_argument("config", help="Config file passed through to wg-guardian")
    parser.add_argument("--state-dir", help="Directory for per-client state and the API cache")
    parser.add_argument("--keys-dir", help="PiVPN-style directory of <name>_pub key files")
    return parser.parse_args(argv)


def _forwarded_args(args: argparse.Namespace) -> List[str]:
    forwarded = [args.config]
    if args.state_dir:
        forwarded += ["--state-dir", args.state_dir]
    if args.keys_dir:
        forwarded += ["--keys-dir", args.keys_dir]
    return forwarded


@contextmanager
def _lock_execution(path: Path):
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            raise SystemExit("wg-guardian runner already active")
        yield


def main() -> int:
    args = _parse_args()
    logger = configure_logging(LOG_FILE)
    forwarded = _forwarded_args(args)

    try:
        with _lock_execution(LOCK_FILE):
            return run_main(forwarded)
    except Exception as exc:  # noqa: BLE001
        logger.exception("guardian run failed: %s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
