#!/usr/bin/env python3
"""update-pr CLI - pull, merge the integration branch, push if it moved."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any, Dict

# Fail fast on unsupported interpreter version
if sys.version_info < (3, 10):
    print(f"update-pr requires Python 3.10+; found {sys.version.split()[0]}", file=sys.stderr)
    sys.exit(1)

from . import __version__
from .errors import ConfigError, UpdatePrError


def _duration_arg(value: str) -> str:
    from .duration import parse_duration

    try:
        parse_duration(value)
    except ConfigError as e:
        raise argparse.ArgumentTypeError(str(e)) from e
    return value


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="update-pr",
        description=(
            "Pull the current branch, merge the integration branch into it, "
            "and push when that merge moved the branch."
        ),
    )
    ap.add_argument("working_dir", nargs="?", help="Optional working directory (default: current directory)")
    ap.add_argument(
        "-d",
        dest="delay",
        type=_duration_arg,
        metavar="DELAY",
        help="Delay between attempts. If this is not set, it will try only once. Examples: -d 10s -d 3m",
    )
    ap.add_argument("--remote", help="Remote to sync with (default: origin or $UPDATE_PR_REMOTE)")
    ap.add_argument("--branch", help="Integration branch to merge (default: main or $UPDATE_PR_BRANCH)")
    ap.add_argument("--ssh-key", help="SSH private key to use instead of the SSH agent")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return ap


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    sync = {
        key: value
        for key, value in (("remote", args.remote), ("branch", args.branch), ("delay", args.delay))
        if value is not None
    }
    if sync:
        overrides["sync"] = sync
    if args.ssh_key:
        overrides["git"] = {"ssh_key": args.ssh_key}
    return overrides


def run(argv: list[str] | None = None) -> int:
    """Parse ``argv``, run the sync loop and return the process exit code."""
    args = build_parser().parse_args(argv)

    from .app import build_sync_loop
    from .config_loader import load_config
    from .observability import log_error

    working_dir = Path(args.working_dir or ".")
    try:
        config = load_config(working_dir, overrides=_overrides(args))
        loop = build_sync_loop(working_dir, config)
    except UpdatePrError as e:
        log_error("startup failed", error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return e.exit_code

    return loop.run()


def main(argv: list[str] | None = None) -> None:
    sys.exit(run(argv))


if __name__ == "__main__":
    main()
