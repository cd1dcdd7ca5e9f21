"""
Command-line entry point for the weekly digest.

Usage:
    neighborly-digest tick [--now 2026-10-18T13:00:00Z] [--snapshot data/snapshot.json]
    neighborly-digest run COMMUNITY_ID [--test-recipient you@example.com]
                                       [--preview [--output digest.html]] [--debug]
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from neighborly.contracts.models import DigestMode, DigestRequest
from neighborly.digest.aggregator import parse_timestamp
from neighborly.digest.errors import CommunityNotFoundError
from neighborly.digest.service import build_default_components
from neighborly.observability.logging import get_logger

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Neighborly weekly community digest")
    parser.add_argument(
        "--snapshot",
        type=Path,
        default=None,
        help="Path to the JSON snapshot (default: NEIGHBORLY_SNAPSHOT_PATH)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    tick = subparsers.add_parser("tick", help="Send every digest that is due now")
    tick.add_argument("--now", default=None, help="ISO-8601 instant to evaluate (default: now)")

    run = subparsers.add_parser("run", help="Run the digest for one community")
    run.add_argument("community_id")
    run.add_argument("--test-recipient", default=None, help="Send only to this address")
    run.add_argument("--preview", action="store_true", help="Render without sending")
    run.add_argument("--debug", action="store_true", help="Print aggregated/grouped data")
    run.add_argument("--output", type=Path, default=None, help="Write preview HTML here")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    components = build_default_components(args.snapshot)

    if args.command == "tick":
        now = parse_timestamp(args.now) if args.now else None
        report = components.scheduler.tick(now)
        print(json.dumps(report.to_dict(), indent=2))
        return 1 if report.errors else 0

    request = DigestRequest(
        community_id=args.community_id,
        test_recipient=args.test_recipient,
        preview_only=args.preview,
        debug=args.debug,
    )
    try:
        result = components.service.invoke(request)
    except CommunityNotFoundError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2

    if request.mode is DigestMode.PREVIEW and args.output:
        args.output.write_text(result.html or "", encoding="utf-8")
        print(f"Preview written to {args.output}")
    elif request.mode is DigestMode.PREVIEW:
        print(result.html or "")
    else:
        print(json.dumps(result.to_dict(), indent=2, default=str))

    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
