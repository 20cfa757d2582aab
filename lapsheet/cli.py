from __future__ import annotations

import argparse
import dataclasses
import json
import logging
from typing import Sequence

from .config import Settings
from .pipeline import run_once


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Copy the latest Garmin Connect swim's lap splits into a Google Sheet tab."
    )
    parser.add_argument(
        "--no-publish",
        action="store_true",
        help="Build the report but skip the Google Sheets upload.",
    )
    parser.add_argument(
        "--activity-type",
        help="Text to look for in the activity list (overrides GARMIN_TARGET_ACTIVITY_TYPE_STRING).",
    )
    parser.add_argument("--log-level", help="Logging level (overrides LOG_LEVEL).")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = Settings.from_env()
    if args.activity_type:
        settings = dataclasses.replace(settings, target_activity_type=args.activity_type)
    _configure_logging(args.log_level or settings.log_level)

    result = run_once(settings, publish=not args.no_publish)
    print(json.dumps(result, indent=2, default=str))
    return 0 if result.get("status") == "ok" else 1


if __name__ == "__main__":
    raise SystemExit(main())
