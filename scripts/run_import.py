"""
Script to run one CSV import from the command line

Usage:
    python scripts/run_import.py                 # configured IMPORT_SOURCE
    python scripts/run_import.py remote
    python scripts/run_import.py /data/posts.csv --no-resume
"""

import argparse
import asyncio
import json
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import engine
from core.logging import setup_logging
from ingestion.runner import run_import

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a streaming CSV import")
    parser.add_argument(
        "source",
        nargs="?",
        default=settings.IMPORT_SOURCE,
        help="local, remote, dropbox, a file path or an http(s) URL (default: IMPORT_SOURCE)"
    )
    parser.add_argument(
        "--no-resume",
        dest="resume",
        action="store_false",
        help="Ignore any checkpoint left by an interrupted run"
    )
    parser.add_argument("--json", action="store_true", help="Print the result summary as JSON")
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging()

    try:
        result = await run_import(args.source, resume=args.resume)
    finally:
        await engine.dispose()

    if args.json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        print(f"[{result.status.value}] {result.message}")
        print(
            f"Processed: {result.processed}  Skipped: {result.skipped}  "
            f"Errors: {result.errors}  Time: {result.duration}s"
        )
        for message in result.error_messages:
            print(f"  - {message}")
        for suggestion in result.suggestions:
            print(f"  * {suggestion}")

    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
