# main.py
"""CLI entry point for the story-sync queue tools."""

from __future__ import annotations

import argparse

from orchestration.cli_runner import run


def main() -> None:
    """Parse command-line arguments and run the sync queue tools."""
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--status", action="store_true", help="Show pending sync jobs"
    )
    parser.add_argument(
        "--flush",
        action="store_true",
        help="Connect to the remote store and drain the sync queue once",
    )
    parser.add_argument(
        "--store-dir", default=None, help="Directory of the local persistent cache"
    )
    args = parser.parse_args()
    run(args.status, args.flush, args.store_dir)


if __name__ == "__main__":
    main()
