# main.py
"""CLI entry point for beatweaver chapter generation."""

from __future__ import annotations

import argparse
import sys

from orchestration.cli_runner import run


def main() -> None:
    """Parse command-line arguments and generate one chapter."""
    parser = argparse.ArgumentParser(description="Generate a chapter unit by unit")
    parser.add_argument("project_id", help="Project the chapter belongs to")
    parser.add_argument("chapter", type=int, help="Chapter index")
    parser.add_argument("blueprints", help="Path to a JSON array of unit blueprints")
    parser.add_argument(
        "--deadline",
        type=float,
        default=None,
        help="Seconds allowed for the whole chapter",
    )
    args = parser.parse_args()
    sys.exit(run(args.project_id, args.chapter, args.blueprints, args.deadline))


if __name__ == "__main__":
    main()
