"""CLI entrypoint for raze."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from .errors import RazeError
from .logging import configure_logging
from .metadata import CargoMetadataFetcher
from .orchestrator import Orchestrator


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="raze",
        description="Generate Bazel BUILD files for your Cargo dependencies.",
    )
    parser.add_argument(
        "buildprefix",
        nargs="?",
        default=None,
        help="Directory to write generated files under (defaults to the current directory).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=False,
        help="Use verbose output.",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=False,
        help="Only print warnings and errors.",
    )
    parser.add_argument(
        "-d",
        "--dryrun",
        action="store_true",
        default=False,
        help="Print the generated files instead of writing them.",
    )
    parser.add_argument(
        "--cargo-bin-path",
        default="cargo",
        help="Path to the cargo binary used to load workspace metadata.",
    )
    parser.add_argument(
        "--manifest-path",
        default="Cargo.toml",
        help="Path to the Cargo.toml of the workspace (defaults to ./Cargo.toml).",
    )
    parser.add_argument(
        "--settings",
        default=None,
        help="Read raze settings from this Cargo.toml or YAML file instead of the manifest.",
    )
    parser.add_argument(
        "--output",
        default=None,
        help="Path to output the generated files into; overrides the build prefix.",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also write debug logs to this file.",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for raze."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(verbose=bool(args.verbose), quiet=bool(args.quiet), log_file=args.log_file)

    orchestrator = Orchestrator(fetcher=CargoMetadataFetcher(args.cargo_bin_path))
    try:
        outcome = orchestrator.run(
            args.manifest_path,
            settings_path=args.settings,
            output=args.output,
            buildprefix=args.buildprefix,
            dry_run=bool(args.dryrun),
        )
    except RazeError as exc:
        parser.exit(1, f"raze failed: {exc}\nRun with --verbose for more details.\n")

    if not args.quiet and not outcome.dry_run:
        print(f"Generated {len(outcome.written)} files")


if __name__ == "__main__":
    main(sys.argv[1:])
