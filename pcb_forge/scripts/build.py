#!/usr/bin/env python3
"""
Build Script.

Turn a forge project (Gerber/drill artwork plus stage list) into G-code
files.

Usage:
    python -m pcb_forge.scripts.build --forge-file forge.yaml
    python -m pcb_forge.scripts.build -f forge.yaml -t out --config machines.yaml
    python -m pcb_forge.scripts.build -f forge.yaml --dry-run --log-level DEBUG

Exit status is 1 when any output file failed; the other files are still
written.
"""

from __future__ import annotations

import argparse
import logging
import sys

from pcb_forge.configs.loader import ConfigError, load_config, load_forge_file
from pcb_forge.pipeline.stages import load_artwork, run_project, write_results
from pcb_forge.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate G-code from PCB artwork",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--forge-file",
        "-f",
        type=str,
        default="forge.yaml",
        help="Forge project file (default: forge.yaml)",
    )
    parser.add_argument(
        "--target-directory",
        "-t",
        type=str,
        default="forge",
        help="Directory for generated G-code (default: forge)",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        help="Machine library YAML (default: shipped machines.yaml)",
    )
    parser.add_argument(
        "--jobs",
        "-j",
        type=int,
        help="Output files processed in parallel",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Plan and generate but don't write files",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit JSON log records",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _parser().parse_args(argv)
    setup_logging(log_level=args.log_level, json=args.json_logs, context={"app": "forge"})

    try:
        global_config = load_config(args.config)
        project = load_forge_file(args.forge_file)
        artwork = load_artwork(project)
    except (ConfigError, FileNotFoundError) as e:
        logger.error("Cannot start: %s", e)
        return 1

    results = run_project(
        project, artwork, global_config=global_config, max_workers=args.jobs,
    )
    failed = [name for name, r in results.items() if not r.ok]

    if args.dry_run:
        for name, r in results.items():
            status = "ok" if r.ok else f"FAILED: {r.error}"
            print(f"{name}: {status}")
    else:
        write_results(results, args.target_directory)

    if failed:
        logger.error("%d of %d output file(s) failed: %s", len(failed), len(results), ", ".join(failed))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
