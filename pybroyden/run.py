"""Command line interface solving a batch of fixed-point problems."""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
from pathlib import Path
from typing import Any

from .batch import run_fixed_point_batch
from .config import SolverConfig, load_config
from .io import load_problems, save_results

LOGGER = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _build_config(args: argparse.Namespace) -> SolverConfig:
    config = load_config(args.config) if args.config else SolverConfig()
    overrides: dict[str, Any] = {}
    if args.check_finite:
        overrides["check_finite"] = True
    if args.no_backtracking:
        overrides["backtracking"] = False
    if args.max_steps is not None:
        overrides["max_steps"] = args.max_steps
    if overrides:
        config = dataclasses.replace(config, **overrides)
    return config


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Find fixed points of x = A x + b with a bounded Broyden solver")
    parser.add_argument("--problems", required=True, help="NetCDF file describing the problems")
    parser.add_argument("--output-dir", required=True, help="Directory where the results are written")
    parser.add_argument("--output-name", default="fixed_points.nc", help="Name of the result file")
    parser.add_argument("--config", default=None, help="JSON file with solver options")
    parser.add_argument(
        "--iteration",
        type=int,
        default=0,
        help="Outer iteration index; backtracking starts once it exceeds the configured threshold",
    )
    parser.add_argument("--max-steps", type=int, default=None, help="Cap on steps per search")
    parser.add_argument(
        "--check-finite",
        action="store_true",
        help="Abort a search as soon as a residual holds NaN or infinite values",
    )
    parser.add_argument("--no-backtracking", action="store_true", help="Disable the backtracking search")
    parser.add_argument(
        "--metadata",
        default=None,
        help="Optional JSON file storing run metadata to be embedded in the outputs",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")

    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    config = _build_config(args)
    LOGGER.debug("Solver configuration: %s", config)

    problems = load_problems(args.problems)
    results = run_fixed_point_batch(problems, config=config, iteration=args.iteration)

    if args.metadata:
        metadata_path = Path(args.metadata)
        with metadata_path.open("r", encoding="utf-8") as handle:
            metadata: dict[str, Any] = json.load(handle)
        results.attrs.update(metadata)

    save_results(results, args.output_dir, args.output_name)
    converged = int(results["converged"].sum())
    LOGGER.info("%d of %d problems converged", converged, results.sizes["problem"])
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
