"""
CLI entry point for the consensus ranking system.

Parses arguments, validates config, wires components and runs a simulated
rating study.
"""

import argparse
import json
import random
import sys
from pathlib import Path
from argparse import Namespace
from typing import TypedDict

import numpy as np
from prettytable import PrettyTable

from .config import RankingConfig, load_config
from .exceptions import ConfigurationError, ValidationError
from .interfaces import Rater
from .logging_config import setup_logging, get_logger
from .models import SCREEN_SIZE, RaterProfile
from .orchestrator import Orchestrator, RunConfig
from .raters.dummy_rater import DummyRater
from .raters.simulated_rater import SimulatedRater
from .service import RatingService
from .storage.jsonl_storage import JSONLStorage


class CLIArgs(TypedDict):
    """Typed representation of parsed CLI arguments."""
    items_file: str
    output_dir: str
    raters: int
    noise: float
    workers: int
    seed: int | None
    config: str | None
    rater_type: str
    bootstrap: bool
    debug: bool
    log_level: str


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Consensus Ranking - multi-rater pairwise ranking with adaptive screens"
    )

    # Required arguments
    _ = parser.add_argument(
        "--items-file",
        required=True,
        help="JSON file: a list of item ids (best first) or an object of item id -> true strength"
    )
    _ = parser.add_argument(
        "--output-dir",
        required=True,
        help="Directory for repository files"
    )

    # Optional arguments
    _ = parser.add_argument(
        "--raters",
        type=int,
        default=5,
        help="Number of simulated raters (default: 5)"
    )
    _ = parser.add_argument(
        "--noise",
        type=float,
        default=0.1,
        help="Noise standard deviation for simulated raters (default: 0.1)"
    )
    _ = parser.add_argument(
        "--workers",
        type=int,
        default=4,
        help="Number of worker threads, one rater session each (default: 4)"
    )
    _ = parser.add_argument(
        "--seed",
        type=int,
        help="Random seed for reproducible runs"
    )
    _ = parser.add_argument(
        "--config",
        help="JSON file overriding ranking configuration"
    )
    _ = parser.add_argument(
        "--rater-type",
        choices=["simulated", "dummy"],
        default="simulated",
        help="Type of rater to use (default: simulated)"
    )
    _ = parser.add_argument(
        "--bootstrap",
        action="store_true",
        help="Also print bootstrap confidence intervals"
    )
    _ = parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging"
    )
    _ = parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Set logging level (default: INFO)"
    )

    return parser.parse_args(argv)


def args_to_typed(ns: Namespace) -> CLIArgs:
    """Convert argparse Namespace to typed CLIArgs."""
    return CLIArgs(
        items_file=ns.items_file,
        output_dir=ns.output_dir,
        raters=ns.raters,
        noise=ns.noise,
        workers=ns.workers,
        seed=ns.seed,
        config=ns.config,
        rater_type=ns.rater_type,
        bootstrap=ns.bootstrap,
        debug=ns.debug,
        log_level=ns.log_level,
    )


def load_items(path: Path) -> dict[str, float]:
    """
    Read item ids and their true strengths.

    A plain list is taken as best-first order and gets evenly spaced
    strengths in (0, 1].
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    if isinstance(data, list):
        n = len(data)
        return {str(item_id): float(n - i) / n for i, item_id in enumerate(data)}
    if isinstance(data, dict):
        return {str(item_id): float(score) for item_id, score in data.items()}
    raise ValidationError(f"Items file must contain a JSON list or object: {path}")


def validate_args(args: CLIArgs) -> None:
    """Validate configuration parameters."""
    logger = get_logger("validate_args")

    if args["raters"] <= 0:
        logger.error(f"raters must be positive, got {args['raters']}")
        print(f"Error: raters must be positive, got {args['raters']}")
        sys.exit(1)

    if not Path(args["items_file"]).exists():
        logger.error(f"Items file does not exist: {args['items_file']}")
        print(f"Error: items file does not exist: {args['items_file']}")
        sys.exit(1)

    output_dir = Path(args["output_dir"])
    output_dir.mkdir(parents=True, exist_ok=True)
    logger.info(f"Output directory: {output_dir}")


def build_raters(args: CLIArgs, ground_truth: dict[str, float]) -> list[Rater]:
    """Create the configured raters, each with its own random source."""
    seed_source = random.Random(args["seed"])
    raters: list[Rater] = []
    for i in range(args["raters"]):
        rater_id = f"rater_{i + 1:02d}"
        if args["rater_type"] == "simulated":
            raters.append(
                SimulatedRater(
                    rater_id,
                    ground_truth,
                    noise=args["noise"],
                    rng=random.Random(seed_source.getrandbits(32)),
                )
            )
        else:
            raters.append(DummyRater(rater_id=rater_id))
    return raters


def print_leaderboard(service: RatingService, bootstrap: bool, seed: int | None) -> None:
    """Print the global leaderboard and the consensus tables."""
    leaderboard = service.global_leaderboard()
    intervals = service.bootstrap_intervals(rng=np.random.default_rng(seed)) if bootstrap else {}

    table = PrettyTable()
    field_names = ["Rank", "Item", "Mu", "CI Low", "CI High", "Raters"]
    if bootstrap:
        field_names += ["Boot Low", "Boot High"]
    table.field_names = field_names
    for name in field_names[2:]:
        table.align[name] = "r"

    for entry in leaderboard:
        row = [
            entry.rank,
            entry.item_id,
            f"{entry.mu:.3f}",
            f"{entry.ci_low:.3f}",
            f"{entry.ci_high:.3f}",
            entry.rater_count,
        ]
        if bootstrap:
            low, high = intervals[entry.item_id]
            row += [f"{low:.3f}", f"{high:.3f}"]
        table.add_row(row)

    print("\nGlobal Leaderboard:")
    print(table)

    report = service.consensus()

    agree_table = PrettyTable()
    agree_table.field_names = ["Item", "Rank", "Consensus", "Variance"]
    for agree in report.agree:
        agree_table.add_row(
            [agree.item_id, agree.rank_global, f"{agree.consensus_score:.3f}", f"{agree.variance:.4f}"]
        )
    print("\nRaters agree on:")
    print(agree_table)

    disagree_table = PrettyTable()
    disagree_table.field_names = ["Item", "Rank", "Variance", "Spread"]
    for disagree in report.disagree:
        spread = ", ".join(f"{rater_id}={value:.2f}" for rater_id, value in disagree.spread_by_rater.items())
        disagree_table.add_row([disagree.item_id, disagree.rank_global, f"{disagree.variance:.4f}", spread])
    print("\nRaters disagree on:")
    print(disagree_table)


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    try:
        # Parse and validate arguments
        raw_args = parse_args(argv)
        args = args_to_typed(raw_args)

        # Setup logging
        setup_logging(level=args["log_level"], debug=args["debug"])
        logger = get_logger("main")

        logger.info("Starting Consensus Ranking study")
        validate_args(args)

        config = load_config(args["config"]) if args["config"] else RankingConfig()
        ground_truth = load_items(Path(args["items_file"]))
        if len(ground_truth) < SCREEN_SIZE:
            print(f"Error: at least {SCREEN_SIZE} items are required, got {len(ground_truth)}")
            sys.exit(1)

        print("Consensus Ranking - multi-rater pairwise ranking")
        print("=" * 60)
        print(f"Items: {len(ground_truth)} from {args['items_file']}")
        print(f"Output directory: {args['output_dir']}")
        print(f"Raters: {args['raters']} ({args['rater_type']})")
        print(f"Workers: {args['workers']}")
        if args["rater_type"] == "simulated":
            print(f"Noise level: {args['noise']}")
        print("=" * 60)

        # Wire components
        logger.info("Wiring components")
        storage = JSONLStorage(Path(args["output_dir"]))
        storage.register_items(list(ground_truth.keys()))
        service = RatingService(storage, config, cold_start_rng=random.Random(args["seed"]))

        raters = build_raters(args, ground_truth)
        for rater in raters:
            service.register_rater(RaterProfile(rater_id=rater.rater_id))

        orchestrator = Orchestrator(service, raters, RunConfig(max_workers=args["workers"]))
        summary = orchestrator.run()

        print_leaderboard(service, args["bootstrap"], args["seed"])

        if summary.aborted_sessions:
            print(f"\n{len(summary.aborted_sessions)} sessions were aborted, see the log for details")
        print("\nStudy completed successfully!")

    except ConfigurationError as e:
        logger = get_logger("main")
        logger.error(f"Invalid configuration: {e}")
        print(f"\nInvalid configuration: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger = get_logger("main")
        logger.warning("Study interrupted by user")
        print("\nStudy interrupted by user")
        sys.exit(1)


if __name__ == "__main__":
    main()
