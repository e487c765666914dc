"""Command-line interface for running one model-update cycle.

This script reads a batch of new rating events (and optionally historical
events), builds one ALS model per hyperparameter candidate, promotes the best
one as a new generation under the model directory and publishes its factor
vectors.

Example:
    Run an update with default settings:
        $ python scripts/run_update.py data/new_events.csv

    Run with past data, several candidates and a file-backed update queue:
        $ python scripts/run_update.py data/new_events.csv \\
            --past-data data/history \\
            --model-dir models \\
            --features 5,10 --regularization 0.01,0.1 \\
            --updates-file models/updates.jsonl
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict

# Add project root to Python path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from alsupdate.config import ALSConfig
from alsupdate.exceptions import ALSUpdateError
from alsupdate.logging_config import setup_logging as configure_logging
from alsupdate.recommender.publish import InMemoryQueueProducer, JSONLinesQueueProducer
from alsupdate.recommender.update import ALSUpdate
from alsupdate.recommender.utils import read_data_lines


def setup_logging(verbose: bool = False, json_logs: bool = False) -> None:
    """Configure logging for the script.

    Args:
        verbose: If True, set log level to DEBUG. Otherwise, use INFO.
        json_logs: Emit structured JSON lines instead of plain text.
    """
    configure_logging("DEBUG" if verbose else "INFO", json_format=json_logs)


def parse_arguments(argv=None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Namespace object containing parsed arguments.
    """
    parser = argparse.ArgumentParser(
        description="Build, evaluate, promote and publish an ALS model from rating events.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Update with default settings
  python scripts/run_update.py data/new_events.csv

  # Explicit ratings, with history
  python scripts/run_update.py data/new_events.csv --explicit --past-data data/history

  # Sweep features and write updates to a file
  python scripts/run_update.py data/new --features 5,10,20 --updates-file updates.jsonl
        """,
    )

    parser.add_argument(
        "new_data",
        nargs="+",
        help="Files or directories with new events, one per line: "
        "user,item,score,timestamp or a JSON array",
    )
    parser.add_argument(
        "--past-data",
        nargs="*",
        default=None,
        help="Files or directories with historical events",
    )
    parser.add_argument(
        "--model-dir",
        type=str,
        default="models",
        help="Directory holding model generations (default: models)",
    )
    parser.add_argument(
        "--updates-file",
        type=str,
        default=None,
        help="Append published updates to this JSON lines file",
    )
    parser.add_argument("--iterations", type=int, help="ALS iterations")
    parser.add_argument(
        "--explicit",
        action="store_true",
        help="Treat scores as explicit ratings (last value wins, 1/RMSE)",
    )
    parser.add_argument("--features", type=str, help="Comma-separated feature counts")
    parser.add_argument(
        "--regularization", type=str, help="Comma-separated regularization weights"
    )
    parser.add_argument("--alpha", type=str, help="Comma-separated confidence scales")
    parser.add_argument(
        "--test-fraction", type=float, help="Fraction of new data held out by time"
    )
    parser.add_argument(
        "--no-known-items",
        action="store_true",
        help="Publish user vectors without known item ids",
    )
    parser.add_argument(
        "--known-users",
        action="store_true",
        help="Publish item vectors with known user ids",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Fail on malformed records instead of skipping them",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit structured JSON logs",
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> ALSConfig:
    """Merge ALS_* environment overrides with command-line options."""
    overrides: Dict[str, Any] = {}
    for name in ("iterations", "features", "regularization", "alpha", "test_fraction"):
        value = getattr(args, name)
        if value is not None:
            overrides[name] = value
    if args.explicit:
        overrides["implicit"] = False
    if args.no_known_items:
        overrides["no_known_items"] = True
    if args.known_users:
        overrides["known_users"] = True
    if args.strict:
        overrides["skip_malformed"] = False

    base = ALSConfig.from_env()
    values = {**vars(base), **overrides}
    return ALSConfig.from_dict(values)


def main(argv=None) -> int:
    """Main entry point for the update script.

    Returns:
        Exit code: 0 on success, 1 on error, 130 if interrupted.
    """
    try:
        args = parse_arguments(argv)
        setup_logging(verbose=args.verbose, json_logs=args.json_logs)
        logger = logging.getLogger(__name__)

        config = build_config(args)

        logger.info("=" * 70)
        logger.info("Update Configuration")
        logger.info("=" * 70)
        logger.info(f"New data:        {args.new_data}")
        logger.info(f"Past data:       {args.past_data}")
        logger.info(f"Model directory: {args.model_dir}")
        logger.info(f"Implicit:        {config.implicit}")
        logger.info(f"Iterations:      {config.iterations}")
        logger.info(f"Features:        {config.features}")
        logger.info(f"Regularization:  {config.regularization}")
        logger.info(f"Alpha:           {config.alpha}")
        logger.info(f"Test fraction:   {config.test_fraction}")
        logger.info("=" * 70)

        new_data = read_data_lines(args.new_data)
        past_data = read_data_lines(args.past_data) if args.past_data else None

        if args.updates_file:
            queue = JSONLinesQueueProducer(args.updates_file)
        else:
            queue = InMemoryQueueProducer()

        result = ALSUpdate(config).run_update(new_data, past_data, args.model_dir, queue)

        logger.info("=" * 70)
        logger.info("Update Summary")
        logger.info("=" * 70)
        logger.info(f"Generation:      {result.generation_path}")
        logger.info(f"Features:        {result.hyperparams.features}")
        logger.info(f"Regularization:  {result.hyperparams.regularization}")
        if config.implicit:
            logger.info(f"Alpha:           {result.hyperparams.alpha}")
        logger.info(f"Evaluation:      {result.evaluation}")
        logger.info(f"Records sent:    {result.published}")
        logger.info("=" * 70)

        logger.info("Update completed successfully!")
        return 0

    except FileNotFoundError as e:
        logging.error(f"File error: {e}")
        return 1
    except ALSUpdateError as e:
        logging.error(f"Update error: {e.message}")
        return 1
    except ValueError as e:
        logging.error(f"Validation error: {e}")
        return 1
    except KeyboardInterrupt:
        logging.warning("Update interrupted by user")
        return 130
    except Exception as e:
        logging.error(f"Unexpected error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
