"""CLI script for inspecting a persisted model generation.

Useful for checking what an update cycle promoted. Prints the descriptor
summary of a model, or a single user (X) or item (Y) factor vector.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from alsupdate.exceptions import ALSUpdateError, EntityNotFoundError, ModelNotFoundError
from alsupdate.recommender.codec import load_model
from alsupdate.recommender.utils import latest_generation

# Setup logging
logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s"
)
logger = logging.getLogger(__name__)


def resolve_model_path(model_dir: str, generation: Optional[str] = None) -> Path:
    """Directory of the requested generation, or of the latest one.

    Raises:
        ModelNotFoundError: If no such generation exists.
    """
    if generation is not None:
        path = Path(model_dir) / generation
        if not path.is_dir():
            raise ModelNotFoundError(str(path))
        return path
    path = latest_generation(model_dir)
    if path is None:
        raise ModelNotFoundError(model_dir)
    return path


def describe_model(model_path: Path) -> str:
    """Human-readable summary of a persisted model."""
    descriptor, model = load_model(model_path)
    lines = [
        f"Model: {model_path}",
        f"  Features:       {descriptor.features}",
        f"  Regularization: {descriptor.regularization}",
        f"  Implicit:       {descriptor.implicit}",
    ]
    if descriptor.implicit:
        lines.append(f"  Alpha:          {descriptor.alpha}")
    lines.append(f"  Users (X):      {len(model.user_factors)}")
    lines.append(f"  Items (Y):      {len(model.item_factors)}")
    return "\n".join(lines)


def format_vector(model_path: Path, role: str, entity_id: int) -> str:
    """One entity's factor vector.

    Raises:
        EntityNotFoundError: If the id has no vector in the model.
    """
    _, model = load_model(model_path)
    factors = model.user_factors if role == "X" else model.item_factors
    vector = factors.get(entity_id)
    if vector is None:
        raise EntityNotFoundError(role, entity_id)
    return f"{role} {entity_id}: {[round(float(v), 6) for v in vector]}"


def main(argv=None) -> int:
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        description="Inspect a persisted ALS model",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/inspect_model.py
  python scripts/inspect_model.py --generation 1700000000000
  python scripts/inspect_model.py --role X --id 42
        """
    )

    parser.add_argument(
        "--model-dir",
        type=str,
        default="models",
        help="Directory containing model generations (default: models)"
    )

    parser.add_argument(
        "--generation",
        type=str,
        default=None,
        help="Generation to inspect (default: latest)"
    )

    parser.add_argument(
        "--role",
        type=str,
        choices=["X", "Y"],
        default=None,
        help="Print a user (X) or item (Y) vector instead of the summary"
    )

    parser.add_argument(
        "--id",
        type=int,
        default=None,
        help="Entity id whose vector to print (requires --role)"
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging"
    )

    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.INFO)

    if (args.role is None) != (args.id is None):
        parser.error("--role and --id must be given together")

    try:
        model_path = resolve_model_path(args.model_dir, args.generation)
        if args.role is None:
            print(describe_model(model_path))
        else:
            print(format_vector(model_path, args.role, args.id))
    except ALSUpdateError as e:
        logger.error(e.message)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
