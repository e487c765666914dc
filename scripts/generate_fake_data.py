"""Generate fake rating events for testing and development.

This module provides functionality to create synthetic user-item rating
events for exercising the model-update pipeline. Each event is written as one
line, either ``user,item,score,timestamp`` or a JSON array of the same four
fields. A share of the events can be deletes (an empty score).

Example:
    Run the script directly to generate default data:
        $ python scripts/generate_fake_data.py

    Or import and use programmatically:
        from scripts.generate_fake_data import generate_fake_events
        df = generate_fake_events(num_users=100, num_items=200)
"""

import argparse
import json
import random
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional

import pandas as pd

# Default configuration constants
DEFAULT_NUM_USERS = 50
DEFAULT_NUM_ITEMS = 100
DEFAULT_NUM_EVENTS = 1000
DEFAULT_DELETE_RATE = 0.02
DEFAULT_DAYS_BACK = 90
SECONDS_PER_DAY = 86400


def generate_fake_events(
    num_users: int = DEFAULT_NUM_USERS,
    num_items: int = DEFAULT_NUM_ITEMS,
    num_events: int = DEFAULT_NUM_EVENTS,
    delete_rate: float = DEFAULT_DELETE_RATE,
    implicit: bool = True,
    end_date: Optional[datetime] = None,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """Generate synthetic rating events.

    Args:
        num_users: Number of unique users to simulate. Must be positive.
        num_items: Number of unique items available. Must be positive.
        num_events: Total number of events to generate. Must be positive.
        delete_rate: Probability that an event is a delete. Must be in [0, 1].
        implicit: If True, scores are interaction strengths (1 to 3).
            Otherwise they are star ratings (1 to 5).
        end_date: Latest event time. Defaults to now; events span the
            preceding 90 days.
        seed: Random seed for reproducibility.

    Returns:
        A pandas DataFrame with the following columns:
            - user: Integer user identifier (1 to num_users)
            - item: Integer item identifier (1 to num_items)
            - score: Float score, or None for a delete
            - timestamp: Milliseconds since the epoch

        The DataFrame is sorted by timestamp in ascending order.

    Raises:
        ValueError: If any count is non-positive or delete_rate is outside
            [0, 1].
    """
    if num_users <= 0 or num_items <= 0 or num_events <= 0:
        raise ValueError("num_users, num_items, and num_events must be positive")
    if not 0.0 <= delete_rate <= 1.0:
        raise ValueError(f"delete_rate must be in [0, 1], got {delete_rate}")

    rng = random.Random(seed)
    if end_date is None:
        end_date = datetime.now()
    start_ms = int((end_date - timedelta(days=DEFAULT_DAYS_BACK)).timestamp() * 1000)
    span_ms = DEFAULT_DAYS_BACK * SECONDS_PER_DAY * 1000

    events = []
    for _ in range(num_events):
        if rng.random() < delete_rate:
            score = None
        elif implicit:
            score = float(rng.randint(1, 3))
        else:
            score = float(rng.randint(1, 5))
        events.append({
            "user": rng.randint(1, num_users),
            "item": rng.randint(1, num_items),
            "score": score,
            "timestamp": start_ms + rng.randrange(span_ms),
        })

    df = pd.DataFrame(events)
    df = df.sort_values("timestamp", kind="stable").reset_index(drop=True)
    return df


def format_events(df: pd.DataFrame, fmt: str = "csv") -> List[str]:
    """Render events as input lines.

    Args:
        df: Events as returned by generate_fake_events.
        fmt: "csv" for ``user,item,score,timestamp`` lines or "json" for
            JSON arrays. Deletes have an empty score in CSV and null in JSON.

    Returns:
        One line per event.
    """
    if fmt not in ("csv", "json"):
        raise ValueError(f"Unknown format: {fmt}")

    lines = []
    for row in df.itertuples(index=False):
        score = None if pd.isna(row.score) else float(row.score)
        if fmt == "json":
            lines.append(json.dumps([int(row.user), int(row.item), score, int(row.timestamp)]))
        else:
            score_text = "" if score is None else repr(score)
            lines.append(f"{int(row.user)},{int(row.item)},{score_text},{int(row.timestamp)}")
    return lines


def main() -> None:
    """Main entry point for the data generation script.

    Generates fake events and saves them to data/fake_events.<fmt>. Prints
    summary statistics upon completion.
    """
    parser = argparse.ArgumentParser(description="Generate fake rating events.")
    parser.add_argument("--num-users", type=int, default=DEFAULT_NUM_USERS)
    parser.add_argument("--num-items", type=int, default=DEFAULT_NUM_ITEMS)
    parser.add_argument("--num-events", type=int, default=DEFAULT_NUM_EVENTS)
    parser.add_argument("--delete-rate", type=float, default=DEFAULT_DELETE_RATE)
    parser.add_argument("--explicit", action="store_true", help="Generate 1-5 star ratings")
    parser.add_argument("--format", choices=["csv", "json"], default="csv")
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--output", type=str, default=None, help="Output file path")
    args = parser.parse_args()

    print(f"Generating {args.num_events} fake events...")
    print(f"Users: {args.num_users}, Items: {args.num_items}")

    try:
        df = generate_fake_events(
            num_users=args.num_users,
            num_items=args.num_items,
            num_events=args.num_events,
            delete_rate=args.delete_rate,
            implicit=not args.explicit,
            seed=args.seed,
        )
    except ValueError as e:
        print(f"Error generating data: {e}")
        return

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
    else:
        data_dir = Path(__file__).parent.parent / "data"
        data_dir.mkdir(exist_ok=True)
        output_path = data_dir / f"fake_events.{args.format}"

    output_path.write_text("\n".join(format_events(df, args.format)) + "\n", encoding="utf-8")

    print(f"\nData generated successfully!")
    print(f"Saved to: {output_path}")
    print(f"\nData preview:")
    print(df.head(10))
    print(f"\nData summary:")
    print(f"  Total events: {len(df)}")
    print(f"  Deletes: {int(df['score'].isna().sum())}")
    print(f"  Unique users: {df['user'].nunique()}")
    print(f"  Unique items: {df['item'].nunique()}")
    print(f"  Time range: {df['timestamp'].min()} to {df['timestamp'].max()}")


if __name__ == "__main__":
    main()
