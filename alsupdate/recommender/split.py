"""Time-based split of a new data batch into training and held-out subsets."""

import logging
from typing import List, Sequence, Tuple

from alsupdate.recommender.ratings import parse_events

# Configure module logger
logger = logging.getLogger(__name__)


def split_by_time(
    lines: Sequence[str],
    test_fraction: float,
    skip_malformed: bool = True,
) -> Tuple[List[str], List[str]]:
    """Split raw records at an approximate time boundary.

    The boundary is ``min + test_fraction * (max - min)`` over the batch's
    timestamps. Records strictly before it are training data, the rest is
    held out. This assumes timestamps are roughly uniformly distributed; it
    is not an exact percentile split.

    Args:
        lines: Raw records of the new batch.
        test_fraction: Approximate held-out fraction, strictly between 0 and 1.
        skip_malformed: Drop malformed records instead of failing.

    Returns:
        Tuple of (training records, held-out records), each in input order.
        If every timestamp is equal the held-out subset is empty.

    Raises:
        ValueError: If test_fraction is not strictly between 0 and 1.
        MalformedRecordError: If skip_malformed is False and a record is bad.
    """
    if not 0.0 < test_fraction < 1.0:
        raise ValueError(f"test_fraction must be in (0, 1), got {test_fraction}")

    stamped = []
    for line in lines:
        events = parse_events([line], skip_malformed=skip_malformed)
        if events:
            stamped.append((events[0].timestamp, line))

    if not stamped:
        logger.warning("No valid records to split")
        return [], []

    timestamps = [timestamp for timestamp, _ in stamped]
    min_time = min(timestamps)
    max_time = max(timestamps)
    logger.info(f"New data timestamp range: {min_time} - {max_time}")

    if min_time == max_time:
        logger.warning(
            f"All {len(stamped)} records share timestamp {min_time}; "
            "nothing is held out"
        )
        return [line for _, line in stamped], []

    boundary = min_time + int(test_fraction * (max_time - min_time))
    logger.info(f"Splitting at timestamp {boundary}")

    train = [line for timestamp, line in stamped if timestamp < boundary]
    held_out = [line for timestamp, line in stamped if timestamp >= boundary]

    logger.info(
        "Split new data",
        extra={
            "boundary": boundary,
            "train_records": len(train),
            "held_out_records": len(held_out),
        },
    )
    return train, held_out
