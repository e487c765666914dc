"""Rating record parsing and per-pair score aggregation.

Input records are text lines holding four fields: user id, item id, score and
timestamp. A line is either comma-delimited (``1,10,4.0,100``) or a JSON array
(``["1","10","4.0","100"]``). An empty score means the user-item association
was deleted.

Deletes are carried as an explicit ``DELETE`` marker rather than NaN, so
aggregation stays testable with plain equality.
"""

import json
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, NamedTuple, Set, Tuple, Union

from alsupdate.exceptions import MalformedRecordError

# Configure module logger
logger = logging.getLogger(__name__)

NUM_FIELDS = 4
INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1


@dataclass(frozen=True)
class Value:
    """A concrete score for a user-item pair."""

    score: float


class Delete:
    """Marker for a deleted user-item association."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(Delete, cls).__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "DELETE"


DELETE = Delete()

Score = Union[Value, Delete]


@dataclass(frozen=True)
class RatingEvent:
    """One parsed input record."""

    user: int
    item: int
    score: Score
    timestamp: int

    @property
    def is_delete(self) -> bool:
        return self.score is DELETE


class AggregatedRating(NamedTuple):
    """Net score of one user-item pair within a batch."""

    user: int
    item: int
    score: float


def parse_line(line: str) -> List[str]:
    """Split a raw record into its four string fields.

    Lines ending in ``]`` are decoded as JSON arrays, everything else is split
    on commas. An empty score field is valid and means delete.

    Args:
        line: Raw input record.

    Returns:
        List of four strings: user, item, score (possibly empty), timestamp.

    Raises:
        MalformedRecordError: If the record does not decode to exactly four
            fields.
    """
    stripped = line.strip()
    if stripped.endswith("]"):
        try:
            decoded = json.loads(stripped)
        except ValueError as e:
            raise MalformedRecordError(line, f"invalid JSON array ({e})") from e
        if not isinstance(decoded, list):
            raise MalformedRecordError(line, "JSON record is not an array")
        tokens = ["" if value is None else str(value) for value in decoded]
    else:
        tokens = stripped.split(",")

    if len(tokens) != NUM_FIELDS:
        raise MalformedRecordError(
            line, f"expected {NUM_FIELDS} fields, found {len(tokens)}"
        )
    return tokens


def parse_rating(tokens: List[str], line: str = "") -> RatingEvent:
    """Convert four string fields into a typed RatingEvent.

    Raises:
        MalformedRecordError: If an id, score or timestamp cannot be parsed.
    """
    record = line or ",".join(tokens)
    user_token, item_token, score_token, timestamp_token = tokens
    try:
        user = _parse_id(user_token)
        item = _parse_id(item_token)
        timestamp = int(timestamp_token.strip())
    except ValueError as e:
        raise MalformedRecordError(record, str(e)) from e

    score_token = score_token.strip()
    if not score_token:
        score: Score = DELETE
    else:
        try:
            numeric = float(score_token)
        except ValueError as e:
            raise MalformedRecordError(record, f"invalid score {score_token!r}") from e
        # A literal NaN is the legacy spelling of delete
        score = DELETE if numeric != numeric else Value(numeric)

    return RatingEvent(user, item, score, timestamp)


def parse_event(line: str) -> RatingEvent:
    """Parse one raw record into a RatingEvent."""
    return parse_rating(parse_line(line), line)


def parse_events(lines: Iterable[str], skip_malformed: bool = True) -> List[RatingEvent]:
    """Parse raw records, applying the malformed-record policy.

    Args:
        lines: Raw input records. Blank lines are ignored.
        skip_malformed: If True, malformed records are logged and dropped.
            If False, the first malformed record fails the whole batch.

    Returns:
        Parsed events in input order.

    Raises:
        MalformedRecordError: If skip_malformed is False and a record is bad.
    """
    events = []
    dropped = 0
    for line in lines:
        if not line.strip():
            continue
        try:
            events.append(parse_event(line))
        except MalformedRecordError as e:
            if not skip_malformed:
                raise
            dropped += 1
            logger.warning("Dropping malformed record", extra={"reason": e.message})

    if dropped:
        logger.warning(f"Dropped {dropped} malformed records out of {len(events) + dropped}")
    return events


def timestamp_of(line: str) -> int:
    """Timestamp field of a raw record."""
    return parse_event(line).timestamp


def order_by_time(events: Iterable[RatingEvent]) -> List[RatingEvent]:
    """Stable sort by timestamp; equal timestamps keep arrival order."""
    return sorted(events, key=lambda event: event.timestamp)


def combine_implicit(accumulated: Score, new: Score) -> Score:
    """Running sum where a delete wipes history and a later value restarts it."""
    if accumulated is DELETE:
        return new
    if new is DELETE:
        return DELETE
    return Value(accumulated.score + new.score)


def combine_explicit(accumulated: Score, new: Score) -> Score:
    """Last event wins, deletes included."""
    return new


def aggregate_scores(
    events: Iterable[RatingEvent], implicit: bool
) -> List[AggregatedRating]:
    """Combine all events of each user-item pair into one net score.

    Events are combined in the order given; callers supply the ordering
    (see ``order_by_time``). Pairs whose final state is a delete are dropped.

    Args:
        events: Parsed events for one batch, in event order.
        implicit: Sum scores (implicit feedback) or keep the last one
            (explicit ratings).

    Returns:
        Aggregated ratings sorted by (user, item).
    """
    combine = combine_implicit if implicit else combine_explicit
    combined: Dict[Tuple[int, int], Score] = {}
    for event in events:
        key = (event.user, event.item)
        if key in combined:
            combined[key] = combine(combined[key], event.score)
        else:
            combined[key] = event.score

    ratings = [
        AggregatedRating(user, item, score.score)
        for (user, item), score in sorted(combined.items())
        if score is not DELETE
    ]
    logger.debug(
        "Aggregated scores",
        extra={
            "pairs": len(combined),
            "ratings": len(ratings),
            "deleted": len(combined) - len(ratings),
            "implicit": implicit,
        },
    )
    return ratings


def to_aggregated_ratings(
    lines: Iterable[str], implicit: bool, skip_malformed: bool = True
) -> List[AggregatedRating]:
    """Parse raw records, order them by time and aggregate per pair."""
    events = parse_events(lines, skip_malformed=skip_malformed)
    return aggregate_scores(order_by_time(events), implicit)


def known_ids_index(
    lines: Iterable[str], by_user: bool = True, skip_malformed: bool = True
) -> Dict[int, Set[int]]:
    """Map each user to the items it interacted with (or item to users).

    Every parsed record counts, deletes included: the index records
    historical association, not the current score.
    """
    index: Dict[int, Set[int]] = defaultdict(set)
    for event in parse_events(lines, skip_malformed=skip_malformed):
        if by_user:
            index[event.user].add(event.item)
        else:
            index[event.item].add(event.user)
    return dict(index)


def _parse_id(token: str) -> int:
    value = int(token.strip())
    if not INT32_MIN <= value <= INT32_MAX:
        raise ValueError(f"id {value} does not fit in 32 bits")
    return value
