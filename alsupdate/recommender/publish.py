"""Incremental publishing of factor vectors to the serving layer.

After a model generation is promoted, every user ("X") and item ("Y") factor
vector is sent to the update queue as its own record, so the serving layer can
apply the new model entity by entity. User records may carry the ids of the
items the user is known to have interacted with; item records may carry known
user ids when that side channel is enabled.
"""

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Protocol, Sequence, Set, Tuple, Union

import numpy as np

from alsupdate.recommender.codec import load_model
from alsupdate.recommender.model import FactorModel
from alsupdate.recommender.ratings import known_ids_index

# Configure module logger
logger = logging.getLogger(__name__)

UPDATE_KEY = "UP"
MODEL_KEY = "MODEL"
USER_ROLE = "X"
ITEM_ROLE = "Y"


class QueueProducer(Protocol):
    """Destination for (key, message) update records."""

    def send(self, key: str, message: str) -> None:
        ...


class InMemoryQueueProducer:
    """Collects sent records in a list."""

    def __init__(self):
        self._lock = threading.Lock()
        self.records: List[Tuple[str, str]] = []

    def send(self, key: str, message: str) -> None:
        with self._lock:
            self.records.append((key, message))

    def messages(self, key: Optional[str] = None) -> List[str]:
        """Messages sent so far, optionally only those with the given key."""
        with self._lock:
            return [m for k, m in self.records if key is None or k == key]


class JSONLinesQueueProducer:
    """Appends each record to a file as ``{"key": ..., "message": ...}``."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def send(self, key: str, message: str) -> None:
        with open(self.path, "a", encoding="utf-8") as handle:
            handle.write(json.dumps({"key": key, "message": message}))
            handle.write("\n")


@dataclass
class PublishRecord:
    """One entity's factor update."""

    role: str
    id: int
    vector: np.ndarray
    known_ids: Optional[Set[int]] = None

    def to_message(self) -> str:
        payload: List[object] = [self.role, self.id, [float(v) for v in self.vector]]
        if self.known_ids is not None:
            payload.append(sorted(self.known_ids))
        return json.dumps(payload)


def iter_publish_records(
    model: FactorModel,
    known_items: Optional[Dict[int, Set[int]]] = None,
    known_users: Optional[Dict[int, Set[int]]] = None,
) -> Iterator[PublishRecord]:
    """Yield one record per user factor, then one per item factor.

    Every user and every item with a factor vector is published. Known ids
    are attached where the corresponding index has an entry for the id;
    entities without one are published with the vector alone.
    """
    for user in model.user_ids():
        known = known_items.get(user) if known_items is not None else None
        yield PublishRecord(USER_ROLE, user, model.user_factors[user], known)

    for item in model.item_ids():
        known = known_users.get(item) if known_users is not None else None
        yield PublishRecord(ITEM_ROLE, item, model.item_factors[item], known)


def publish_additional_model_data(
    model_dir: Union[str, Path],
    new_data: Sequence[str],
    past_data: Optional[Sequence[str]],
    queue: QueueProducer,
    no_known_items: bool = False,
    known_users: bool = False,
    skip_malformed: bool = True,
) -> int:
    """Send the persisted model's factor vectors as per-entity updates.

    Args:
        model_dir: Directory of the persisted model generation.
        new_data: Raw records of the current batch.
        past_data: Raw historical records, or None if unavailable.
        queue: Destination of the update records.
        no_known_items: Send user vectors without known item ids.
        known_users: Attach known user ids to item vectors.
        skip_malformed: Malformed record policy for the known-id scans.

    Returns:
        Number of records sent.
    """
    _, model = load_model(model_dir)
    all_data = list(new_data) if past_data is None else list(new_data) + list(past_data)

    known_items_index = None
    if not no_known_items:
        logger.info("Sending known item data with model updates")
        known_items_index = known_ids_index(all_data, by_user=True, skip_malformed=skip_malformed)

    known_users_index = None
    if known_users:
        logger.info("Sending known user data with model updates")
        known_users_index = known_ids_index(all_data, by_user=False, skip_malformed=skip_malformed)

    logger.info("Sending user / X data and item / Y data as model updates")
    sent = {USER_ROLE: 0, ITEM_ROLE: 0}
    for record in iter_publish_records(model, known_items_index, known_users_index):
        queue.send(UPDATE_KEY, record.to_message())
        sent[record.role] += 1

    logger.info(
        "Published model updates",
        extra={"users_sent": sent[USER_ROLE], "items_sent": sent[ITEM_ROLE]},
    )
    return sent[USER_ROLE] + sent[ITEM_ROLE]
