"""Core model types shared by the builder, evaluator, codec and publisher."""

import logging
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

import numpy as np

# Configure module logger
logger = logging.getLogger(__name__)


class HyperParams(NamedTuple):
    """One hyperparameter candidate.

    ``alpha`` only influences training in implicit mode but is always
    validated.
    """

    features: int
    regularization: float
    alpha: float


class FactorModel:
    """User and item factor vectors of a matrix factorization model.

    Every vector is a 1-D float64 array of length ``rank``. Keys are the
    external integer user and item ids.
    """

    def __init__(
        self,
        rank: int,
        user_factors: Dict[int, np.ndarray],
        item_factors: Dict[int, np.ndarray],
    ):
        if rank <= 0:
            raise ValueError(f"rank must be positive, got {rank}")
        self.rank = rank
        self.user_factors = _as_vectors(user_factors, rank, "user")
        self.item_factors = _as_vectors(item_factors, rank, "item")

    @classmethod
    def from_matrices(
        cls,
        user_ids: Iterable[int],
        user_matrix: np.ndarray,
        item_ids: Iterable[int],
        item_matrix: np.ndarray,
    ) -> "FactorModel":
        """Build from dense factor matrices whose rows follow the id orders."""
        rank = user_matrix.shape[1]
        return cls(
            rank,
            {int(uid): user_matrix[idx] for idx, uid in enumerate(user_ids)},
            {int(iid): item_matrix[idx] for idx, iid in enumerate(item_ids)},
        )

    def user_ids(self) -> List[int]:
        return sorted(self.user_factors)

    def item_ids(self) -> List[int]:
        return sorted(self.item_factors)

    def predict(self, user: int, item: int) -> Optional[float]:
        """Predicted affinity, or None if either id is unknown."""
        user_vector = self.user_factors.get(user)
        item_vector = self.item_factors.get(item)
        if user_vector is None or item_vector is None:
            return None
        return float(np.dot(user_vector, item_vector))

    def item_matrix(self) -> Tuple[List[int], np.ndarray]:
        """Item ids and the matching dense factor matrix."""
        ids = self.item_ids()
        if not ids:
            return ids, np.zeros((0, self.rank))
        return ids, np.vstack([self.item_factors[i] for i in ids])

    def __repr__(self) -> str:
        return (
            f"FactorModel(rank={self.rank}, users={len(self.user_factors)}, "
            f"items={len(self.item_factors)})"
        )


def _as_vectors(
    factors: Dict[int, np.ndarray], rank: int, kind: str
) -> Dict[int, np.ndarray]:
    vectors = {}
    for key, vector in factors.items():
        array = np.asarray(vector, dtype=np.float64)
        if array.ndim != 1 or array.shape[0] != rank:
            raise ValueError(
                f"{kind} {key} vector has shape {array.shape}, expected ({rank},)"
            )
        vectors[int(key)] = array
    return vectors
