"""Matrix factorization solvers.

The update pipeline only depends on the ``FactorizationSolver`` protocol: given
aggregated (user, item, score) ratings and hyperparameters it returns a
``FactorModel``. ``ALSSolver`` is the default implementation:

* implicit feedback is factorized by ``implicit.als.AlternatingLeastSquares``
  on the confidence matrix ``c = 1 + alpha * |r|``;
* explicit ratings use a numpy/scipy alternating least squares over the
  observed scores, with the regularization weighted by each row's number of
  observations.
"""

import logging
from typing import Dict, Protocol, Sequence, Tuple

import numpy as np
from implicit.als import AlternatingLeastSquares
from joblib import Parallel, delayed, effective_n_jobs
from scipy.sparse import csr_matrix

from alsupdate.recommender.model import FactorModel
from alsupdate.recommender.ratings import AggregatedRating
from alsupdate.recommender.utils import ratings_to_matrix

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_RANDOM_STATE = 42


class FactorizationSolver(Protocol):
    """Computes user and item factors from aggregated ratings."""

    def train_explicit(
        self,
        ratings: Sequence[AggregatedRating],
        features: int,
        iterations: int,
        regularization: float,
    ) -> FactorModel:
        ...

    def train_implicit(
        self,
        ratings: Sequence[AggregatedRating],
        features: int,
        iterations: int,
        regularization: float,
        alpha: float,
    ) -> FactorModel:
        ...


class ALSSolver:
    """Alternating least squares over a sparse rating matrix.

    Args:
        random_state: Seed for the initial factor values.
        n_jobs: Number of threads for training. ``-1`` uses all cores.
    """

    def __init__(self, random_state: int = DEFAULT_RANDOM_STATE, n_jobs: int = 1):
        self.random_state = random_state
        self.n_jobs = n_jobs

    def train_implicit(
        self,
        ratings: Sequence[AggregatedRating],
        features: int,
        iterations: int,
        regularization: float,
        alpha: float,
    ) -> FactorModel:
        matrix, user_id_to_idx, item_id_to_idx = ratings_to_matrix(ratings)
        _log_problem("implicit", matrix, features, iterations, regularization, alpha)

        # Confidence: C = 1 + alpha * |r| (rows = users, cols = items)
        confidence = matrix.astype(np.float32)
        confidence.data = 1.0 + alpha * np.abs(confidence.data)

        model = AlternatingLeastSquares(
            factors=features,
            regularization=regularization,
            iterations=iterations,
            random_state=self.random_state,
            num_threads=0 if self.n_jobs == -1 else self.n_jobs,
            use_gpu=False,
        )
        model.fit(confidence, show_progress=False)

        user_factors = np.asarray(model.user_factors, dtype=np.float64)
        item_factors = np.asarray(model.item_factors, dtype=np.float64)
        if user_factors.shape != (matrix.shape[0], features) or item_factors.shape != (
            matrix.shape[1],
            features,
        ):
            raise ValueError(
                f"Unexpected factor shapes {user_factors.shape} / {item_factors.shape} "
                f"for a {matrix.shape} rating matrix"
            )

        return FactorModel.from_matrices(
            user_id_to_idx.keys(), user_factors, item_id_to_idx.keys(), item_factors
        )

    def train_explicit(
        self,
        ratings: Sequence[AggregatedRating],
        features: int,
        iterations: int,
        regularization: float,
    ) -> FactorModel:
        matrix, user_id_to_idx, item_id_to_idx = ratings_to_matrix(ratings)
        _log_problem("explicit", matrix, features, iterations, regularization, None)

        user_factors, item_factors = self._initial_factors(matrix.shape, features)
        transposed = matrix.T.tocsr()

        for iteration in range(iterations):
            user_factors = self._solve_side(matrix, item_factors, regularization)
            item_factors = self._solve_side(transposed, user_factors, regularization)
            logger.debug(f"Iteration {iteration + 1}/{iterations} complete")

        return FactorModel.from_matrices(
            user_id_to_idx.keys(), user_factors, item_id_to_idx.keys(), item_factors
        )

    def _initial_factors(
        self, shape: Tuple[int, int], features: int
    ) -> Tuple[np.ndarray, np.ndarray]:
        rng = np.random.default_rng(self.random_state)
        scale = 1.0 / np.sqrt(features)
        return (
            rng.normal(0.0, scale, (shape[0], features)),
            rng.normal(0.0, scale, (shape[1], features)),
        )

    def _solve_side(
        self,
        matrix: csr_matrix,
        fixed_factors: np.ndarray,
        regularization: float,
    ) -> np.ndarray:
        """Solve every row of ``matrix`` with the other side held fixed."""
        n_rows = matrix.shape[0]
        n_chunks = max(1, min(n_rows, effective_n_jobs(self.n_jobs)))

        chunks = np.array_split(np.arange(n_rows), n_chunks)
        results = Parallel(n_jobs=self.n_jobs, prefer="threads")(
            delayed(_solve_rows)(matrix, rows, fixed_factors, regularization)
            for rows in chunks
        )
        return np.vstack(results)


def _log_problem(mode, matrix, features, iterations, regularization, alpha) -> None:
    n_users, n_items = matrix.shape
    logger.info(
        f"Training {mode} ALS: {n_users} users x {n_items} items, {matrix.nnz} ratings"
    )
    details: Dict[str, object] = {
        "features": features,
        "iterations": iterations,
        "regularization": regularization,
    }
    if alpha is not None:
        details["alpha"] = alpha
    logger.info("Solver parameters", extra=details)


def _solve_rows(
    matrix: csr_matrix,
    rows: np.ndarray,
    fixed_factors: np.ndarray,
    regularization: float,
) -> np.ndarray:
    features = fixed_factors.shape[1]
    identity = np.eye(features)
    solved = np.zeros((len(rows), features))

    for out, row in enumerate(rows):
        start, end = matrix.indptr[row], matrix.indptr[row + 1]
        if start == end:
            continue
        observed = fixed_factors[matrix.indices[start:end]]
        lhs = observed.T @ observed + regularization * (end - start) * identity
        rhs = observed.T @ matrix.data[start:end]

        try:
            solved[out] = np.linalg.solve(lhs, rhs)
        except np.linalg.LinAlgError:
            # Singular without regularization; fall back to least squares
            solved[out] = np.linalg.lstsq(lhs, rhs, rcond=None)[0]

    return solved
