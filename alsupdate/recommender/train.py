"""Factor model building.

This module provides the boundary between the update pipeline and the
factorization solver. It validates a hyperparameter candidate, picks the
explicit or implicit solver entry point and checks that the solver's output
has the requested shape. It owns no optimization logic itself.
"""

import logging
from numbers import Integral
from typing import Optional, Sequence

from alsupdate.exceptions import InvalidHyperparameterError
from alsupdate.recommender.model import FactorModel, HyperParams
from alsupdate.recommender.ratings import AggregatedRating
from alsupdate.recommender.solver import ALSSolver, FactorizationSolver

# Configure module logger
logger = logging.getLogger(__name__)

# Model configuration constants
DEFAULT_ITERATIONS = 10


def validate_hyperparams(hyperparams: Sequence[float]) -> HyperParams:
    """Check a candidate and return it as HyperParams.

    ``alpha`` is validated even though only implicit training uses it.

    Args:
        hyperparams: (features, regularization, alpha).

    Returns:
        The candidate as a HyperParams tuple with features as int.

    Raises:
        InvalidHyperparameterError: If features is not a positive integer,
            regularization is negative or alpha is not positive.
    """
    if len(hyperparams) != 3:
        raise InvalidHyperparameterError(
            "hyperparams", list(hyperparams), "(features, regularization, alpha)"
        )
    features, regularization, alpha = hyperparams

    if isinstance(features, bool) or not (
        isinstance(features, Integral) or float(features).is_integer()
    ):
        raise InvalidHyperparameterError("features", features, "an integer")
    if int(features) <= 0:
        raise InvalidHyperparameterError("features", features, "> 0")
    if not float(regularization) >= 0.0:
        raise InvalidHyperparameterError("regularization", regularization, ">= 0")
    if not float(alpha) > 0.0:
        raise InvalidHyperparameterError("alpha", alpha, "> 0")

    return HyperParams(int(features), float(regularization), float(alpha))


def build_factor_model(
    ratings: Sequence[AggregatedRating],
    hyperparams: Sequence[float],
    implicit: bool,
    iterations: int = DEFAULT_ITERATIONS,
    solver: Optional[FactorizationSolver] = None,
) -> FactorModel:
    """Train a factor model on aggregated ratings.

    Args:
        ratings: Aggregated training ratings (deletes already removed).
        hyperparams: (features, regularization, alpha) candidate.
        implicit: Use the implicit-feedback objective.
        iterations: Number of solver iterations.
        solver: Factorization solver; defaults to ALSSolver().

    Returns:
        FactorModel with rank equal to the requested features.

    Raises:
        InvalidHyperparameterError: If the candidate is invalid.
        ValueError: If there are no ratings or the solver returns a model
            of the wrong rank.

    Example:
        >>> model = build_factor_model(
        ...     ratings, HyperParams(10, 0.01, 1.0), implicit=True
        ... )
        >>> model.rank
        10
    """
    params = validate_hyperparams(hyperparams)
    if iterations <= 0:
        raise ValueError(f"iterations must be positive, got {iterations}")
    if len(ratings) == 0:
        raise ValueError("Cannot train on empty ratings")

    solver = solver or ALSSolver()

    logger.info(f"Building model with params {list(params)}")

    if implicit:
        model = solver.train_implicit(
            ratings,
            params.features,
            iterations,
            params.regularization,
            params.alpha,
        )
    else:
        model = solver.train_explicit(
            ratings,
            params.features,
            iterations,
            params.regularization,
        )

    if model.rank != params.features:
        raise ValueError(
            f"Solver returned rank {model.rank}, expected {params.features}"
        )

    logger.info(
        "Model built",
        extra={
            "features": params.features,
            "num_users": len(model.user_factors),
            "num_items": len(model.item_factors),
        },
    )
    return model
