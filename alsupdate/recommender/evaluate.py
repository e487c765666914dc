"""Model evaluation on held-out ratings.

Evaluation always returns a higher-is-better score so the hyperparameter
search can maximize it in both training modes: AUC for implicit feedback and
``1 / RMSE`` for explicit ratings.
"""

import logging
import math
import sys
from collections import defaultdict
from typing import Dict, Sequence, Set

import numpy as np
from sklearn.metrics import mean_squared_error, roc_auc_score

from alsupdate.exceptions import EmptyHeldOutError
from alsupdate.recommender.model import FactorModel
from alsupdate.recommender.ratings import AggregatedRating

# Configure module logger
logger = logging.getLogger(__name__)

# Returned when RMSE is exactly 0
MAX_EVALUATION = sys.float_info.max
# Returned when no held-out rating can be scored
EMPTY_EVALUATION = float("-inf")


def rmse(model: FactorModel, ratings: Sequence[AggregatedRating]) -> float:
    """Root mean squared error of predicted vs held-out scores.

    Only pairs whose user and item both have factors are scored.

    Raises:
        EmptyHeldOutError: If no held-out pair can be scored.
    """
    actual = []
    predicted = []
    for rating in ratings:
        prediction = model.predict(rating.user, rating.item)
        if prediction is not None:
            actual.append(rating.score)
            predicted.append(prediction)

    if not actual:
        raise EmptyHeldOutError("rmse")

    logger.debug(f"RMSE over {len(actual)} of {len(ratings)} held-out ratings")
    return float(np.sqrt(mean_squared_error(actual, predicted)))


def area_under_curve(model: FactorModel, ratings: Sequence[AggregatedRating]) -> float:
    """Mean per-user ROC AUC of held-out positives against all other items.

    For each held-out user with factors, every model item the user has a
    positive held-out score for is a positive example and every other model
    item a negative one. Users with no positives (or no negatives) are
    skipped.

    Raises:
        EmptyHeldOutError: If no user can be scored.
    """
    positives: Dict[int, Set[int]] = defaultdict(set)
    for rating in ratings:
        if rating.score > 0 and rating.item in model.item_factors:
            positives[rating.user].add(rating.item)

    item_ids, item_matrix = model.item_matrix()
    item_index = np.asarray(item_ids)

    aucs = []
    for user, items in positives.items():
        user_vector = model.user_factors.get(user)
        if user_vector is None:
            continue
        labels = np.isin(item_index, list(items)).astype(int)
        if labels.all():
            continue
        scores = item_matrix @ user_vector
        aucs.append(roc_auc_score(labels, scores))

    if not aucs:
        raise EmptyHeldOutError("auc")

    logger.debug(f"AUC averaged over {len(aucs)} users")
    return float(np.mean(aucs))


def evaluate_model(
    model: FactorModel,
    ratings: Sequence[AggregatedRating],
    implicit: bool,
) -> float:
    """Score a model on held-out ratings; higher is always better.

    Args:
        model: Built factor model.
        ratings: Aggregated held-out ratings.
        implicit: Use AUC (implicit) or 1 / RMSE (explicit).

    Returns:
        The evaluation. ``MAX_EVALUATION`` if RMSE is 0 or too small to
        invert, ``EMPTY_EVALUATION`` if nothing could be scored or the
        result is NaN.
    """
    try:
        if implicit:
            evaluation = area_under_curve(model, ratings)
            logger.info(f"AUC: {evaluation}")
        else:
            error = rmse(model, ratings)
            logger.info(f"RMSE: {error}")
            if error == 0.0:
                logger.warning("RMSE is 0; returning maximum evaluation")
                return MAX_EVALUATION
            evaluation = 1.0 / error
            # A subnormal RMSE overflows to inf
            if evaluation > MAX_EVALUATION:
                evaluation = MAX_EVALUATION

    except EmptyHeldOutError as e:
        logger.warning(
            "Held-out data could not be scored",
            extra={"metric": e.details["metric"], "held_out_ratings": len(ratings)},
        )
        return EMPTY_EVALUATION

    return sanitize_evaluation(evaluation)


def sanitize_evaluation(evaluation: float) -> float:
    """Map a NaN evaluation to EMPTY_EVALUATION so it never wins a comparison."""
    if math.isnan(evaluation):
        logger.warning("Evaluation is NaN; treating it as unscorable")
        return EMPTY_EVALUATION
    return evaluation
