"""Shared fixtures for the alsupdate test suite."""

import sys
from pathlib import Path
from typing import Dict, List, Sequence

import numpy as np
import pytest

# Add project root to Python path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from alsupdate.metrics import metrics_service
from alsupdate.recommender.model import FactorModel
from alsupdate.recommender.ratings import AggregatedRating


class ConstantSolver:
    """Solver stub giving every user and item of the ratings a fixed vector.

    Users get ``user_value`` in every component and items ``item_value``, so
    every prediction equals ``features * user_value * item_value``.
    """

    def __init__(self, user_value: float = 1.0, item_value: float = 1.0):
        self.user_value = user_value
        self.item_value = item_value
        self.calls: List[Dict] = []

    def _model(self, ratings: Sequence[AggregatedRating], features: int) -> FactorModel:
        users = {r.user for r in ratings}
        items = {r.item for r in ratings}
        return FactorModel(
            features,
            {u: np.full(features, self.user_value) for u in users},
            {i: np.full(features, self.item_value) for i in items},
        )

    def train_explicit(self, ratings, features, iterations, regularization):
        self.calls.append(
            {
                "mode": "explicit",
                "features": features,
                "regularization": regularization,
                "ratings": list(ratings),
            }
        )
        return self._model(ratings, features)

    def train_implicit(self, ratings, features, iterations, regularization, alpha):
        self.calls.append(
            {
                "mode": "implicit",
                "features": features,
                "regularization": regularization,
                "alpha": alpha,
                "ratings": list(ratings),
            }
        )
        return self._model(ratings, features)


class FailingSolver:
    """Solver stub that always fails."""

    def train_explicit(self, ratings, features, iterations, regularization):
        raise RuntimeError("solver crashed")

    def train_implicit(self, ratings, features, iterations, regularization, alpha):
        raise RuntimeError("solver crashed")


@pytest.fixture
def constant_solver() -> ConstantSolver:
    return ConstantSolver()


@pytest.fixture
def failing_solver() -> FailingSolver:
    return FailingSolver()


@pytest.fixture
def small_model() -> FactorModel:
    """Rank-2 model with two users and three items."""
    return FactorModel(
        2,
        {1: np.array([1.0, 0.0]), 2: np.array([0.0, 1.0])},
        {
            10: np.array([1.0, 0.0]),
            20: np.array([0.0, 1.0]),
            30: np.array([0.5, 0.5]),
        },
    )


@pytest.fixture
def implicit_events() -> List[str]:
    """Implicit feedback batch of 6 users and 8 items, 10 time units apart."""
    lines = []
    timestamp = 1000
    for user in range(1, 7):
        for item in range(1, 9):
            if (user + item) % 3 == 0:
                continue
            lines.append(f"{user},{item},{1 + (user * item) % 3}.0,{timestamp}")
            timestamp += 10
    return lines


@pytest.fixture(autouse=True)
def reset_metrics():
    """Start every test with empty pipeline metrics."""
    metrics_service.reset()
    yield
    metrics_service.reset()
