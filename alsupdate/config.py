"""Configuration for the ALS model-update pipeline.

All pipeline knobs live on a single ``ALSConfig`` dataclass. Values can be
supplied directly, from a mapping using the dotted keys of the batch
layer configuration (``als.iterations``, ``als.hyperparams.lambda``, ...) or
from ``ALS_*`` environment variables.
"""

import logging
import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Mapping, Optional

# Configure module logger
logger = logging.getLogger(__name__)

# Default configuration constants
DEFAULT_ITERATIONS = 10
DEFAULT_IMPLICIT = True
DEFAULT_FEATURES = [10]
DEFAULT_REGULARIZATION = [0.001]
DEFAULT_ALPHA = [1.0]
DEFAULT_TEST_FRACTION = 0.1
DEFAULT_RANDOM_STATE = 42
DEFAULT_NUM_PARTITIONS = 1
ENV_PREFIX = "ALS_"

# Dotted keys of the batch layer properties format
_DOTTED_KEYS = {
    "als.iterations": "iterations",
    "als.implicit": "implicit",
    "als.hyperparams.features": "features",
    "als.hyperparams.lambda": "regularization",
    "als.hyperparams.alpha": "alpha",
    "als.no-known-items": "no_known_items",
    "als.known-users": "known_users",
    "ml.eval.test-fraction": "test_fraction",
}

_LIST_FIELDS = {"features": int, "regularization": float, "alpha": float}


@dataclass
class ALSConfig:
    """Settings for one ALS update cycle.

    Attributes:
        iterations: Number of alternating least squares sweeps.
        implicit: Train on implicit feedback (summed scores, AUC) instead of
            explicit ratings (last value wins, 1 / RMSE).
        features: Candidate values for the number of latent features.
        regularization: Candidate values for the regularization weight.
        alpha: Candidate values for the implicit confidence scale.
        no_known_items: Send user vectors without their known item ids.
        known_users: Attach known user ids to item vectors as well.
        test_fraction: Approximate fraction of new data held out for
            evaluation, by time.
        skip_malformed: Drop malformed records with a warning instead of
            failing the batch.
        random_state: Seed for factor initialization.
        n_jobs: Workers used for the per-row least squares solves.
        num_partitions: Number of part files written per factor shard.
    """

    iterations: int = DEFAULT_ITERATIONS
    implicit: bool = DEFAULT_IMPLICIT
    features: List[int] = field(default_factory=lambda: list(DEFAULT_FEATURES))
    regularization: List[float] = field(
        default_factory=lambda: list(DEFAULT_REGULARIZATION)
    )
    alpha: List[float] = field(default_factory=lambda: list(DEFAULT_ALPHA))
    no_known_items: bool = False
    known_users: bool = False
    test_fraction: float = DEFAULT_TEST_FRACTION
    skip_malformed: bool = True
    random_state: int = DEFAULT_RANDOM_STATE
    n_jobs: int = 1
    num_partitions: int = DEFAULT_NUM_PARTITIONS

    def __post_init__(self) -> None:
        if self.iterations <= 0:
            raise ValueError(f"iterations must be positive, got {self.iterations}")
        if not 0.0 <= self.test_fraction <= 1.0:
            raise ValueError(
                f"test_fraction must be in [0, 1], got {self.test_fraction}"
            )
        if self.num_partitions <= 0:
            raise ValueError(
                f"num_partitions must be positive, got {self.num_partitions}"
            )
        for name in _LIST_FIELDS:
            if not getattr(self, name):
                raise ValueError(f"At least one candidate value is required for {name}")

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "ALSConfig":
        """Build a config from field names or dotted keys.

        Args:
            values: Mapping of setting name to value. Candidate lists may be
                given as lists, single values or comma-separated strings.

        Returns:
            Validated ALSConfig.

        Raises:
            ValueError: If a key is unknown or a value fails validation.
        """
        known = {f.name: f for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in values.items():
            name = _DOTTED_KEYS.get(key, key.replace("-", "_"))
            if name not in known:
                raise ValueError(f"Unknown configuration key: {key}")
            kwargs[name] = _coerce(name, value, known[name].type)
        return cls(**kwargs)

    @classmethod
    def from_env(
        cls,
        prefix: str = ENV_PREFIX,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "ALSConfig":
        """Build a config from ``<prefix><FIELD>`` environment variables."""
        environ = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            env_key = prefix + f.name.upper()
            if env_key in environ:
                values[f.name] = environ[env_key]
        if values:
            logger.info(f"Loaded configuration overrides from environment: {sorted(values)}")
        return cls.from_dict(values)

    def hyperparameter_ranges(self) -> List[List[float]]:
        """Candidate values, ordered as features, regularization, alpha."""
        return [list(self.features), list(self.regularization), list(self.alpha)]


def _coerce(name: str, value: Any, annotation: Any) -> Any:
    if name in _LIST_FIELDS:
        element_type = _LIST_FIELDS[name]
        if isinstance(value, str):
            value = [v for v in value.split(",") if v.strip()]
        elif not isinstance(value, (list, tuple)):
            value = [value]
        return [element_type(v) for v in value]
    if annotation in (bool, "bool"):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if annotation in (int, "int"):
        return int(value)
    if annotation in (float, "float"):
        return float(value)
    return value
