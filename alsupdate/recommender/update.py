"""Model-update lifecycle.

``MLUpdate`` is the generic batch-update contract: split new data into
training and held-out subsets, build one model per hyperparameter candidate,
evaluate each, promote the best and publish it. ``ALSUpdate`` is its
specialization for matrix factorization recommenders.

Only a candidate whose build, evaluation and persistence all completed is ever
promoted, and promotion always creates a new generation directory; previously
promoted generations are never modified.
"""

import abc
import itertools
import json
import logging
import shutil
import time
from pathlib import Path
from typing import List, NamedTuple, Optional, Sequence, Tuple, Union

from alsupdate.config import ALSConfig
from alsupdate.exceptions import InvalidHyperparameterError
from alsupdate.logging_config import log_context
from alsupdate.metrics import metrics_service
from alsupdate.recommender import publish
from alsupdate.recommender.codec import ModelDescriptor, load_model, read_descriptor, save_model
from alsupdate.recommender.evaluate import evaluate_model, sanitize_evaluation
from alsupdate.recommender.model import HyperParams
from alsupdate.recommender.publish import MODEL_KEY, QueueProducer
from alsupdate.recommender.ratings import to_aggregated_ratings
from alsupdate.recommender.solver import ALSSolver, FactorizationSolver
from alsupdate.recommender.split import split_by_time
from alsupdate.recommender.train import build_factor_model, validate_hyperparams
from alsupdate.recommender.utils import CANDIDATES_DIRNAME, new_generation_name

# Configure module logger
logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class UpdateResult(NamedTuple):
    """Outcome of one completed update cycle."""

    generation_path: Path
    hyperparams: HyperParams
    evaluation: float
    published: int


class MLUpdate(abc.ABC):
    """Batch update of a model from new and historical data."""

    @abc.abstractmethod
    def get_hyperparameter_ranges(self) -> List[List[float]]:
        """Candidate values for each hyperparameter, in candidate order."""

    @abc.abstractmethod
    def build_model(
        self,
        train_data: Sequence[str],
        hyperparams: Sequence[float],
        candidate_path: PathLike,
    ) -> ModelDescriptor:
        """Build and persist a model for one candidate at candidate_path."""

    @abc.abstractmethod
    def evaluate(self, descriptor: ModelDescriptor, test_data: Sequence[str]) -> float:
        """Score a persisted model on held-out data; higher is better."""

    @abc.abstractmethod
    def publish_additional_model_data(
        self,
        model_dir: PathLike,
        new_data: Sequence[str],
        past_data: Optional[Sequence[str]],
        queue: QueueProducer,
    ) -> int:
        """Send per-entity updates for a promoted model; returns records sent."""

    @abc.abstractmethod
    def split_new_data_to_train_test(
        self, new_data: Sequence[str]
    ) -> Tuple[List[str], List[str]]:
        """Partition new data into (training, held-out) records."""

    def hyperparameter_candidates(self) -> List[HyperParams]:
        """Default candidates: every combination of the configured ranges."""
        return [
            HyperParams(*combination)
            for combination in itertools.product(*self.get_hyperparameter_ranges())
        ]

    def run_update(
        self,
        new_data: Sequence[str],
        past_data: Optional[Sequence[str]],
        model_dir: PathLike,
        queue: QueueProducer,
        candidates: Optional[Sequence[Sequence[float]]] = None,
    ) -> UpdateResult:
        """Run one full update cycle and promote the best candidate.

        Args:
            new_data: Raw records that arrived since the last cycle.
            past_data: Raw historical records, or None. Used for training
                and known-id indices, never for evaluation.
            model_dir: Directory holding model generations.
            queue: Destination of the model announcement and updates.
            candidates: Hyperparameter candidates to try, in order. Defaults
                to hyperparameter_candidates().

        Returns:
            UpdateResult of the promoted generation.

        Raises:
            ValueError: If no candidate produced a model.
            Exception: Solver and storage failures propagate; nothing is
                promoted in that case.
        """
        model_root = Path(model_dir)
        if candidates is None:
            candidates = self.hyperparameter_candidates()
        candidates = list(candidates)
        if not candidates:
            raise ValueError("No hyperparameter candidates to evaluate")

        new_data = list(new_data)
        train_new, test_data = self.split_new_data_to_train_test(new_data)
        train_data = train_new + list(past_data or [])
        logger.info(
            "Starting model update",
            extra={
                "new_records": len(new_data),
                "past_records": len(past_data or []),
                "train_records": len(train_data),
                "test_records": len(test_data),
                "candidates": len(candidates),
            },
        )

        generation = new_generation_name()
        scratch = model_root / CANDIDATES_DIRNAME / generation
        best: Optional[Tuple[Path, HyperParams, float]] = None

        with log_context(generation=generation):
            try:
                for number, hyperparams in enumerate(candidates):
                    candidate_path = scratch / str(number)
                    with log_context(candidate=number, hyperparams=list(hyperparams)):
                        evaluation = self._build_and_evaluate(
                            train_data, test_data, hyperparams, candidate_path
                        )
                    if evaluation is None:
                        continue
                    if best is None or evaluation > best[2]:
                        best = (candidate_path, validate_hyperparams(hyperparams), evaluation)

                if best is None:
                    raise ValueError("No hyperparameter candidate produced a model")

                generation_path = _promote(best[0], model_root, generation)
            except Exception as e:
                logger.error(f"Model update failed: {e}", exc_info=True)
                raise
            finally:
                shutil.rmtree(scratch, ignore_errors=True)

            logger.info(
                "Promoted model",
                extra={
                    "generation_path": str(generation_path),
                    "hyperparams": list(best[1]),
                    "evaluation": best[2],
                },
            )

            descriptor = read_descriptor(generation_path)
            queue.send(
                MODEL_KEY,
                json.dumps({"path": str(generation_path), "descriptor": descriptor.to_dict()}),
            )

            start_time = time.perf_counter()
            published = self.publish_additional_model_data(
                generation_path, new_data, past_data, queue
            )
            metrics_service.record_publish((time.perf_counter() - start_time) * 1000, published)

        return UpdateResult(generation_path, best[1], best[2], published)

    def _build_and_evaluate(
        self,
        train_data: Sequence[str],
        test_data: Sequence[str],
        hyperparams: Sequence[float],
        candidate_path: Path,
    ) -> Optional[float]:
        """Build and score one candidate; None if its hyperparameters are invalid."""
        start_time = time.perf_counter()
        try:
            descriptor = self.build_model(train_data, hyperparams, candidate_path)
        except InvalidHyperparameterError as e:
            metrics_service.record_failed_build()
            logger.warning(f"Skipping candidate: {e.message}")
            return None
        metrics_service.record_build((time.perf_counter() - start_time) * 1000)

        start_time = time.perf_counter()
        evaluation = sanitize_evaluation(self.evaluate(descriptor, test_data))
        metrics_service.record_evaluation((time.perf_counter() - start_time) * 1000, evaluation)
        logger.info(f"Candidate evaluated to {evaluation}")
        return evaluation


class ALSUpdate(MLUpdate):
    """MLUpdate specialization building ALS matrix factorization models.

    Args:
        config: Pipeline configuration.
        solver: Factorization solver; defaults to ALSSolver seeded from the
            config.
    """

    def __init__(
        self,
        config: Optional[ALSConfig] = None,
        solver: Optional[FactorizationSolver] = None,
    ):
        self.config = config or ALSConfig()
        self.solver = solver or ALSSolver(
            random_state=self.config.random_state, n_jobs=self.config.n_jobs
        )

    def get_hyperparameter_ranges(self) -> List[List[float]]:
        return self.config.hyperparameter_ranges()

    def build_model(
        self,
        train_data: Sequence[str],
        hyperparams: Sequence[float],
        candidate_path: PathLike,
    ) -> ModelDescriptor:
        params = validate_hyperparams(hyperparams)
        ratings = to_aggregated_ratings(
            train_data, self.config.implicit, skip_malformed=self.config.skip_malformed
        )
        model = build_factor_model(
            ratings,
            params,
            implicit=self.config.implicit,
            iterations=self.config.iterations,
            solver=self.solver,
        )
        return save_model(
            model,
            params,
            self.config.implicit,
            candidate_path,
            num_partitions=self.config.num_partitions,
        )

    def evaluate(self, descriptor: ModelDescriptor, test_data: Sequence[str]) -> float:
        logger.info("Evaluating model")
        ratings = to_aggregated_ratings(
            test_data, self.config.implicit, skip_malformed=self.config.skip_malformed
        )
        _, model = load_model(descriptor.model_dir)
        return evaluate_model(model, ratings, self.config.implicit)

    def publish_additional_model_data(
        self,
        model_dir: PathLike,
        new_data: Sequence[str],
        past_data: Optional[Sequence[str]],
        queue: QueueProducer,
    ) -> int:
        return publish.publish_additional_model_data(
            model_dir,
            new_data,
            past_data,
            queue,
            no_known_items=self.config.no_known_items,
            known_users=self.config.known_users,
            skip_malformed=self.config.skip_malformed,
        )

    def split_new_data_to_train_test(
        self, new_data: Sequence[str]
    ) -> Tuple[List[str], List[str]]:
        """Split on time: roughly the earliest records train, the rest is held out."""
        test_fraction = self.config.test_fraction
        if test_fraction == 0.0:
            return list(new_data), []
        if test_fraction == 1.0:
            return [], list(new_data)
        return split_by_time(
            new_data, test_fraction, skip_malformed=self.config.skip_malformed
        )


def _promote(candidate_path: Path, model_root: Path, generation: str) -> Path:
    target = model_root / generation
    suffix = 0
    while target.exists():
        suffix += 1
        target = model_root / f"{generation}-{suffix}"
    candidate_path.rename(target)
    return target
