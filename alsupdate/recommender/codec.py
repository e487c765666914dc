"""Persistence of factor models.

A factor model is far too large for a single self-describing document, so it
is stored in an ad hoc layout: the user ("X") and item ("Y") factors are each
written as gzip-compressed, newline-delimited JSON ``[id, [v1, v2, ...]]``
records split over one or more ``part-NNNNN.gz`` files, and a small JSON
descriptor points at both shards and records the hyperparameters::

    <model_dir>/
        model.json
        X/part-00000.gz
        Y/part-00000.gz

Shard paths in the descriptor are relative to the descriptor's directory, so a
model directory can be moved and reloaded as a unit.
"""

import gzip
import json
import logging
import shutil
import uuid
import zlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np

from alsupdate.exceptions import CorruptModelError, ModelNotFoundError
from alsupdate.recommender.model import FactorModel, HyperParams
from alsupdate.recommender.utils import DESCRIPTOR_FILENAME

# Configure module logger
logger = logging.getLogger(__name__)

USER_SHARD = "X/"
ITEM_SHARD = "Y/"
PART_PATTERN = "part-*.gz"

PathLike = Union[str, Path]


@dataclass
class ModelDescriptor:
    """Metadata of a persisted factor model.

    Attributes:
        x_path: User factor shard, relative to model_dir.
        y_path: Item factor shard, relative to model_dir.
        features: Number of latent features (the rank).
        regularization: Regularization weight used for training.
        implicit: Whether the model was trained on implicit feedback.
        alpha: Confidence scale, present only for implicit models.
        x_ids: User ids in shard order.
        y_ids: Item ids in shard order.
        model_dir: Directory the descriptor was written to or read from.
    """

    x_path: str
    y_path: str
    features: int
    regularization: float
    implicit: bool
    alpha: Optional[float] = None
    x_ids: List[int] = field(default_factory=list)
    y_ids: List[int] = field(default_factory=list)
    model_dir: Optional[Path] = None

    @property
    def user_path(self) -> Path:
        return Path(self.model_dir or ".") / self.x_path

    @property
    def item_path(self) -> Path:
        return Path(self.model_dir or ".") / self.y_path

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "X": self.x_path,
            "Y": self.y_path,
            "features": self.features,
            "regularization": self.regularization,
            "implicit": self.implicit,
        }
        if self.implicit:
            data["alpha"] = self.alpha
        data["XIDs"] = list(self.x_ids)
        data["YIDs"] = list(self.y_ids)
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(
        cls, data: Dict[str, Any], model_dir: Optional[Path] = None
    ) -> "ModelDescriptor":
        """Parse a descriptor mapping.

        Raises:
            CorruptModelError: If a required field is missing or mistyped.
        """
        location = str(model_dir or "<descriptor>")
        try:
            implicit = _parse_bool(data["implicit"])
            features = int(data["features"])
            if features <= 0:
                raise ValueError(f"features must be positive, got {features}")
            return cls(
                x_path=str(data["X"]),
                y_path=str(data["Y"]),
                features=features,
                regularization=float(data["regularization"]),
                implicit=implicit,
                alpha=float(data["alpha"]) if implicit else None,
                x_ids=[int(i) for i in data.get("XIDs", [])],
                y_ids=[int(i) for i in data.get("YIDs", [])],
                model_dir=model_dir,
            )
        except KeyError as e:
            raise CorruptModelError(location, f"descriptor is missing {e}") from e
        except (TypeError, ValueError) as e:
            raise CorruptModelError(location, f"descriptor field is invalid: {e}") from e


def write_features(
    factors: Dict[int, np.ndarray], path: PathLike, num_partitions: int = 1
) -> List[int]:
    """Write factor vectors as compressed JSON lines.

    Args:
        factors: Mapping of id to factor vector.
        path: Shard directory to create.
        num_partitions: Number of part files to spread records over.

    Returns:
        Ids in the order they were written.
    """
    shard = Path(path)
    shard.mkdir(parents=True, exist_ok=False)
    ids = sorted(factors)

    logger.info(f"Saving {len(ids)} feature vectors to {shard}")
    partitions = np.array_split(np.asarray(ids, dtype=np.int64), num_partitions)
    for part, part_ids in enumerate(partitions):
        with gzip.open(shard / f"part-{part:05d}.gz", "wt", encoding="utf-8") as handle:
            for key in part_ids:
                vector = factors[int(key)]
                handle.write(json.dumps([int(key), [float(v) for v in vector]]))
                handle.write("\n")
    return ids


def read_features(path: PathLike) -> Dict[int, np.ndarray]:
    """Stream a shard directory back into id -> vector.

    Raises:
        CorruptModelError: If the shard is missing, a record is not an
            ``[int, float[]]`` pair, an id repeats or vector lengths differ.
    """
    shard = Path(path)
    parts = sorted(shard.glob(PART_PATTERN)) if shard.is_dir() else []
    if not parts:
        raise CorruptModelError(str(shard), "factor shard not found")

    logger.info(f"Loading feature vectors from {shard}")
    factors: Dict[int, np.ndarray] = {}
    length = None
    for part in parts:
        try:
            with gzip.open(part, "rt", encoding="utf-8") as handle:
                for line_number, line in enumerate(handle, start=1):
                    if not line.strip():
                        continue
                    key, vector = _decode_record(line, f"{part}:{line_number}")
                    if length is None:
                        length = len(vector)
                    elif len(vector) != length:
                        raise CorruptModelError(
                            f"{part}:{line_number}",
                            f"vector length {len(vector)} differs from {length}",
                        )
                    if key in factors:
                        raise CorruptModelError(
                            f"{part}:{line_number}", f"duplicate id {key}"
                        )
                    factors[key] = vector
        except (gzip.BadGzipFile, EOFError, zlib.error, UnicodeDecodeError, OSError) as e:
            raise CorruptModelError(str(part), f"unreadable part file: {e}") from e
    return factors


def save_model(
    model: FactorModel,
    hyperparams: HyperParams,
    implicit: bool,
    candidate_path: PathLike,
    num_partitions: int = 1,
) -> ModelDescriptor:
    """Persist a factor model under a fresh directory.

    Everything is written to a temporary sibling directory which is renamed
    into place only once complete, so a failure never leaves a partial model
    at candidate_path.

    Args:
        model: Model to persist.
        hyperparams: Candidate the model was built with.
        implicit: Training mode flag.
        candidate_path: Directory to create. Must not exist yet.
        num_partitions: Part files per shard.

    Returns:
        Descriptor of the persisted model.

    Raises:
        FileExistsError: If candidate_path already exists.
        OSError: If writing fails.
    """
    target = Path(candidate_path)
    if target.exists():
        raise FileExistsError(f"Model path already exists: {target}")
    target.parent.mkdir(parents=True, exist_ok=True)
    staging = target.parent / f".{target.name}.tmp-{uuid.uuid4().hex}"

    try:
        x_ids = write_features(model.user_factors, staging / USER_SHARD, num_partitions)
        y_ids = write_features(model.item_factors, staging / ITEM_SHARD, num_partitions)

        descriptor = ModelDescriptor(
            x_path=USER_SHARD,
            y_path=ITEM_SHARD,
            features=hyperparams.features,
            regularization=hyperparams.regularization,
            implicit=implicit,
            alpha=hyperparams.alpha if implicit else None,
            x_ids=x_ids,
            y_ids=y_ids,
        )
        (staging / DESCRIPTOR_FILENAME).write_text(descriptor.to_json(), encoding="utf-8")
        staging.rename(target)
    except Exception:
        shutil.rmtree(staging, ignore_errors=True)
        raise

    descriptor.model_dir = target
    logger.info(
        "Saved model",
        extra={
            "model_dir": str(target),
            "features": descriptor.features,
            "num_users": len(x_ids),
            "num_items": len(y_ids),
        },
    )
    return descriptor


def read_descriptor(model_dir: PathLike) -> ModelDescriptor:
    """Read the descriptor of a persisted model.

    Raises:
        ModelNotFoundError: If the descriptor file does not exist.
        CorruptModelError: If it cannot be parsed.
    """
    root = Path(model_dir)
    descriptor_file = root / DESCRIPTOR_FILENAME
    if not descriptor_file.exists():
        raise ModelNotFoundError(str(root))
    try:
        data = json.loads(descriptor_file.read_text(encoding="utf-8"))
    except ValueError as e:
        raise CorruptModelError(str(descriptor_file), f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise CorruptModelError(str(descriptor_file), "descriptor is not an object")
    return ModelDescriptor.from_dict(data, model_dir=root)


def load_model(model_dir: PathLike) -> Tuple[ModelDescriptor, FactorModel]:
    """Load a persisted model using only its descriptor.

    Returns:
        Tuple of (descriptor, factor model).

    Raises:
        ModelNotFoundError: If there is no descriptor.
        CorruptModelError: If a shard is missing or inconsistent with the
            descriptor.
    """
    descriptor = read_descriptor(model_dir)
    user_factors = read_features(descriptor.user_path)
    item_factors = read_features(descriptor.item_path)

    for name, factors, ids, path in (
        ("X", user_factors, descriptor.x_ids, descriptor.user_path),
        ("Y", item_factors, descriptor.y_ids, descriptor.item_path),
    ):
        if set(factors) != set(ids):
            raise CorruptModelError(
                str(path), f"{name} ids do not match the descriptor's {name}IDs"
            )
        for vector in factors.values():
            if len(vector) != descriptor.features:
                raise CorruptModelError(
                    str(path),
                    f"vector length {len(vector)} does not match features={descriptor.features}",
                )
            break

    model = FactorModel(descriptor.features, user_factors, item_factors)
    logger.info(f"Loaded {model} from {model_dir}")
    return descriptor, model


def _decode_record(line: str, location: str) -> Tuple[int, np.ndarray]:
    try:
        record = json.loads(line)
    except ValueError as e:
        raise CorruptModelError(location, f"invalid JSON: {e}") from e

    if not isinstance(record, list) or len(record) != 2:
        raise CorruptModelError(location, "record is not an [id, vector] pair")
    key, vector = record

    if isinstance(key, bool) or not isinstance(key, (int, str)):
        raise CorruptModelError(location, f"id {key!r} is not an integer")
    try:
        key = int(key)
    except ValueError as e:
        raise CorruptModelError(location, f"id {key!r} is not an integer") from e

    if not isinstance(vector, list) or not all(
        isinstance(v, (int, float)) and not isinstance(v, bool) for v in vector
    ):
        raise CorruptModelError(location, "vector is not a list of numbers")
    return key, np.asarray(vector, dtype=np.float64)


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    raise ValueError(f"implicit must be a boolean, got {value!r}")
