"""Utility functions for the model-update pipeline.

This module provides helper functions for loading input data windows,
building sparse rating matrices and locating model generations on disk.
"""

import gzip
import logging
import time
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy.sparse import csr_matrix

from alsupdate.recommender.ratings import AggregatedRating

# Configure module logger
logger = logging.getLogger(__name__)

# Model artifact filenames
DESCRIPTOR_FILENAME = "model.json"
CANDIDATES_DIRNAME = ".candidates"

PathLike = Union[str, Path]


def ratings_to_matrix(
    ratings: Sequence[AggregatedRating],
) -> Tuple[csr_matrix, Dict[int, int], Dict[int, int]]:
    """Convert aggregated ratings to a sparse user-item matrix.

    Rows represent users and columns represent items, both in ascending id
    order. Each (user, item) pair is expected at most once.

    Args:
        ratings: Aggregated ratings.

    Returns:
        A tuple containing:
            - Sparse CSR matrix of shape (n_users, n_items) with scores
            - Dictionary mapping user_id to matrix row index
            - Dictionary mapping item_id to matrix column index

    Raises:
        ValueError: If ratings is empty.

    Example:
        >>> matrix, user_map, item_map = ratings_to_matrix(
        ...     [AggregatedRating(1, 10, 4.0), AggregatedRating(2, 10, 3.0)]
        ... )
        >>> matrix.shape
        (2, 1)
    """
    if len(ratings) == 0:
        raise ValueError("Cannot create matrix from empty ratings")

    df = pd.DataFrame(list(ratings), columns=["user", "item", "score"])

    unique_users = sorted(df["user"].unique())
    unique_items = sorted(df["item"].unique())

    user_id_to_idx = {int(user_id): idx for idx, user_id in enumerate(unique_users)}
    item_id_to_idx = {int(item_id): idx for idx, item_id in enumerate(unique_items)}

    row_indices = df["user"].map(user_id_to_idx).values
    col_indices = df["item"].map(item_id_to_idx).values
    data = df["score"].values.astype(np.float64)

    matrix = csr_matrix(
        (data, (row_indices, col_indices)),
        shape=(len(unique_users), len(unique_items)),
        dtype=np.float64,
    )

    logger.debug(
        "Built rating matrix",
        extra={
            "shape": list(matrix.shape),
            "nnz": int(matrix.nnz),
        },
    )
    return matrix, user_id_to_idx, item_id_to_idx


def read_data_lines(paths: Iterable[PathLike]) -> List[str]:
    """Read raw records from text files, gzip-compressed or plain.

    Args:
        paths: Files or directories. Directories contribute every regular
            file they contain, in name order.

    Returns:
        Non-blank lines without trailing newlines.

    Raises:
        FileNotFoundError: If a path does not exist.
    """
    lines: List[str] = []
    for path in paths:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Data path not found: {path}")
        files = sorted(p for p in path.iterdir() if p.is_file()) if path.is_dir() else [path]
        for data_file in files:
            opener = gzip.open if data_file.suffix == ".gz" else open
            with opener(data_file, "rt", encoding="utf-8") as handle:
                lines.extend(line.rstrip("\n") for line in handle if line.strip())
        logger.info(f"Loaded {len(lines)} records so far from {path}")
    return lines


def new_generation_name(now: Optional[float] = None) -> str:
    """Directory name for a new model generation (milliseconds since epoch)."""
    return str(int((time.time() if now is None else now) * 1000))


def list_generations(model_dir: PathLike) -> List[Path]:
    """Complete model generations under model_dir, oldest first."""
    root = Path(model_dir)
    if not root.is_dir():
        return []
    generations = [
        p
        for p in root.iterdir()
        if p.is_dir()
        and not p.name.startswith(".")
        and (p / DESCRIPTOR_FILENAME).exists()
    ]
    return sorted(generations, key=lambda p: (len(p.name), p.name))


def latest_generation(model_dir: PathLike) -> Optional[Path]:
    """Most recent complete model generation, or None."""
    generations = list_generations(model_dir)
    return generations[-1] if generations else None


def check_model_exists(model_dir: PathLike) -> bool:
    """Check if at least one complete model generation exists."""
    return latest_generation(model_dir) is not None
