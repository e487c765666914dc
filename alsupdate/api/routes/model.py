"""Model inspection endpoints for the alsupdate API.

This module provides API endpoints for reading factor vectors from the most
recently promoted model generation and for reloading it after an update.
"""

import logging
import os
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from alsupdate.exceptions import EntityNotFoundError, ModelNotFoundError
from alsupdate.recommender.codec import load_model
from alsupdate.recommender.utils import latest_generation

# Configure module logger
logger = logging.getLogger(__name__)

# Create API router
router = APIRouter(
    prefix="/model",
    tags=["model"],
)

# Default model directory
DEFAULT_MODEL_DIR = os.environ.get("ALS_MODEL_DIR", "models")

# Cache for the loaded model generation
_model_cache: Optional[Dict] = None


class Role(str, Enum):
    """Factor matrix a vector belongs to: users (X) or items (Y)."""

    X = "X"
    Y = "Y"


class FactorVectorResponse(BaseModel):
    """Response model for factor vector requests.

    Attributes:
        role: X for a user vector, Y for an item vector.
        id: User or item id.
        vector: Latent factor vector.
        generation: Name of the model generation the vector comes from.
    """

    role: Role = Field(..., description="X (user) or Y (item)")
    id: int = Field(..., description="User or item ID")
    vector: List[float] = Field(..., description="Latent factor vector")
    generation: str = Field(..., description="Model generation")


def load_model_if_needed(model_dir: Optional[str] = None) -> Dict:
    """Load the latest model generation if it is not already cached.

    Args:
        model_dir: Directory containing model generations.

    Returns:
        Dictionary containing:
            - model_dir: Directory the model was loaded from
            - generation: Name of the loaded generation
            - descriptor: Its ModelDescriptor
            - model: The FactorModel
            - loaded_at: ISO timestamp of the load

    Raises:
        ModelNotFoundError: If no complete generation exists.
        CorruptModelError: If the generation cannot be decoded.
    """
    global _model_cache

    model_dir = model_dir or DEFAULT_MODEL_DIR
    if _model_cache is not None and _model_cache["model_dir"] == model_dir:
        logger.debug("Using cached model")
        return _model_cache

    generation_path = latest_generation(model_dir)
    if generation_path is None:
        logger.error(f"Model not found in {model_dir}")
        raise ModelNotFoundError(model_dir)

    logger.info(f"Loading model from {generation_path}")
    descriptor, model = load_model(generation_path)

    _model_cache = {
        "model_dir": model_dir,
        "generation": generation_path.name,
        "descriptor": descriptor,
        "model": model,
        "loaded_at": datetime.now(timezone.utc).isoformat(),
    }
    logger.info("Model loaded successfully")
    return _model_cache


def clear_model_cache() -> None:
    """Forget the cached model so the next request reloads it."""
    global _model_cache
    _model_cache = None


@router.get("/{role}/{entity_id}", response_model=FactorVectorResponse)
def get_factor_vector(role: Role, entity_id: int) -> FactorVectorResponse:
    """Get the factor vector of a user (X) or item (Y).

    Args:
        role: X for users, Y for items.
        entity_id: User or item ID.

    Returns:
        FactorVectorResponse with the vector from the active generation.

    Raises:
        EntityNotFoundError: If the id has no vector in the active model.
        ModelNotFoundError: If there is no model.

    Example:
        GET /model/X/42
        Returns user 42's factor vector.
    """
    cached = load_model_if_needed()
    model = cached["model"]
    factors = model.user_factors if role == Role.X else model.item_factors

    vector = factors.get(entity_id)
    if vector is None:
        logger.warning(f"{role.value} id {entity_id} not found in model")
        raise EntityNotFoundError(role.value, entity_id)

    return FactorVectorResponse(
        role=role,
        id=entity_id,
        vector=vector.tolist(),
        generation=cached["generation"],
    )


@router.post("/reload")
def reload_model() -> Dict[str, str]:
    """Reload the latest model generation from disk.

    Clears the cache and loads the newest generation under the service's
    model directory, e.g. after an update cycle promoted a new model.

    Returns:
        Dictionary with status message and the loaded generation.
    """
    logger.info("Reloading model...")
    clear_model_cache()
    cached = load_model_if_needed()
    return {"status": "Model reloaded successfully", "generation": cached["generation"]}
