"""FastAPI application main module.

This module defines the FastAPI application for inspecting the model-update
pipeline: health and status endpoints, the active model's factor vectors and
the pipeline metrics.
"""

from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from alsupdate import __version__
from alsupdate.api.middleware import RequestLoggingMiddleware
from alsupdate.api.routes import model as model_routes
from alsupdate.exceptions import ALSUpdateError
from alsupdate.metrics import metrics_service

# Create FastAPI application instance
app = FastAPI(
    title="alsupdate API",
    description="Inspection service for the ALS model-update pipeline",
    version=__version__,
)

app.add_middleware(RequestLoggingMiddleware)

# Include routers
app.include_router(model_routes.router)


@app.exception_handler(ALSUpdateError)
async def alsupdate_error_handler(request: Request, exc: ALSUpdateError) -> JSONResponse:
    """Render pipeline errors with their status code and details."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": type(exc).__name__,
            "message": exc.message,
            "details": exc.details,
        },
    )


@app.get("/ping")
def ping() -> Dict[str, str]:
    """Health check endpoint.

    Returns a simple status response to verify the API is running.

    Returns:
        Dictionary with status key set to "ok".

    Example:
        >>> response = client.get("/ping")
        >>> assert response.json() == {"status": "ok"}
    """
    return {"status": "ok"}


@app.get("/status")
def status() -> Dict[str, Any]:
    """Report the active model and pipeline metrics.

    A missing or unreadable model is reported as ``model_loaded: false``
    with the error message, not as a failure of this endpoint.
    """
    result: Dict[str, Any] = {
        "model_loaded": False,
        "generation": None,
        "timestamp_last_loaded": None,
        "features": None,
        "implicit": None,
        "num_users": 0,
        "num_items": 0,
        "error": None,
        "metrics": metrics_service.get_metrics(),
    }
    try:
        cached = model_routes.load_model_if_needed()
    except ALSUpdateError as e:
        result["error"] = e.message
        return result

    descriptor = cached["descriptor"]
    result.update(
        model_loaded=True,
        generation=cached["generation"],
        timestamp_last_loaded=cached["loaded_at"],
        features=descriptor.features,
        implicit=descriptor.implicit,
        num_users=len(cached["model"].user_factors),
        num_items=len(cached["model"].item_factors),
    )
    return result


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "alsupdate.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
