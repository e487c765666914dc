"""Logging configuration for the update pipeline.

Records emitted while an update cycle runs carry the cycle's context: the
generation being built, the candidate number and its hyperparameters, or the
request id inside the inspection API. The context is held in a
``contextvars.ContextVar`` so it follows threads started with a copied
context and asyncio tasks alike.

Two output formats are supported: the plain text format used by the scripts,
with the context rendered as a ``[key=value ...]`` prefix, and JSON lines for
log aggregation.
"""

import contextlib
import contextvars
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping

import numpy as np

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(context)s%(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Fields of the active pipeline step, innermost values win
_pipeline_context: contextvars.ContextVar[Mapping[str, Any]] = contextvars.ContextVar(
    "alsupdate_log_context", default={}
)

# LogRecord attributes that are never copied into the JSON payload
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "context", "taskName"}


@contextlib.contextmanager
def log_context(**fields: Any) -> Iterator[Mapping[str, Any]]:
    """Attach ``fields`` to every record logged inside the block.

    Nested blocks extend the outer context; ``None`` values remove a field.
    """
    merged = {**_pipeline_context.get(), **fields}
    merged = {key: value for key, value in merged.items() if value is not None}
    token = _pipeline_context.set(merged)
    try:
        yield merged
    finally:
        _pipeline_context.reset(token)


def current_context() -> Dict[str, Any]:
    """Copy of the fields currently attached to log records."""
    return dict(_pipeline_context.get())


class PipelineContextFilter(logging.Filter):
    """Copy the active ``log_context`` fields onto each record.

    Fields passed explicitly through ``extra=`` take precedence. The rendered
    ``context`` attribute feeds ``TEXT_FORMAT``.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        fields = _pipeline_context.get()
        for key, value in fields.items():
            if not hasattr(record, key):
                setattr(record, key, value)
        if fields:
            rendered = " ".join(f"{key}={_to_json(value)}" for key, value in fields.items())
            record.context = f"[{rendered}] "
        else:
            record.context = ""
        return True


class JSONFormatter(logging.Formatter):
    """Render records as one JSON object per line.

    The payload holds the timestamp, level, logger, message and source
    location, then any pipeline context and ``extra=`` fields, then the
    formatted exception if there is one.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }

        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS and key not in payload:
                payload[key] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_to_json)


def _to_json(value: Any) -> Any:
    """Convert numpy values and paths, which ``json`` cannot encode."""
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_to_json(item) for item in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


def setup_logging(log_level: str = "INFO", json_format: bool = False) -> None:
    """Configure the root logger for the pipeline.

    Args:
        log_level: Logging level name (DEBUG, INFO, WARNING, ...).
        json_format: Emit JSON lines instead of ``TEXT_FORMAT``.
    """
    level = getattr(logging, log_level.upper())
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout if json_format else sys.stderr)
    handler.setLevel(level)
    handler.addFilter(PipelineContextFilter())
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(handler)

    # Keep third-party chatter out of pipeline logs
    for name in ("uvicorn", "uvicorn.access", "implicit"):
        logging.getLogger(name).setLevel(logging.WARNING)
