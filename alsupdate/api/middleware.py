"""Request logging for the inspection API."""

import logging
import time
import uuid
from typing import Any

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from alsupdate.logging_config import log_context

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tag every record logged while serving a request with its id.

    An incoming ``X-Request-ID`` header is reused so ids can be followed
    across services; otherwise a new one is generated. The id is echoed in
    the response headers.
    """

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        start_time = time.perf_counter()

        with log_context(request_id=request_id, path=request.url.path):
            try:
                response = await call_next(request)
            except Exception:
                logger.error(
                    f"{request.method} failed",
                    extra={"duration_ms": _elapsed_ms(start_time)},
                    exc_info=True,
                )
                raise

            logger.info(
                f"{request.method} {response.status_code}",
                extra={
                    "status_code": response.status_code,
                    "duration_ms": _elapsed_ms(start_time),
                },
            )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def _elapsed_ms(start_time: float) -> float:
    return round((time.perf_counter() - start_time) * 1000, 2)
