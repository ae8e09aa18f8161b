"""Request correlation middleware.

Accepts the caller's request id (``LOG_REQUEST_ID_HEADER``, default
``X-Request-ID``) or mints one, exposes it to every log line written while the
request is handled, echoes it on the response and emits one completion line
per request.

Usage:
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request, Response

from scan_gate.core.config import settings
from scan_gate.core.logging import clear_request_id, set_request_id

logger = logging.getLogger(__name__)


async def request_id_middleware(request: Request, call_next) -> Response:
    """Bind a request id for the duration of the request.

    Response headers:
        <request id header>: the id used in logs.
        X-Request-Duration-ms: wall time spent in the app.
    """
    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or uuid.uuid4().hex
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "request.completed",
            extra={
                "method": request.method,
                "route": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response
