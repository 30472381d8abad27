"""Request id propagation and timing."""
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from liftdiag.services.logging_config import request_id_var

logger = logging.getLogger("liftdiag-api.middleware")

SKIP_LOG_PATHS = {"/health"}
REQUEST_ID_HEADER = "X-Request-ID"


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """
    Reuses the caller's X-Request-ID (or mints one) and makes it the logging
    context for everything the request triggers. Responses carry the id and
    X-Process-Time in ms. One access line per request, health probes excepted.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        started = time.perf_counter()
        try:
            response: Response = await call_next(request)
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            if request.url.path not in SKIP_LOG_PATHS:
                logger.info(
                    f"{request.method} {request.url.path} -> {response.status_code} in {duration_ms}ms",
                    extra={
                        "http_method": request.method,
                        "http_path": request.url.path,
                        "http_status": response.status_code,
                        "duration_ms": duration_ms,
                    },
                )
        finally:
            request_id_var.reset(token)

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Process-Time"] = str(duration_ms)
        return response
