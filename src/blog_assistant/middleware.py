"""HTTP middleware: request ids, access logging and CORS."""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from blog_assistant.config import get_settings
from blog_assistant.utils.logging import get_logger, log_request, set_request_id

logger = get_logger("middleware")

REQUEST_ID_HEADER = "X-Request-ID"


def is_streamed(response: Response) -> bool:
    """True when the body is still being produced after the headers went out."""
    return "content-length" not in response.headers


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id and log one access line for it.

    The id comes from the caller's X-Request-ID header when present and is
    visible to every log record emitted while the request is handled.

    `call_next` returns as soon as the status line and headers are ready.
    Chat answers keep streaming after that, so for them the logged duration
    and the Server-Timing header measure time to first byte.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        set_request_id(request_id)
        started = time.perf_counter()

        response = await call_next(request)

        elapsed_ms = (time.perf_counter() - started) * 1000
        streamed = is_streamed(response)
        log_request(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=elapsed_ms,
            streamed=streamed,
            client_ip=request.client.host if request.client else None,
        )

        response.headers[REQUEST_ID_HEADER] = request_id
        timing = f"app;dur={elapsed_ms:.1f}"
        if streamed:
            timing += ';desc="ttfb"'
        response.headers["Server-Timing"] = timing
        return response


def setup_middleware(app: ASGIApp) -> None:
    """Install CORS (inner) and request context (outer) middleware."""
    cors = get_settings().cors
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors.origins,
        allow_credentials=cors.allow_credentials,
        allow_methods=cors.allow_methods,
        allow_headers=cors.allow_headers,
        max_age=cors.max_age,
    )
    # Added last, so it wraps CORS and also sees preflight requests
    app.add_middleware(RequestContextMiddleware)
    logger.info(f"Middleware configured: CORS origins={cors.origins}, request context")
