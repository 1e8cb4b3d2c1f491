"""FastAPI middleware binding request identifiers and logging request timing."""

from __future__ import annotations

import time
from typing import Awaitable, Callable, Sequence

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from .logger import generate_request_id, get_logger, request_context

__all__ = ["RequestContextMiddleware"]

_MAX_REQUEST_ID_LENGTH = 128


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Propagate ``X-Request-ID`` and log one entry per request."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        header_name: str = "X-Request-ID",
        fallback_headers: Sequence[str] = ("X-Correlation-ID",),
        timing_header: str | None = "X-Response-Time",
    ) -> None:
        super().__init__(app)
        self.header_name = header_name
        self._candidates = [header_name, *fallback_headers]
        self._timing_header = timing_header
        self._logger = get_logger("http")

    def _resolve_request_id(self, request: Request) -> str:
        for header in self._candidates:
            value = (request.headers.get(header) or "").strip()
            if value:
                return value[:_MAX_REQUEST_ID_LENGTH]
        return generate_request_id()

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = self._resolve_request_id(request)
        request.state.request_id = request_id
        start = time.perf_counter()

        with request_context(request_id=request_id):
            log = self._logger.bind(method=request.method, path=request.url.path)
            try:
                response = await call_next(request)
            except Exception:
                log.exception(
                    "http_request_failed",
                    duration_ms=(time.perf_counter() - start) * 1000.0,
                )
                raise

            duration_ms = (time.perf_counter() - start) * 1000.0
            log.info(
                "http_request_completed",
                status_code=response.status_code,
                duration_ms=duration_ms,
            )

        response.headers.setdefault(self.header_name, request_id)
        if self._timing_header:
            response.headers[self._timing_header] = f"{duration_ms / 1000.0:.6f}s"
        return response
