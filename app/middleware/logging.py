"""
Request logging middleware.

One structured line per request, tagged with the route group (usage,
plans, ai) so quota traffic can be filtered out of the access log.
The caller's uid is masked before it is logged.
"""

import logging
import time
import uuid
from typing import Callable, FrozenSet, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from src.utils.logging import clear_request_context, mask_user_id, set_request_context

logger = logging.getLogger(__name__)

SILENT_PATHS: FrozenSet[str] = frozenset({"/", "/docs", "/openapi.json", "/redoc", "/favicon.ico"})

# Logged only when they fail
QUIET_PATHS: FrozenSet[str] = frozenset({"/health"})

# Requests under these prefixes can consume AI quota
METERED_PREFIXES = ("/ai/", "/usage/record")


def route_group(path: str) -> str:
    """First path segment, or "root"."""
    segment = path.strip("/").split("/", 1)[0]
    return segment or "root"


def level_for_status(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Access logging with request ids.

    Echoes X-Request-ID (or mints one) and adds X-Response-Time. Quota
    denials (429) and rejected analyses (422) on metered paths come out
    at WARNING like any other 4xx, with ``metered=True`` in the record.
    """

    def __init__(
        self,
        app,
        silent_paths: Optional[FrozenSet[str]] = None,
        quiet_paths: Optional[FrozenSet[str]] = None,
    ):
        super().__init__(app)
        self.silent_paths = silent_paths if silent_paths is not None else SILENT_PATHS
        self.quiet_paths = quiet_paths if quiet_paths is not None else QUIET_PATHS

    def _should_log(self, path: str, status_code: int) -> bool:
        if path in self.silent_paths:
            return False
        if path in self.quiet_paths:
            return status_code >= 400
        return True

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        set_request_context(request_id=request_id)
        request.state.request_id = request_id

        path = request.url.path
        fields = {
            "event": "http_request",
            "http_method": request.method,
            "http_path": path,
            "route_group": route_group(path),
            "metered": path.startswith(METERED_PREFIXES),
        }
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
            logger.error(
                f"{request.method} {path} failed after {elapsed_ms}ms: {type(exc).__name__}",
                extra={**fields, "duration_ms": elapsed_ms, "error_type": type(exc).__name__},
                exc_info=True,
            )
            clear_request_context()
            raise

        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{elapsed_ms}ms"

        if self._should_log(path, response.status_code):
            logger.log(
                level_for_status(response.status_code),
                f"{request.method} {path} {response.status_code} ({elapsed_ms}ms)",
                extra={
                    **fields,
                    "http_status": response.status_code,
                    "duration_ms": elapsed_ms,
                    "uid": mask_user_id(getattr(request.state, "user_id", None)),
                },
            )
        clear_request_context()
        return response
