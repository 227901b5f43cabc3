"""FastAPI middleware that captures failed requests and logs them to the DB.

5xx responses and unhandled exceptions are stored as errors, other 4xx
responses as warnings. 401/403 and 423 (application leased by another
reviewer) are expected during normal use and are not recorded.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import HTTPException, Request, Response
from jose import JWTError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse

from app.models.error_log import ErrorSeverity
from app.services.error_logger import log_error_standalone

logger = logging.getLogger("guide_review.middleware")

_IGNORED_STATUS_CODES = frozenset({401, 403, 423})


def _admin_id_from_request(request: Request) -> Optional[int]:
    from app.auth_utils import decode_token

    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    try:
        payload = decode_token(auth_header[7:])
        return int(payload.get("sub", 0)) or None
    except (JWTError, ValueError, TypeError):
        return None


class ErrorCaptureMiddleware(BaseHTTPMiddleware):
    """Catches unhandled exceptions, returns 500, and persists the error."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        start = time.time()
        admin_id = _admin_id_from_request(request)

        try:
            response = await call_next(request)
        except Exception as exc:
            if isinstance(exc, HTTPException) and exc.status_code < 500:
                raise

            elapsed_ms = round((time.time() - start) * 1000, 2)
            severity = ErrorSeverity.CRITICAL if "database" in str(exc).lower() else ErrorSeverity.ERROR
            await log_error_standalone(
                exc,
                severity=severity,
                module="middleware.error_capture",
                request_method=request.method,
                request_path=str(request.url.path),
                status_code=500,
                response_time_ms=elapsed_ms,
                admin_id=admin_id,
            )
            logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal Server Error"},
            )

        if response.status_code >= 400 and response.status_code not in _IGNORED_STATUS_CODES:
            elapsed_ms = round((time.time() - start) * 1000, 2)
            await log_error_standalone(
                Exception(f"HTTP {response.status_code} on {request.method} {request.url.path}"),
                severity=ErrorSeverity.ERROR if response.status_code >= 500 else ErrorSeverity.WARNING,
                module="middleware.error_capture",
                function_name="dispatch",
                request_method=request.method,
                request_path=str(request.url.path),
                status_code=response.status_code,
                response_time_ms=elapsed_ms,
                admin_id=admin_id,
            )
        return response
