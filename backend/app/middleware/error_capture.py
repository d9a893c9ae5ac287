"""FastAPI middleware that captures unhandled exceptions and logs them.

Every 5xx response is logged at ERROR with request context; 4xx responses
other than auth failures are logged at WARNING.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import Request, Response
from jose import JWTError, jwt
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse

from app.config import settings

logger = logging.getLogger("rentcheck.middleware")


def _user_id_from_request(request: Request) -> Optional[int]:
    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    try:
        payload = jwt.decode(auth_header[7:], settings.secret_key, algorithms=["HS256"])
        return int(payload.get("sub", 0)) or None
    except (JWTError, ValueError, TypeError):
        return None


class ErrorCaptureMiddleware(BaseHTTPMiddleware):
    """Catches unhandled exceptions, returns 500, and logs the error."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        start = time.time()
        user_id = _user_id_from_request(request)
        ip_address = request.client.host if request.client else None

        try:
            response = await call_next(request)
        except Exception:
            elapsed_ms = round((time.time() - start) * 1000, 2)
            logger.exception(
                "Unhandled exception on %s %s (user=%s ip=%s %sms)",
                request.method, request.url.path, user_id, ip_address, elapsed_ms,
            )
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal Server Error"},
            )

        elapsed_ms = round((time.time() - start) * 1000, 2)
        if response.status_code >= 500:
            logger.error(
                "HTTP %s on %s %s (user=%s ip=%s %sms)",
                response.status_code, request.method, request.url.path,
                user_id, ip_address, elapsed_ms,
            )
        # 401/403 are auth noise
        elif response.status_code >= 400 and response.status_code not in (401, 403):
            logger.warning(
                "HTTP %s on %s %s (user=%s %sms)",
                response.status_code, request.method, request.url.path, user_id, elapsed_ms,
            )
        return response
