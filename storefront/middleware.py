"""
Middleware for FastAPI: one access line per request, tagged with the
session's role.
"""
import hashlib
import logging
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

SESSION_HEADER = "X-Session-ID"

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def hash_identifier(identifier: str) -> str:
    """Hash identifier for logging (no PII)"""
    return hashlib.sha256(identifier.encode()).hexdigest()[:8]


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs each request once it completes.

    The session dependency records the session's role (guest, customer
    or admin) in ``request.state``; requests that never resolved a
    session, like /health, log "-".
    Server errors log at warning level.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        session_id = request.headers.get(SESSION_HEADER)
        session = hash_identifier(session_id) if session_id else "-"

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"{request.method} {request.url.path} failed session={session} "
                f"role={self._role(request)}: {type(e).__name__}",
                exc_info=True
            )
            raise

        latency_ms = (time.time() - start_time) * 1000
        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        logger.log(
            level,
            f"{request.method} {request.url.path} {response.status_code} "
            f"session={session} role={self._role(request)} {latency_ms:.1f}ms",
            extra={
                "status_code": response.status_code,
                "session_role": self._role(request),
                "latency_ms": round(latency_ms, 2),
            }
        )

        response.headers["X-Response-Time-Ms"] = f"{latency_ms:.2f}"
        return response

    @staticmethod
    def _role(request: Request) -> str:
        return getattr(request.state, "session_role", "-")
