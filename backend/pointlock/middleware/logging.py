"""Request logging: one JSON access line per call, tagged with request id and caller."""

import json
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from pointlock.config import settings

logger = logging.getLogger("pointlock.access")

# Health checks and scrapes arrive every few seconds; keep them out of INFO.
_QUIET_PATHS = frozenset({"/health", "/metrics"})


def _access_level(path: str, status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    if path in _QUIET_PATHS:
        return logging.DEBUG
    return logging.INFO


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        # Reuse the gateway's id so one request can be traced across services.
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        request.state.request_id = request_id
        start = time.perf_counter()

        response: Response = await call_next(request)

        entry = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            "user_id": request.headers.get("X-User-Id"),
        }
        logger.log(_access_level(entry["path"], entry["status"]), json.dumps(entry))

        response.headers["X-Request-ID"] = request_id
        return response


def setup_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    # Driver and scheduler chatter drowns the ledger logs at INFO.
    for noisy in ("pymongo", "apscheduler"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
