import logging
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from .security import client_address

log = logging.getLogger("pharmasite.request")


def init_logging(level: str = "INFO"):
    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
    )


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code == 429:
        return logging.WARNING
    return logging.INFO


class RequestLogMiddleware(BaseHTTPMiddleware):
    """One log line per request; throttled and failed requests stand out."""

    async def dispatch(self, request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        duration_ms = (time.time() - start) * 1000
        log.log(
            _level_for(response.status_code),
            "%s %s %s %.2fms ip=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            client_address(request),
        )
        return response
