"""Request-ID propagation and JSON audit records for back-office paths."""

from __future__ import annotations

import json
import time
import uuid
from typing import Callable

from starlette.datastructures import MutableHeaders
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.errors import ServerErrorMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from .security import client_address

ADMIN_SESSION_COOKIE = "admin-session"


def _req_id(req: Request) -> str:
    """Return the inbound request ID or generate a UUID4."""

    return req.headers.get("x-request-id") or str(uuid.uuid4())


_REQUEST_ID_SCOPE_KEY = "pharmasite.request_id"


_SERVER_ERROR_PATCHED = False


def _patch_server_error_middleware() -> None:
    """Ensure Starlette's server error middleware propagates request IDs."""

    global _SERVER_ERROR_PATCHED
    if _SERVER_ERROR_PATCHED:
        return

    original_call = ServerErrorMiddleware.__call__

    async def _patched_call(self, scope, receive, send):  # type: ignore[override]
        if scope.get("type") != "http":
            await original_call(self, scope, receive, send)
            return

        async def _send(message):
            if message["type"] == "http.response.start":
                headers = MutableHeaders(raw=list(message["headers"]))
                request_id = scope.get(_REQUEST_ID_SCOPE_KEY)
                if request_id and "x-request-id" not in headers:
                    headers["X-Request-ID"] = request_id
                message = dict(message)
                message["headers"] = headers.raw
            await send(message)

        await original_call(self, scope, receive, _send)

    ServerErrorMiddleware.__call__ = _patched_call  # type: ignore[assignment]
    _SERVER_ERROR_PATCHED = True


_patch_server_error_middleware()


def admin_access_record(
    request: Request,
    request_id: str,
    status: int,
    duration_ms: int,
    error: str | None = None,
) -> dict[str, object]:
    """Describe an admin access attempt without leaking credentials."""

    record: dict[str, object] = {
        "ts": int(time.time()),
        "level": "ERROR" if error else ("WARNING" if status in (401, 403) else "INFO"),
        "msg": "admin_access",
        "request_id": request_id,
        "method": request.method,
        "path": request.url.path,
        "status": status,
        "duration_ms": duration_ms,
        "has_admin_session": ADMIN_SESSION_COOKIE in request.cookies,
        "has_auth_header": bool(
            request.headers.get("authorization") or request.headers.get("x-api-key")
        ),
        "user_agent": request.headers.get("user-agent"),
        "ip": client_address(request),
    }
    if error:
        record["error"] = error
    return record


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Tag every response with `X-Request-ID`; audit calls under `admin_prefix`."""

    def __init__(self, app: ASGIApp, admin_prefix: str = "/api/admin") -> None:
        super().__init__(app)
        self.admin_prefix = admin_prefix

    async def dispatch(self, request: Request, call_next: Callable):  # type: ignore[override]
        request_id = _req_id(request)
        start = time.time()
        status = 500
        error: str | None = None
        response: Response | None = None
        request.scope[_REQUEST_ID_SCOPE_KEY] = request_id
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        except Exception as exc:  # pragma: no cover - handled after logging
            error = repr(exc)
            raise
        finally:
            if request.url.path.startswith(self.admin_prefix):
                duration_ms = int((time.time() - start) * 1000)
                record = admin_access_record(request, request_id, status, duration_ms, error)
                print(json.dumps(record), flush=True)
            if response is not None:
                response.headers["X-Request-ID"] = request_id
