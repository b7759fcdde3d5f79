"""Request hardening helpers: client addressing, input sanitising, headers."""

from __future__ import annotations

import re
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

UNKNOWN_ADDRESS = "local"

MAX_TEXT_LENGTH = 10_000
MAX_EMAIL_LENGTH = 254
MAX_PHONE_LENGTH = 20

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_JS_SCHEME_RE = re.compile(r"javascript:", re.IGNORECASE)
_PHONE_STRIP_RE = re.compile(r"[^\d+\-\s()]")

SECURITY_HEADERS: dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": ", ".join(
        [
            "geolocation=()",
            "microphone=()",
            "camera=()",
            "payment=()",
            "usb=()",
        ]
    ),
}


def client_address(request: Request, trust_forwarded: bool = True) -> str:
    """Best-effort caller address, falling back to a fixed placeholder.

    Proxy headers are client-controlled unless a proxy in front rewrites them;
    with ``trust_forwarded`` off only the socket peer is used.
    """

    if trust_forwarded:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",", 1)[0].strip()
            if first:
                return first
        real_ip = (request.headers.get("x-real-ip") or "").strip()
        if real_ip:
            return real_ip
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_ADDRESS


def sanitize_text(value: str) -> str:
    cleaned = value.strip().replace("<", "").replace(">", "")
    return _JS_SCHEME_RE.sub("", cleaned)[:MAX_TEXT_LENGTH]


def sanitize_email(value: str) -> str:
    cleaned = re.sub(r"[<>\s]", "", value.strip().lower())
    return cleaned[:MAX_EMAIL_LENGTH]


def sanitize_phone(value: str) -> str:
    cleaned = _PHONE_STRIP_RE.sub("", value)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    return cleaned[:MAX_PHONE_LENGTH]


def is_email(value: str) -> bool:
    return bool(EMAIL_RE.match(value))


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):  # type: ignore[override]
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response
