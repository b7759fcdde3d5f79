from __future__ import annotations

import json

from fastapi import FastAPI
from fastapi.testclient import TestClient

from pharmasite.logging import AccessLogMiddleware


def _app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(AccessLogMiddleware, admin_prefix="/api/admin")

    @app.get("/boom")
    def _boom() -> None:
        raise RuntimeError("boom")

    @app.get("/api/admin/ping")
    def _ping() -> dict:
        return {"pong": True}

    @app.get("/public")
    def _public() -> dict:
        return {"ok": True}

    return app


def _records(output: str) -> list[dict]:
    return [json.loads(line) for line in output.splitlines() if line.startswith("{")]


def test_request_id_header_on_error() -> None:
    with TestClient(_app(), raise_server_exceptions=False) as client:
        response = client.get("/boom")

    assert response.status_code == 500
    assert response.headers["X-Request-ID"]


def test_inbound_request_id_is_echoed() -> None:
    with TestClient(_app()) as client:
        response = client.get("/public", headers={"X-Request-ID": "abc-123"})

    assert response.headers["X-Request-ID"] == "abc-123"


def test_admin_access_is_audited_without_credentials(capsys) -> None:
    with TestClient(_app()) as client:
        client.get(
            "/api/admin/ping",
            headers={
                "Authorization": "Bearer super-secret",
                "Cookie": "admin-session=cookie-secret",
                "User-Agent": "pytest-agent",
                "X-Forwarded-For": "203.0.113.9",
            },
        )
        client.get("/public")

    out = capsys.readouterr().out
    [record] = _records(out)
    assert record["msg"] == "admin_access"
    assert record["path"] == "/api/admin/ping"
    assert record["status"] == 200
    assert record["has_admin_session"] is True
    assert record["has_auth_header"] is True
    assert record["user_agent"] == "pytest-agent"
    assert record["ip"] == "203.0.113.9"
    assert "super-secret" not in out
    assert "cookie-secret" not in out


def test_admin_access_without_credentials(capsys) -> None:
    with TestClient(_app()) as client:
        client.get("/api/admin/ping")

    [record] = _records(capsys.readouterr().out)
    assert record["has_admin_session"] is False
    assert record["has_auth_header"] is False
