from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from pharmasite import ratelimit
from pharmasite.config import settings
from pharmasite.main import app



class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def configure(monkeypatch):
    """Set a setting both in the environment and on the live object.

    The app lifespan reloads settings from the environment, so both have to agree.
    """

    def _apply(**values):
        for name, value in values.items():
            monkeypatch.setenv(name, "" if value is None else str(value))
            monkeypatch.setattr(settings, name, value)

    return _apply


@pytest.fixture
def client(tmp_path: Path, configure):
    configure(
        DATABASE_PATH=str(tmp_path / "site.db"),
        UPLOAD_DIR=str(tmp_path / "images"),
        CV_UPLOAD_DIR=str(tmp_path / "cv"),
        ADMIN_TOKEN="test-admin",
        ADMIN_API_KEYS="k1",
        RECAPTCHA_SECRET_KEY=None,
        SENDGRID_API_KEY=None,
        RATE_LIMIT_EVICT_ENABLED=False,
    )
    ratelimit.limiter.clear()
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        ratelimit.limiter.clear()
