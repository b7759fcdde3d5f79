from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import httpx

from .config import settings

logger = logging.getLogger(__name__)


@dataclass
class RecaptchaResult:
    success: bool
    skipped: bool = False
    score: Optional[float] = None
    errors: list[str] = field(default_factory=list)


def verify_recaptcha(token: str, remote_ip: Optional[str] = None) -> RecaptchaResult:
    """
    Check a client token against the siteverify endpoint.

    Without a configured secret the check is skipped and reported as passing,
    so local setups work without keys. Any transport failure is a failure.
    """
    secret = (settings.RECAPTCHA_SECRET_KEY or "").strip()
    if not secret:
        logger.warning("RECAPTCHA_SECRET_KEY not set; skipping verification")
        return RecaptchaResult(success=True, skipped=True)
    if not token:
        return RecaptchaResult(success=False, errors=["missing-input-response"])

    form = {"secret": secret, "response": token}
    if remote_ip:
        form["remoteip"] = remote_ip
    timeout = httpx.Timeout(settings.RECAPTCHA_TIMEOUT_SECONDS, connect=2.0)

    try:
        resp = httpx.post(settings.RECAPTCHA_VERIFY_URL, data=form, timeout=timeout)
        resp.raise_for_status()
        data = resp.json()
    except Exception as exc:
        logger.warning("reCAPTCHA verification failed: %s", exc)
        return RecaptchaResult(success=False, errors=["verification-unavailable"])

    score = data.get("score")
    errors = list(data.get("error-codes") or [])
    if not data.get("success"):
        return RecaptchaResult(success=False, score=score, errors=errors)
    if score is not None and float(score) < settings.RECAPTCHA_MIN_SCORE:
        return RecaptchaResult(success=False, score=score, errors=errors + ["low-score"])
    return RecaptchaResult(success=True, score=score, errors=errors)
