"""Outbound notification mail through SendGrid's v3 API."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from .config import settings

logger = logging.getLogger(__name__)


def _payload(to_email: str, subject: str, text: str, reply_to: Optional[str]) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "personalizations": [{"to": [{"email": to_email}], "subject": subject}],
        "from": {"email": settings.SENDGRID_FROM_EMAIL},
        "content": [{"type": "text/plain", "value": text}],
    }
    if reply_to:
        payload["reply_to"] = {"email": reply_to}
    return payload


def send_mail(
    to_email: Optional[str], subject: str, text: str, reply_to: Optional[str] = None
) -> bool:
    """Send one plain-text mail. Returns False when unconfigured or on failure."""

    api_key = (settings.SENDGRID_API_KEY or "").strip()
    if not api_key or not to_email:
        logger.debug("mail not configured; dropping %r", subject)
        return False

    try:
        resp = httpx.post(
            settings.SENDGRID_URL,
            json=_payload(to_email, subject, text, reply_to),
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=httpx.Timeout(10.0, connect=2.0),
        )
        resp.raise_for_status()
    except Exception as exc:
        logger.error("mail send failed for %r: %s", subject, exc)
        return False
    return True


def contact_notification(data: Dict[str, Any]) -> bool:
    lines = [
        f"Name: {data['name']}",
        f"Email: {data['email']}",
    ]
    if data.get("phone"):
        lines.append(f"Phone: {data['phone']}")
    if data.get("orderNumber"):
        lines.append(f"Order: {data['orderNumber']}")
    lines += ["", data["message"]]
    return send_mail(
        settings.CONTACT_TO_EMAIL,
        f"[Contact] {data['subject']}",
        "\n".join(lines),
        reply_to=data["email"],
    )


def application_notification(data: Dict[str, Any]) -> bool:
    text = f"Candidate: {data['name']}\nEmail: {data['email']}\nRole: {data['role']}\n"
    if data.get("cv_path"):
        text += f"CV: {data['cv_path']}\n"
    text += f"\n{data.get('message') or ''}"
    return send_mail(
        settings.CAREERS_TO_EMAIL,
        f"[Careers] {data['role']}",
        text,
        reply_to=data["email"],
    )
