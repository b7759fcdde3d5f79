from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class UploadPolicy:
    max_bytes: int
    allowed_types: frozenset[str]
    allowed_extensions: frozenset[str]
    label: str = "file"


def image_policy(max_bytes: int) -> UploadPolicy:
    return UploadPolicy(
        max_bytes=max_bytes,
        allowed_types=frozenset({"image/jpeg", "image/jpg", "image/png", "image/webp"}),
        allowed_extensions=frozenset({"jpg", "jpeg", "png", "webp"}),
        label="image",
    )


def cv_policy(max_bytes: int) -> UploadPolicy:
    return UploadPolicy(
        max_bytes=max_bytes,
        allowed_types=frozenset(
            {
                "application/pdf",
                "application/msword",
                "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
            }
        ),
        allowed_extensions=frozenset({"pdf", "doc", "docx"}),
        label="cv",
    )


def extension_of(filename: str) -> str:
    _, dot, ext = filename.rpartition(".")
    return ext.lower() if dot else ""


def validate_upload(
    filename: str, content_type: str | None, size: int, policy: UploadPolicy
) -> list[str]:
    errors: list[str] = []
    if size <= 0:
        errors.append("File is empty")
    elif size > policy.max_bytes:
        errors.append(
            f"File too large. Maximum size is {policy.max_bytes // (1024 * 1024)}MB."
        )
    if (content_type or "").lower() not in policy.allowed_types:
        errors.append(f"File type {content_type} is not allowed")
    ext = extension_of(filename)
    if ext not in policy.allowed_extensions:
        errors.append(f"File extension .{ext} is not allowed")
    return errors


def save_upload(data: bytes, filename: str, directory: str, prefix: str) -> str:
    """Write ``data`` under ``directory`` with a collision-free name; return the name."""

    target_dir = Path(directory)
    target_dir.mkdir(parents=True, exist_ok=True)
    ext = extension_of(filename)
    name = f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}.{ext}"
    (target_dir / name).write_bytes(data)
    return name
