from __future__ import annotations

import re
from typing import Any, Dict, List, Tuple

from .security import is_email, sanitize_email, sanitize_phone, sanitize_text

PRODUCT_CATEGORIES = {"human", "veterinary"}
MEDIA_TYPES = {"news", "event"}
APPLICATION_STATUSES = {"pending", "reviewed", "shortlisted", "rejected", "hired"}
USER_ROLES = {"user", "editor", "admin"}
USER_STATUSES = {"active", "inactive"}

_JOB_REQUIRED = ("title", "department", "location", "job_type", "description")
_JOB_OPTIONAL = (
    "title_ar",
    "working_hours",
    "description_ar",
    "requirements",
    "requirements_ar",
)

_CONTACT_REQUIRED = ("name", "email", "subject", "message")
_PRODUCT_FIELDS = (
    "slug",
    "sku",
    "name",
    "description",
    "category",
    "price",
    "stock_quantity",
    "image_url",
    "active",
)


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _one_of(value: Any, allowed: set[str]) -> bool:
    return isinstance(value, str) and value in allowed


def _optional_text(data: Dict[str, Any], name: str) -> bool:
    value = data.get(name)
    return value is None or isinstance(value, str)


def validate_contact(payload: Dict[str, Any]) -> Tuple[bool, Dict[str, Any], str | None]:
    if not all(_text(payload.get(name)) for name in _CONTACT_REQUIRED):
        return False, payload, "Missing required fields"

    email = sanitize_email(payload["email"])
    if not is_email(email):
        return False, payload, "Invalid email address"

    clean: Dict[str, Any] = {
        "name": sanitize_text(payload["name"]),
        "email": email,
        "subject": sanitize_text(payload["subject"]),
        "message": sanitize_text(payload["message"]),
        "phone": None,
        "orderNumber": None,
    }
    if _text(payload.get("phone")):
        clean["phone"] = sanitize_phone(payload["phone"])
    if _text(payload.get("orderNumber")):
        clean["orderNumber"] = sanitize_text(payload["orderNumber"])
    return True, clean, None


def validate_application(fields: Dict[str, Any]) -> Tuple[bool, Dict[str, Any], str | None]:
    name, email, role = (_text(fields.get(k)) for k in ("name", "email", "role"))
    if not name or not email or not role:
        return False, fields, "Missing fields"
    email = sanitize_email(email)
    if not is_email(email):
        return False, fields, "Invalid email address"
    message = _text(fields.get("message"))
    return (
        True,
        {
            "name": sanitize_text(name),
            "email": email,
            "role": sanitize_text(role),
            "message": sanitize_text(message) or None,
        },
        None,
    )


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or "product"


def validate_product(
    payload: Dict[str, Any], partial: bool = False
) -> Tuple[Dict[str, Any], List[str]]:
    """Check a product payload; with ``partial`` only present keys are checked."""

    errors: List[str] = []
    data = {k: payload[k] for k in _PRODUCT_FIELDS if k in payload}

    def wants(name: str) -> bool:
        return not partial or name in data

    if wants("name"):
        name = data.get("name")
        if not isinstance(name, str) or not name.strip() or len(name) > 255:
            errors.append("Product name must be a string between 1 and 255 characters")
    if "description" in data and data["description"] is not None:
        desc = data["description"]
        if not isinstance(desc, str) or len(desc) > 2000:
            errors.append("Product description must be a string up to 2000 characters")
    if wants("price"):
        price = data.get("price")
        if isinstance(price, bool) or not isinstance(price, (int, float)) or price <= 0:
            errors.append("Product price must be a positive number")
    if wants("sku"):
        sku = data.get("sku")
        if not isinstance(sku, str) or not sku.strip() or len(sku) > 100:
            errors.append("Product SKU must be a string up to 100 characters")
    if "stock_quantity" in data:
        qty = data["stock_quantity"]
        if isinstance(qty, bool) or not isinstance(qty, int) or qty < 0:
            errors.append("Stock quantity must be a non-negative integer")
    if wants("category") and not _one_of(data.get("category"), PRODUCT_CATEGORIES):
        errors.append("Category must be one of: " + ", ".join(sorted(PRODUCT_CATEGORIES)))
    if "slug" in data and not isinstance(data["slug"], str):
        errors.append("Slug must be a string")
    if "active" in data and not isinstance(data["active"], bool):
        errors.append("active must be a boolean")
    if not _optional_text(data, "image_url"):
        errors.append("image_url must be a string or null")

    if errors:
        return data, errors

    if "name" in data:
        data["name"] = data["name"].strip()
    if "sku" in data:
        data["sku"] = data["sku"].strip()
    if "price" in data:
        data["price"] = float(data["price"])
    if "slug" in data:
        data["slug"] = slugify(data["slug"])
    elif not partial:
        data["slug"] = slugify(data["name"])
    return data, errors


def validate_media(
    payload: Dict[str, Any], partial: bool = False
) -> Tuple[Dict[str, Any], List[str]]:
    errors: List[str] = []
    data = {
        k: payload[k]
        for k in ("type", "title", "body", "image_url", "published_at")
        if k in payload
    }
    if (not partial or "type" in data) and not _one_of(data.get("type"), MEDIA_TYPES):
        errors.append("Media type must be 'news' or 'event'")
    if not partial or "title" in data:
        title = data.get("title")
        if not isinstance(title, str) or not title.strip():
            errors.append("Title is required")
    if "published_at" in data:
        if data["published_at"] is None:
            del data["published_at"]
        elif isinstance(data["published_at"], bool) or not isinstance(data["published_at"], int):
            errors.append("published_at must be unix seconds")
    for name in ("body", "image_url"):
        if not _optional_text(data, name):
            errors.append(f"{name} must be a string or null")
    return data, errors


def _check_fields(
    payload: Dict[str, Any],
    required: Tuple[str, ...],
    optional: Tuple[str, ...],
    partial: bool,
) -> Tuple[Dict[str, Any], List[str]]:
    """Copy known text fields, requiring non-empty strings for ``required``."""

    errors: List[str] = []
    data = {k: payload[k] for k in required + optional if k in payload}
    for name in required:
        if partial and name not in data:
            continue
        value = data.get(name)
        if not isinstance(value, str) or not value.strip():
            errors.append(f"{name} is required")
        else:
            data[name] = value.strip()
    for name in optional:
        if not _optional_text(data, name):
            errors.append(f"{name} must be a string or null")
    return data, errors


def validate_job(
    payload: Dict[str, Any], partial: bool = False
) -> Tuple[Dict[str, Any], List[str]]:
    data, errors = _check_fields(payload, _JOB_REQUIRED, _JOB_OPTIONAL, partial)
    if "is_active" in payload:
        if isinstance(payload["is_active"], bool):
            data["is_active"] = payload["is_active"]
        else:
            errors.append("is_active must be a boolean")
    return data, errors


def validate_category(
    payload: Dict[str, Any], partial: bool = False
) -> Tuple[Dict[str, Any], List[str]]:
    data, errors = _check_fields(
        payload, ("name",), ("name_ar", "slug", "icon", "description"), partial
    )
    if (not partial or "type" in payload) and not _one_of(payload.get("type"), PRODUCT_CATEGORIES):
        errors.append("Category type must be one of: " + ", ".join(sorted(PRODUCT_CATEGORIES)))
    elif "type" in payload:
        data["type"] = payload["type"]
    if errors:
        return data, errors
    if data.get("slug"):
        data["slug"] = slugify(data["slug"])
    elif not partial:
        data["slug"] = slugify(data["name"])
    else:
        data.pop("slug", None)
    return data, errors


def validate_user(
    payload: Dict[str, Any], partial: bool = False
) -> Tuple[Dict[str, Any], List[str]]:
    """Staff directory entry; ``partial`` updates may not change the email."""

    required = ("name",) if partial else ("name", "email")
    data, errors = _check_fields(payload, required, ("phone",), partial)
    if isinstance(data.get("email"), str) and data["email"].strip():
        email = sanitize_email(data["email"])
        if is_email(email):
            data["email"] = email
        else:
            errors.append("Invalid email address")
    if data.get("phone"):
        data["phone"] = sanitize_phone(data["phone"])
    for name, allowed in (("role", USER_ROLES), ("status", USER_STATUSES)):
        if name not in payload:
            continue
        if _one_of(payload[name], allowed):
            data[name] = payload[name]
        else:
            errors.append(f"{name} must be one of: " + ", ".join(sorted(allowed)))
    return data, errors
