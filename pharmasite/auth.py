from fastapi import Header, HTTPException, status

from .config import settings


def _valid_credentials() -> tuple[set[str], set[str]]:
    configured_token = (settings.ADMIN_TOKEN or "").strip()
    tokens = {configured_token} if configured_token else set()
    keys = {k.strip() for k in settings.ADMIN_API_KEYS.split(",") if k.strip()}
    return tokens, keys


def require_admin(
    authorization: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
):
    valid_tokens, valid_keys = _valid_credentials()

    if authorization and authorization.startswith("Bearer "):
        token = authorization.split(" ", 1)[1].strip()
        if token in valid_tokens or token in valid_keys:
            return
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="bad token")

    if x_api_key and x_api_key in valid_keys:
        return

    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing token")
