from __future__ import annotations

import hmac
import os

from fastapi import HTTPException, Request
from pydantic import ValidationError

from trackledger.core.security.principal import Principal

AUTH_MODE_ENV = "TRACKLEDGER_AUTH_MODE"
AUTH_TOKEN_ENV = "TRACKLEDGER_AUTH_TOKEN"
AUTH_HEADER = "X-TRACKLEDGER-TOKEN"

USER_ID_HEADER = "X-User-Id"
USER_NAME_HEADER = "X-User-Name"
USER_ROLE_HEADER = "X-User-Role"
USER_LOCATION_HEADER = "X-User-Location"
USER_PERMISSIONS_HEADER = "X-User-Permissions"


def get_auth_mode() -> str:
    return os.getenv(AUTH_MODE_ENV, "token").strip().casefold()


def is_auth_enabled() -> bool:
    return get_auth_mode() == "token"


def get_required_token() -> str:
    token = os.getenv(AUTH_TOKEN_ENV, "")
    if is_auth_enabled() and not token:
        raise RuntimeError("TRACKLEDGER_AUTH_TOKEN must be set when TRACKLEDGER_AUTH_MODE=token")
    return token


def is_request_authenticated(request: Request) -> bool:
    if not is_auth_enabled():
        return True
    required = get_required_token()
    provided = request.headers.get(AUTH_HEADER)
    if not provided:
        return False
    return hmac.compare_digest(provided, required)


def current_principal(request: Request) -> Principal:
    """Principal claims forwarded by the gateway; requests without them are unauthenticated."""
    headers = request.headers
    user_id = headers.get(USER_ID_HEADER, "").strip()
    role = headers.get(USER_ROLE_HEADER, "").strip()
    location = headers.get(USER_LOCATION_HEADER, "").strip()
    if not user_id or not role or not location:
        raise HTTPException(status_code=401, detail="missing principal headers")

    raw_permissions = headers.get(USER_PERMISSIONS_HEADER)
    permissions = None
    if raw_permissions is not None:
        permissions = [item.strip() for item in raw_permissions.split(",") if item.strip()]
    try:
        return Principal(
            id=user_id,
            username=headers.get(USER_NAME_HEADER, "").strip() or user_id,
            role=role,
            location=location,
            permissions=permissions,
        )
    except ValidationError:
        raise HTTPException(status_code=401, detail="invalid principal headers") from None
