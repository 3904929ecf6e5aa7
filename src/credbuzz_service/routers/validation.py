"""Shared request parsing and authentication helpers for routers."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from credbuzz_service.core.exceptions import ServiceError, unauthenticated, validation_error
from credbuzz_service.core.state import get_app_state

if TYPE_CHECKING:
    from fastapi import Request


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ServiceError on failure."""
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ServiceError(
            "INVALID_JSON",
            "Request body is not valid JSON",
            400,
            {},
        ) from exc

    if not isinstance(data, dict):
        raise ServiceError(
            "INVALID_JSON",
            "Request body must be a JSON object",
            400,
            {},
        )

    return data


def extract_bearer_token(authorization: str | None) -> str:
    """Extract the credential from an ``Authorization: Bearer`` header."""
    if authorization is None:
        raise unauthenticated("Missing Authorization header")

    if not authorization.startswith("Bearer "):
        raise unauthenticated("Authorization header must use Bearer scheme")

    token = authorization[len("Bearer ") :].strip()
    if not token:
        raise unauthenticated("Bearer token must not be empty")

    return token


async def authenticate(request: Request) -> str:
    """Resolve the caller's account id through the Identity service."""
    token = extract_bearer_token(request.headers.get("authorization"))

    state = get_app_state()
    if state.identity_client is None:
        msg = "IdentityClient not initialized"
        raise RuntimeError(msg)

    result = await state.identity_client.verify_token(token)
    account_id: str = result["account_id"]
    return account_id


def parse_int_param(raw: str | None, name: str, *, minimum: int, maximum: int | None = None) -> int | None:
    """Parse an optional integer query parameter."""
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError as exc:
        raise validation_error(f"{name} must be an integer") from exc
    if value < minimum:
        raise validation_error(f"{name} must be >= {minimum}")
    if maximum is not None and value > maximum:
        raise validation_error(f"{name} must be <= {maximum}")
    return value


def parse_bool_param(raw: str | None, name: str) -> bool:
    """Parse an optional boolean query parameter; absent means false."""
    if raw is None:
        return False
    lowered = raw.lower()
    if lowered in ("true", "1", "yes"):
        return True
    if lowered in ("false", "0", "no"):
        return False
    raise validation_error(f"{name} must be a boolean")
