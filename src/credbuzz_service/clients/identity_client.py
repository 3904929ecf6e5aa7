"""Async HTTP client for the Identity service."""

from __future__ import annotations

from typing import Any

import httpx

from credbuzz_service.core.exceptions import ServiceError, unauthenticated
from credbuzz_service.logging import get_logger


def _identity_unavailable(message: str) -> ServiceError:
    return ServiceError(
        error="IDENTITY_SERVICE_UNAVAILABLE",
        message=message,
        status_code=502,
        details={},
    )


class IdentityClient:
    """
    Client for resolving bearer credentials to account ids.

    Delegates token verification to the Identity service; this service
    never holds signing keys or a key registry of its own.
    """

    def __init__(
        self,
        base_url: str,
        verify_path: str,
        timeout_seconds: int,
    ) -> None:
        self._base_url = base_url
        self._verify_path = verify_path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def _post_verify(self, token: str) -> dict[str, Any]:
        logger = get_logger(__name__)
        try:
            response = await self._client.post(self._verify_path, json={"token": token})
        except httpx.HTTPError as exc:
            logger.warning(
                "Identity service request failed",
                extra={"error": repr(exc), "base_url": self._base_url},
            )
            raise _identity_unavailable("Cannot reach Identity service") from exc

        if response.status_code != 200:
            logger.warning(
                "Identity service unexpected status",
                extra={"status_code": response.status_code, "base_url": self._base_url},
            )
            raise _identity_unavailable("Identity service returned unexpected status")

        try:
            body = response.json()
        except ValueError as exc:
            raise _identity_unavailable("Identity service returned a non-JSON body") from exc
        if not isinstance(body, dict):
            raise _identity_unavailable("Identity service returned a malformed body")
        return body

    async def verify_token(self, token: str) -> dict[str, Any]:
        """
        Verify a bearer token via the Identity service.

        Returns:
            The Identity response with ``account_id`` always populated.

        Raises:
            ServiceError: UNAUTHENTICATED (401) if the token is not valid
            ServiceError: IDENTITY_SERVICE_UNAVAILABLE (502) if the service cannot
                be reached or answers with anything but a 200 JSON object
        """
        result = await self._post_verify(token)
        if result.get("valid") is not True:
            raise unauthenticated("Token verification failed")

        # Older Identity deployments report the subject as agent_id.
        account_id = result.get("account_id") or result.get("agent_id")
        if not isinstance(account_id, str) or account_id == "":
            raise unauthenticated("Token does not identify an account")

        result["account_id"] = account_id
        return result

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
