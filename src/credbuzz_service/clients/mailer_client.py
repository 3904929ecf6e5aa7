"""Async HTTP client for the outbound mail relay."""

from __future__ import annotations

import httpx

from credbuzz_service.core.exceptions import ServiceError
from credbuzz_service.logging import get_logger


def _mailer_unavailable(message: str) -> ServiceError:
    return ServiceError(
        error="MAILER_UNAVAILABLE",
        message=message,
        status_code=502,
        details={},
    )


class MailerClient:
    """Sends plain-text messages through an HTTP mail relay."""

    def __init__(
        self,
        base_url: str,
        send_path: str,
        sender: str,
        timeout_seconds: int,
    ) -> None:
        self._base_url = base_url
        self._send_path = send_path
        self._sender = sender
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def send(self, to: str, subject: str, body: str) -> None:
        """
        Deliver one message.

        Raises:
            ServiceError: MAILER_UNAVAILABLE (502) if the relay cannot be reached
                or does not accept the message.
        """
        logger = get_logger(__name__)

        try:
            response = await self._client.post(
                self._send_path,
                json={"from": self._sender, "to": to, "subject": subject, "body": body},
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "Mail relay request failed",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise _mailer_unavailable("Cannot connect to mail relay") from exc

        if response.status_code not in (200, 201, 202):
            logger.warning(
                "Mail relay unexpected status",
                extra={"status_code": response.status_code, "base_url": self._base_url},
            )
            raise _mailer_unavailable("Mail relay rejected the message")

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
