"""ASGI middleware for request validation."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, cast

from fastapi.responses import JSONResponse

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Receive, Scope, Send


_JSON_ENDPOINTS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("POST", re.compile(r"^/tasks$")),
    ("PUT", re.compile(r"^/tasks/[^/]+$")),
    ("PUT", re.compile(r"^/tasks/[^/]+/reject$")),
    ("POST", re.compile(r"^/accounts$")),
    ("PUT", re.compile(r"^/accounts/me$")),
    ("POST", re.compile(r"^/auth/request-otp$")),
    ("POST", re.compile(r"^/auth/verify-otp$")),
)
# Endpoints whose JSON body may be omitted entirely.
_OPTIONAL_JSON_ENDPOINTS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("PUT", re.compile(r"^/tasks/[^/]+/approve$")),
)
_MULTIPART_ENDPOINTS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("PUT", re.compile(r"^/tasks/[^/]+/submit$")),
)


def _matches(endpoints: tuple[tuple[str, re.Pattern[str]], ...], method: str, path: str) -> bool:
    return any(
        candidate_method == method and pattern.match(path) is not None
        for candidate_method, pattern in endpoints
    )


def _error_response(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message, "details": {}},
    )


class RequestValidationMiddleware:
    """
    ASGI middleware that validates Content-Type and body size.

    Runs before FastAPI routes. Returns 415 for a wrong content-type and
    413 for oversized JSON bodies.

    - application/json for task, account and auth writes
    - multipart/form-data for PUT /tasks/{task_id}/submit; per-file limits
      are enforced by the blob store, not here
    - approve accepts either no body at all or a JSON body
    """

    def __init__(self, app: ASGIApp, max_body_size: int) -> None:
        self.app = app
        self.max_body_size = max_body_size

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        method = cast("str", scope.get("method", "GET"))
        if method not in ("POST", "PUT", "PATCH"):
            await self.app(scope, receive, send)
            return

        path = cast("str", scope.get("path", ""))
        raw_headers = cast("list[tuple[bytes, bytes]]", scope.get("headers", []))
        headers: dict[bytes, bytes] = dict(raw_headers)
        content_type = headers.get(b"content-type", b"").decode().lower()

        if _matches(_MULTIPART_ENDPOINTS, method, path):
            # Missing Content-Type is left to the router to report.
            if content_type != "" and not content_type.startswith("multipart/form-data"):
                response = _error_response(
                    415, "UNSUPPORTED_MEDIA_TYPE", "Content-Type must be multipart/form-data"
                )
                await response(scope, receive, send)
                return
            await self.app(scope, receive, send)
            return

        optional_json = _matches(_OPTIONAL_JSON_ENDPOINTS, method, path)
        if not optional_json and not _matches(_JSON_ENDPOINTS, method, path):
            # Unknown endpoint/method combos are handled by the router as 404/405.
            await self.app(scope, receive, send)
            return

        if optional_json and content_type == "":
            await self.app(scope, receive, send)
            return

        if not content_type.startswith("application/json"):
            response = _error_response(
                415, "UNSUPPORTED_MEDIA_TYPE", "Content-Type must be application/json"
            )
            await response(scope, receive, send)
            return

        body_parts: list[bytes] = []
        body_size = 0

        while True:
            message = cast("dict[str, Any]", await receive())
            chunk = cast("bytes", message.get("body", b""))
            body_parts.append(chunk)
            body_size += len(chunk)

            if body_size > self.max_body_size:
                response = _error_response(
                    413, "PAYLOAD_TOO_LARGE", "Request body exceeds maximum allowed size"
                )
                await response(scope, receive, send)
                return

            if not message.get("more_body", False):
                break

        full_body = b"".join(body_parts)
        body_sent = False

        async def buffered_receive() -> dict[str, Any]:
            nonlocal body_sent
            if not body_sent:
                body_sent = True
                return {"type": "http.request", "body": full_body, "more_body": False}
            return {"type": "http.disconnect"}

        await self.app(scope, buffered_receive, send)
