"""Router test fixtures with mocked Identity and mail relay services."""

from __future__ import annotations

import os
import re
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from credbuzz_service.app import create_app
from credbuzz_service.config import clear_settings_cache
from credbuzz_service.core.exceptions import ServiceError, unauthenticated
from credbuzz_service.core.lifespan import lifespan
from credbuzz_service.core.state import get_app_state, reset_app_state
from credbuzz_service.oracle import StaticReviewOracle
from tests.helpers import (
    STATIC_REVIEW,
    auth_header,
    extract_kid,
    generate_private_key,
    make_bearer_token,
    verify_bearer_token,
    write_config,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

# ---------------------------------------------------------------------------
# Fixed account IDs
# ---------------------------------------------------------------------------
ALICE_ID = "a-alice-uuid"
BOB_ID = "a-bob-uuid"
CAROL_ID = "a-carol-uuid"


class FakeIdentity:
    """Stands in for the Identity service: one Ed25519 key per account id."""

    def __init__(self) -> None:
        self._keys: dict[str, Ed25519PrivateKey] = {}

    def token_for(self, account_id: str) -> str:
        key = self._keys.setdefault(account_id, generate_private_key())
        return make_bearer_token(key, account_id)

    def headers_for(self, account_id: str) -> dict[str, str]:
        return auth_header(self.token_for(account_id))

    async def verify_token(self, token: str) -> dict[str, Any]:
        account_id = extract_kid(token)
        key = self._keys.get(account_id)
        if key is None or not verify_bearer_token(token, key.public_key()):
            raise unauthenticated("Token verification failed")
        return {"valid": True, "account_id": account_id}


# ---------------------------------------------------------------------------
# App + client fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def identity() -> FakeIdentity:
    return FakeIdentity()


@pytest.fixture
async def app(tmp_path: Path, identity: FakeIdentity) -> AsyncIterator[Any]:
    """Create a test app with temp storage and mocked external services."""
    config_path = write_config(tmp_path)

    old_config = os.environ.get("CONFIG_PATH")
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        state = get_app_state()

        mock_identity = AsyncMock()
        mock_identity.close = AsyncMock()
        mock_identity.verify_token = AsyncMock(side_effect=identity.verify_token)
        state.identity_client = mock_identity

        mock_mailer = AsyncMock()
        mock_mailer.close = AsyncMock()
        mock_mailer.send = AsyncMock(return_value=None)
        state.mailer_client = mock_mailer

        state.oracle = StaticReviewOracle(STATIC_REVIEW)

        yield test_app

    reset_app_state()
    clear_settings_cache()
    if old_config is None:
        os.environ.pop("CONFIG_PATH", None)
    else:
        os.environ["CONFIG_PATH"] = old_config


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def mailer(app: Any) -> AsyncMock:
    """The mocked mail relay installed on the running app."""
    return get_app_state().mailer_client  # type: ignore[return-value]


@pytest.fixture
def mock_identity_unavailable(app: Any) -> None:
    """Configure the Identity mock to behave like an unreachable service."""
    state = get_app_state()
    state.identity_client.verify_token = AsyncMock(  # type: ignore[union-attr]
        side_effect=ServiceError(
            "IDENTITY_SERVICE_UNAVAILABLE", "Cannot connect to Identity service", 502, {}
        )
    )


# ---------------------------------------------------------------------------
# Registered accounts
# ---------------------------------------------------------------------------
@pytest.fixture
async def alice(client: AsyncClient, identity: FakeIdentity) -> dict[str, str]:
    headers = identity.headers_for(ALICE_ID)
    await register(client, headers, "Alice", email="alice@example.com")
    return headers


@pytest.fixture
async def bob(client: AsyncClient, identity: FakeIdentity) -> dict[str, str]:
    headers = identity.headers_for(BOB_ID)
    await register(client, headers, "Bob", email="bob@example.com", skills=["python"])
    return headers


@pytest.fixture
async def carol(client: AsyncClient, identity: FakeIdentity) -> dict[str, str]:
    headers = identity.headers_for(CAROL_ID)
    await register(client, headers, "Carol")
    return headers


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------
async def register(
    client: AsyncClient,
    headers: dict[str, str],
    name: str,
    **fields: Any,
) -> Any:
    """Register the caller's account via POST /accounts."""
    response = await client.post("/accounts", json={"name": name, **fields}, headers=headers)
    assert response.status_code == 201, response.text
    return response


def task_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "title": "Write unit tests",
        "description": "Cover the parser module.",
        "category": "coding",
        "required_skills": ["python"],
        "estimated_hours": 3,
        "deadline": "2030-06-01T12:00:00Z",
        "credit_amount": 20,
    }
    payload.update(overrides)
    return payload


async def create_task(client: AsyncClient, headers: dict[str, str], **overrides: Any) -> Any:
    """Create a task via POST /tasks and return the response."""
    return await client.post("/tasks", json=task_payload(**overrides), headers=headers)


async def submit(
    client: AsyncClient,
    headers: dict[str, str],
    task_id: str,
    *,
    content: str = "All tests pass",
    files: list[tuple[str, bytes, str]] | None = None,
) -> Any:
    """Submit work via multipart PUT /tasks/{task_id}/submit."""
    # A part without a filename is a plain form field; it forces multipart
    # encoding even when no files are attached.
    multipart: list[tuple[str, Any]] = [("content", (None, content.encode()))]
    multipart.extend(("files", file_tuple) for file_tuple in files or [])
    return await client.put(f"/tasks/{task_id}/submit", files=multipart, headers=headers)


async def setup_claimed_task(
    client: AsyncClient,
    creator: dict[str, str],
    claimant: dict[str, str],
    **overrides: Any,
) -> str:
    """Create a task and have ``claimant`` claim it. Returns the task_id."""
    created = await create_task(client, creator, **overrides)
    task_id: str = created.json()["task_id"]
    claimed = await client.put(f"/tasks/{task_id}/claim", headers=claimant)
    assert claimed.status_code == 200, claimed.text
    return task_id


async def setup_submitted_task(
    client: AsyncClient,
    creator: dict[str, str],
    claimant: dict[str, str],
    **overrides: Any,
) -> str:
    """Create, claim and submit a task. Returns the task_id."""
    task_id = await setup_claimed_task(client, creator, claimant, **overrides)
    submitted = await submit(client, claimant, task_id)
    assert submitted.status_code == 200, submitted.text
    return task_id


async def balance(client: AsyncClient, headers: dict[str, str]) -> int:
    response = await client.get("/accounts/me", headers=headers)
    return int(response.json()["credit_balance"])


def mailed_code(mailer: AsyncMock) -> str:
    """Pull the one-time code out of the last message sent."""
    body = mailer.send.await_args.args[2]
    match = re.search(r"\b(\d{6})\b", body)
    assert match is not None, body
    return match.group(1)
