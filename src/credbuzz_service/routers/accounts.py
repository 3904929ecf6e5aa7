"""Account endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from credbuzz_service.core.state import get_app_state
from credbuzz_service.logging import get_logger
from credbuzz_service.routers.validation import authenticate, parse_int_param, parse_json_body
from credbuzz_service.schemas import RegisterAccountRequest, UpdateProfileRequest, parse_request

router = APIRouter()

MAX_PAGE_SIZE = 100


def _public_view(account: dict[str, Any]) -> dict[str, Any]:
    """Strip contact details from an account shown to other users."""
    return {key: value for key, value in account.items() if key != "email"}


# === POST /accounts: Register the caller's account ===


@router.post("/accounts", status_code=201)
async def create_account(request: Request) -> JSONResponse:
    """Register an account for the authenticated caller."""
    actor_id = await authenticate(request)
    data = parse_json_body(await request.body())
    registration = parse_request(RegisterAccountRequest, data)

    state = get_app_state()
    if state.ledger is None:
        msg = "Ledger not initialized"
        raise RuntimeError(msg)

    account = await run_in_threadpool(
        state.ledger.create_account,
        actor_id,
        registration.name,
        registration.email.lower() if registration.email is not None else None,
        registration.bio,
        registration.skills,
    )
    get_logger(__name__).info(
        "Account registered",
        extra={"account_id": actor_id, "starting_balance": account["credit_balance"]},
    )
    return JSONResponse(status_code=201, content=account)


# === GET /accounts: List accounts (public) ===


@router.get("/accounts")
async def list_accounts(request: Request) -> dict[str, Any]:
    """List accounts, oldest first."""
    offset = parse_int_param(request.query_params.get("offset"), "offset", minimum=0)
    limit = parse_int_param(
        request.query_params.get("limit"), "limit", minimum=1, maximum=MAX_PAGE_SIZE
    )

    state = get_app_state()
    if state.ledger is None:
        msg = "Ledger not initialized"
        raise RuntimeError(msg)

    accounts = await run_in_threadpool(
        state.ledger.list_accounts,
        limit if limit is not None else MAX_PAGE_SIZE,
        offset,
    )
    return {"accounts": [_public_view(account) for account in accounts]}


# === /accounts/me: Caller's own account (MUST be before /accounts/{account_id}) ===


@router.get("/accounts/me")
async def get_my_account(request: Request) -> dict[str, Any]:
    """Return the caller's account, including private fields."""
    actor_id = await authenticate(request)

    state = get_app_state()
    if state.ledger is None:
        msg = "Ledger not initialized"
        raise RuntimeError(msg)

    return await run_in_threadpool(state.ledger.require_account, actor_id)


@router.put("/accounts/me")
async def update_my_account(request: Request) -> dict[str, Any]:
    """Update the caller's profile fields."""
    actor_id = await authenticate(request)
    data = parse_json_body(await request.body())
    update = parse_request(UpdateProfileRequest, data)

    state = get_app_state()
    if state.ledger is None:
        msg = "Ledger not initialized"
        raise RuntimeError(msg)

    ledger = state.ledger

    def _apply() -> dict[str, Any]:
        return ledger.update_profile(
            actor_id,
            name=update.name,
            bio=update.bio,
            skills=update.skills,
        )

    return await run_in_threadpool(_apply)


@router.get("/accounts/me/transactions")
async def get_my_transactions(request: Request) -> dict[str, Any]:
    """Return the caller's credit log."""
    actor_id = await authenticate(request)

    state = get_app_state()
    if state.ledger is None:
        msg = "Ledger not initialized"
        raise RuntimeError(msg)

    transactions = await run_in_threadpool(state.ledger.get_transactions, actor_id)
    return {"account_id": actor_id, "transactions": transactions}


# === GET /accounts/{account_id}: Public profile ===


@router.get("/accounts/{account_id}")
async def get_account(account_id: str) -> dict[str, Any]:
    """Return another user's public profile."""
    state = get_app_state()
    if state.ledger is None:
        msg = "Ledger not initialized"
        raise RuntimeError(msg)

    account = await run_in_threadpool(state.ledger.require_account, account_id)
    return _public_view(account)
