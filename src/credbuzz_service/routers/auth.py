"""One-time code endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from credbuzz_service.core.state import get_app_state
from credbuzz_service.logging import get_logger
from credbuzz_service.routers.validation import parse_json_body
from credbuzz_service.schemas import RequestOtpRequest, VerifyOtpRequest, parse_request

router = APIRouter()

OTP_SUBJECT = "Your CredBuzz verification code"
OTP_BODY_TEMPLATE = "Your verification code is {code}. It expires at {expires_at}."


@router.post("/auth/request-otp", status_code=202)
async def request_otp(request: Request) -> JSONResponse:
    """Issue a code and mail it. The response never contains the code."""
    data = parse_json_body(await request.body())
    otp_request = parse_request(RequestOtpRequest, data)

    state = get_app_state()
    if state.otp_store is None or state.mailer_client is None:
        msg = "OTP components not initialized"
        raise RuntimeError(msg)

    code, expires_at = state.otp_store.issue(otp_request.email)
    await state.mailer_client.send(
        otp_request.email,
        OTP_SUBJECT,
        OTP_BODY_TEMPLATE.format(code=code, expires_at=expires_at),
    )
    get_logger(__name__).info("Verification code issued", extra={"expires_at": expires_at})
    return JSONResponse(status_code=202, content={"sent": True, "expires_at": expires_at})


@router.post("/auth/verify-otp")
async def verify_otp(request: Request) -> dict[str, Any]:
    """Consume a code and mark the account registered with that email as verified."""
    data = parse_json_body(await request.body())
    verify_request = parse_request(VerifyOtpRequest, data)

    state = get_app_state()
    if state.otp_store is None or state.ledger is None:
        msg = "OTP components not initialized"
        raise RuntimeError(msg)

    account_id = await run_in_threadpool(
        state.otp_store.consume,
        verify_request.email,
        verify_request.code,
        state.ledger.mark_email_verified,
    )
    if account_id is not None:
        get_logger(__name__).info("Email verified", extra={"account_id": account_id})
    return {
        "verified": True,
        "email": verify_request.email.lower(),
        "email_verified": account_id is not None,
    }
