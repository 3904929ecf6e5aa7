"""Task lifecycle endpoints."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from starlette.datastructures import UploadFile as StarletteUploadFile

from credbuzz_service.core.exceptions import validation_error
from credbuzz_service.core.state import get_app_state
from credbuzz_service.routers.validation import (
    authenticate,
    parse_bool_param,
    parse_int_param,
    parse_json_body,
)
from credbuzz_service.services.blob_store import UploadedFile

router = APIRouter()

MAX_PAGE_SIZE = 100


# ---------------------------------------------------------------------------
# POST /tasks: create task
# ---------------------------------------------------------------------------


@router.post("/tasks", status_code=201)
async def create_task(request: Request) -> JSONResponse:
    """Create a new task and escrow its reward."""
    actor_id = await authenticate(request)
    data = parse_json_body(await request.body())

    state = get_app_state()
    if state.task_manager is None:
        msg = "TaskManager not initialized"
        raise RuntimeError(msg)

    result = await state.task_manager.create_task(actor_id, data)
    return JSONResponse(status_code=201, content=result)


# ---------------------------------------------------------------------------
# GET /tasks: list tasks (MUST be before GET /tasks/{task_id})
# ---------------------------------------------------------------------------


@router.get("/tasks")
async def list_tasks(request: Request) -> dict[str, Any]:
    """List tasks with optional filters."""
    params = request.query_params
    offset = parse_int_param(params.get("offset"), "offset", minimum=0)
    limit = parse_int_param(params.get("limit"), "limit", minimum=1, maximum=MAX_PAGE_SIZE)
    available = parse_bool_param(params.get("available"), "available")

    state = get_app_state()
    if state.task_manager is None:
        msg = "TaskManager not initialized"
        raise RuntimeError(msg)

    return await state.task_manager.list_tasks(
        status=params.get("status"),
        category=params.get("category"),
        complexity=params.get("complexity"),
        location=params.get("location"),
        skill=params.get("skill"),
        search=params.get("search") or None,
        involving=params.get("involving"),
        creator_id=params.get("creator_id"),
        claimant_id=params.get("claimant_id"),
        available=available,
        limit=limit if limit is not None else MAX_PAGE_SIZE,
        offset=offset,
    )


# ---------------------------------------------------------------------------
# Claim endpoint
# ---------------------------------------------------------------------------


@router.put("/tasks/{task_id}/claim")
async def claim_task(task_id: str, request: Request) -> JSONResponse:
    """Claim an open task."""
    actor_id = await authenticate(request)

    state = get_app_state()
    if state.task_manager is None:
        msg = "TaskManager not initialized"
        raise RuntimeError(msg)

    result = await state.task_manager.claim_task(actor_id, task_id)
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# Submit endpoint (multipart/form-data)
# ---------------------------------------------------------------------------


@router.put("/tasks/{task_id}/submit")
async def submit_task(task_id: str, request: Request) -> JSONResponse:
    """Submit work, with optional file attachments, for review."""
    actor_id = await authenticate(request)

    form = await request.form()
    content_field = form.get("content", "")
    if not isinstance(content_field, str):
        raise validation_error("Field 'content' must be text")

    uploads: list[UploadedFile] = []
    for item in form.getlist("files"):
        if not isinstance(item, StarletteUploadFile):
            raise validation_error("Field 'files' must contain uploaded files")
        file_content = await item.read()
        if not item.filename and file_content == b"":
            continue
        uploads.append(
            UploadedFile(
                filename=item.filename or "unnamed",
                content=file_content,
                content_type=item.content_type or "application/octet-stream",
            )
        )

    state = get_app_state()
    if state.task_manager is None:
        msg = "TaskManager not initialized"
        raise RuntimeError(msg)

    result = await state.task_manager.submit_task(actor_id, task_id, content_field, uploads)
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# Offline completion endpoint
# ---------------------------------------------------------------------------


@router.put("/tasks/{task_id}/offline-complete")
async def mark_offline_complete(task_id: str, request: Request) -> JSONResponse:
    """Record that the claimant completed the task outside the platform."""
    actor_id = await authenticate(request)

    state = get_app_state()
    if state.task_manager is None:
        msg = "TaskManager not initialized"
        raise RuntimeError(msg)

    result = await state.task_manager.mark_offline_complete(actor_id, task_id)
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# Review endpoints
# ---------------------------------------------------------------------------


@router.put("/tasks/{task_id}/approve")
async def approve_task(task_id: str, request: Request) -> JSONResponse:
    """Approve the submission and pay the claimant."""
    actor_id = await authenticate(request)
    body = await request.body()
    data = None if body.strip() == b"" else parse_json_body(body)

    state = get_app_state()
    if state.task_manager is None:
        msg = "TaskManager not initialized"
        raise RuntimeError(msg)

    result = await state.task_manager.approve_task(actor_id, task_id, data)
    return JSONResponse(status_code=200, content=result)


@router.put("/tasks/{task_id}/reject")
async def reject_task(task_id: str, request: Request) -> JSONResponse:
    """Reject the submission and return the task to the claimant."""
    actor_id = await authenticate(request)
    data = parse_json_body(await request.body())

    state = get_app_state()
    if state.task_manager is None:
        msg = "TaskManager not initialized"
        raise RuntimeError(msg)

    result = await state.task_manager.reject_task(actor_id, task_id, data)
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# Cancel endpoint
# ---------------------------------------------------------------------------


@router.put("/tasks/{task_id}/cancel")
async def cancel_task(task_id: str, request: Request) -> JSONResponse:
    """Cancel a task and refund the creator."""
    actor_id = await authenticate(request)

    state = get_app_state()
    if state.task_manager is None:
        msg = "TaskManager not initialized"
        raise RuntimeError(msg)

    result = await state.task_manager.cancel_task(actor_id, task_id)
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# GET /tasks/{task_id}/files/{file_id}: download submitted file
# ---------------------------------------------------------------------------


@router.get("/tasks/{task_id}/files/{file_id}")
async def download_file(task_id: str, file_id: str) -> Response:
    """Download a file attached to the task's submission."""
    state = get_app_state()
    if state.task_manager is None:
        msg = "TaskManager not initialized"
        raise RuntimeError(msg)

    content, filename, content_type = await state.task_manager.download_file(task_id, file_id)
    return Response(
        content=content,
        media_type=content_type,
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}",
        },
    )


# ---------------------------------------------------------------------------
# /tasks/{task_id}: get, edit, delete (MUST be last, catch-all path param)
# ---------------------------------------------------------------------------


@router.get("/tasks/{task_id}")
async def get_task(task_id: str) -> dict[str, Any]:
    """Get task details."""
    state = get_app_state()
    if state.task_manager is None:
        msg = "TaskManager not initialized"
        raise RuntimeError(msg)

    return await state.task_manager.get_task(task_id)


@router.put("/tasks/{task_id}")
async def update_task(task_id: str, request: Request) -> JSONResponse:
    """Edit an open task's descriptive fields."""
    actor_id = await authenticate(request)
    data = parse_json_body(await request.body())

    state = get_app_state()
    if state.task_manager is None:
        msg = "TaskManager not initialized"
        raise RuntimeError(msg)

    result = await state.task_manager.update_task(actor_id, task_id, data)
    return JSONResponse(status_code=200, content=result)


@router.delete("/tasks/{task_id}")
async def delete_task(task_id: str, request: Request) -> JSONResponse:
    """Delete an open, unclaimed task and refund the creator."""
    actor_id = await authenticate(request)

    state = get_app_state()
    if state.task_manager is None:
        msg = "TaskManager not initialized"
        raise RuntimeError(msg)

    result = await state.task_manager.delete_task(actor_id, task_id)
    return JSONResponse(status_code=200, content=result)
