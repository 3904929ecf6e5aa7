"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from credbuzz_service.core.state import get_app_state
from credbuzz_service.schemas import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check service health and return task and credit statistics."""
    state = get_app_state()
    stats: dict[str, object] = {
        "total_tasks": 0,
        "tasks_by_status": {},
        "total_accounts": 0,
        "credits_in_circulation": 0,
        "credits_in_escrow": 0,
    }
    if state.task_manager is not None:
        stats = state.task_manager.get_stats()
    return HealthResponse(
        status="ok",
        uptime_seconds=state.uptime_seconds,
        started_at=state.started_at,
        **stats,  # type: ignore[arg-type]
    )
