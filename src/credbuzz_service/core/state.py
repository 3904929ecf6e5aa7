"""Application state management."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from credbuzz_service.clients.identity_client import IdentityClient
    from credbuzz_service.clients.mailer_client import MailerClient
    from credbuzz_service.oracle.base import ReviewOracle
    from credbuzz_service.services.blob_store import BlobStore
    from credbuzz_service.services.database import Database
    from credbuzz_service.services.ledger import Ledger
    from credbuzz_service.services.otp_store import OtpStore
    from credbuzz_service.services.task_manager import TaskManager
    from credbuzz_service.services.task_store import TaskStore


@dataclass
class AppState:
    """Runtime application state."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    database: Database | None = None
    ledger: Ledger | None = None
    task_store: TaskStore | None = None
    blob_store: BlobStore | None = None
    oracle: ReviewOracle | None = None
    task_manager: TaskManager | None = None
    otp_store: OtpStore | None = None
    identity_client: IdentityClient | None = None
    mailer_client: MailerClient | None = None

    def __setattr__(self, name: str, value: Any) -> None:
        """Keep the TaskManager's oracle in sync with the AppState field."""
        super().__setattr__(name, value)

        task_manager = self.__dict__.get("task_manager")
        if name == "oracle" and value is not None and task_manager is not None:
            task_manager.oracle = value
        elif name == "task_manager" and value is not None:
            oracle = self.__dict__.get("oracle")
            if oracle is not None:
                value.oracle = oracle

    @property
    def uptime_seconds(self) -> float:
        """Calculate uptime in seconds."""
        return (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def started_at(self) -> str:
        """ISO format start time."""
        return self.start_time.isoformat(timespec="seconds").replace("+00:00", "Z")


# Global application state container
_state_container: dict[str, AppState | None] = {"app_state": None}


def get_app_state() -> AppState:
    """Get the current application state."""
    app_state = _state_container["app_state"]
    if app_state is None:
        msg = "Application state not initialized"
        raise RuntimeError(msg)
    return app_state


def init_app_state() -> AppState:
    """Initialize application state. Called during startup."""
    app_state = AppState()
    _state_container["app_state"] = app_state
    return app_state


def reset_app_state() -> None:
    """Reset application state. Used in testing."""
    _state_container["app_state"] = None
