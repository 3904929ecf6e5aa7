"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from credbuzz_service.clients.identity_client import IdentityClient
from credbuzz_service.clients.mailer_client import MailerClient
from credbuzz_service.config import get_settings
from credbuzz_service.core.state import init_app_state
from credbuzz_service.logging import get_logger, setup_logging
from credbuzz_service.oracle import LLMReviewOracle, StaticReviewOracle
from credbuzz_service.services.blob_store import BlobStore
from credbuzz_service.services.database import Database
from credbuzz_service.services.ledger import Ledger
from credbuzz_service.services.otp_store import OtpStore
from credbuzz_service.services.task_manager import TaskManager
from credbuzz_service.services.task_store import TaskStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

    from credbuzz_service.config import OracleConfig
    from credbuzz_service.oracle import ReviewOracle

STATIC_REVIEW_ANNOTATION = "Automatic review is disabled"


def build_oracle(config: OracleConfig) -> ReviewOracle:
    """Create the review oracle selected by ``oracle.provider``."""
    if config.provider == "static":
        return StaticReviewOracle(STATIC_REVIEW_ANNOTATION)
    return LLMReviewOracle(
        model=config.model,
        temperature=config.temperature,
        timeout_seconds=config.timeout_seconds,
    )


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()

    # One connection shared by every store so lifecycle operations can
    # span task and account rows in a single transaction.
    database = Database(settings.database.path)
    state.database = database

    ledger = Ledger(database, starting_balance=settings.ledger.starting_balance)
    state.ledger = ledger

    task_store = TaskStore(database)
    state.task_store = task_store

    otp_store = OtpStore(
        database,
        ttl_seconds=settings.otp.ttl_seconds,
        code_length=settings.otp.code_length,
    )
    otp_store.purge_expired()
    state.otp_store = otp_store

    blob_store = BlobStore(
        storage_path=settings.blobs.storage_path,
        max_file_size=settings.blobs.max_file_size,
        max_files_per_submission=settings.blobs.max_files_per_submission,
    )
    state.blob_store = blob_store

    oracle = build_oracle(settings.oracle)
    state.oracle = oracle

    identity_client = IdentityClient(
        base_url=settings.identity.base_url,
        verify_path=settings.identity.verify_path,
        timeout_seconds=settings.identity.timeout_seconds,
    )
    state.identity_client = identity_client

    mailer_client = MailerClient(
        base_url=settings.mailer.base_url,
        send_path=settings.mailer.send_path,
        sender=settings.mailer.sender,
        timeout_seconds=settings.mailer.timeout_seconds,
    )
    state.mailer_client = mailer_client

    task_manager = TaskManager(
        database=database,
        store=task_store,
        ledger=ledger,
        blob_store=blob_store,
        oracle=oracle,
    )
    state.task_manager = task_manager

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": settings.database.path,
            "blob_storage_path": settings.blobs.storage_path,
            "identity_base_url": settings.identity.base_url,
            "oracle_provider": settings.oracle.provider,
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    task_manager.close()

    await identity_client.close()
    await mailer_client.close()
