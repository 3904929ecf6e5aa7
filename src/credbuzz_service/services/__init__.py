"""Service layer components."""

from credbuzz_service.services.blob_store import BlobStore, UploadedFile
from credbuzz_service.services.database import Database
from credbuzz_service.services.ledger import Ledger
from credbuzz_service.services.otp_store import OtpStore
from credbuzz_service.services.task_manager import TaskManager
from credbuzz_service.services.task_store import TaskStore

__all__ = [
    "BlobStore",
    "Database",
    "Ledger",
    "OtpStore",
    "TaskManager",
    "TaskStore",
    "UploadedFile",
]
