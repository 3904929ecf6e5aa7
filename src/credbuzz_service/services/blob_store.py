"""On-disk storage for files attached to task submissions."""

from __future__ import annotations

import hashlib
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Any

from credbuzz_service.core.exceptions import ServiceError, validation_error


@dataclass(frozen=True)
class UploadedFile:
    """A file received in a multipart submission, fully buffered."""

    filename: str
    content: bytes
    content_type: str


def _safe_filename(filename: str) -> str:
    """Reduce a client-supplied name to its basename."""
    name = PureWindowsPath(PurePosixPath(filename).name).name.strip()
    if name in {"", ".", ".."}:
        raise validation_error("Uploaded file must have a filename")
    return name


class BlobStore:
    """
    Stores submission files under ``{storage_path}/{task_id}/{file_id}/{filename}``.

    Limits are checked for the whole batch before anything touches disk.
    """

    def __init__(
        self,
        storage_path: str,
        max_file_size: int,
        max_files_per_submission: int,
    ) -> None:
        self._storage_path = Path(storage_path)
        self._max_file_size = max_file_size
        self._max_files_per_submission = max_files_per_submission
        self._storage_path.mkdir(parents=True, exist_ok=True)

    def _check_limits(self, files: list[UploadedFile]) -> None:
        if len(files) > self._max_files_per_submission:
            raise ServiceError(
                "TOO_MANY_FILES",
                f"Maximum of {self._max_files_per_submission} files per submission",
                400,
                {},
            )
        for upload in files:
            if len(upload.content) > self._max_file_size:
                raise ServiceError(
                    "FILE_TOO_LARGE",
                    f"File exceeds maximum size of {self._max_file_size} bytes",
                    413,
                    {"filename": upload.filename},
                )

    def save(self, task_id: str, files: list[UploadedFile]) -> list[dict[str, Any]]:
        """Write every file and return the references to embed in the submission."""
        self._check_limits(files)
        names = [_safe_filename(upload.filename) for upload in files]

        references: list[dict[str, Any]] = []
        try:
            for upload, name in zip(files, names, strict=True):
                file_id = f"file-{uuid.uuid4()}"
                file_dir = self._storage_path / task_id / file_id
                file_dir.mkdir(parents=True, exist_ok=True)
                (file_dir / name).write_bytes(upload.content)
                references.append(
                    {
                        "file_id": file_id,
                        "filename": name,
                        "content_type": upload.content_type,
                        "size_bytes": len(upload.content),
                        "content_hash": hashlib.sha256(upload.content).hexdigest(),
                    }
                )
        except OSError:
            self.discard(task_id, references)
            raise
        return references

    def load(self, task_id: str, file_ref: dict[str, Any]) -> bytes:
        """Read a stored file back."""
        base = self._storage_path.resolve()
        file_path = (
            self._storage_path / task_id / str(file_ref["file_id"]) / str(file_ref["filename"])
        ).resolve()
        if not file_path.is_relative_to(base):
            raise ServiceError("FILE_NOT_FOUND", "File not found", 404, {})
        if not file_path.is_file():
            raise ServiceError("FILE_NOT_FOUND", "File not found", 404, {})
        return file_path.read_bytes()

    def discard(self, task_id: str, file_refs: list[dict[str, Any]]) -> None:
        """Remove files written for a submission that did not go through."""
        for file_ref in file_refs:
            file_dir = self._storage_path / task_id / str(file_ref["file_id"])
            shutil.rmtree(file_dir, ignore_errors=True)
