"""Task lifecycle management: all business rules for tasks and escrow live here."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from credbuzz_service.core.exceptions import (
    ServiceError,
    forbidden,
    invalid_state,
    task_not_found,
    validation_error,
)
from credbuzz_service.logging import get_logger
from credbuzz_service.oracle.base import REVIEW_UNAVAILABLE, OracleUnavailable, SubmissionContext
from credbuzz_service.schemas import (
    ApproveTaskRequest,
    CreateTaskRequest,
    RejectTaskRequest,
    UpdateTaskRequest,
    parse_request,
)
from credbuzz_service.services.ledger import (
    TX_ESCROW_DEBIT,
    TX_ESCROW_PAYOUT,
    TX_ESCROW_REFUND,
)

if TYPE_CHECKING:
    from credbuzz_service.oracle.base import ReviewOracle
    from credbuzz_service.services.blob_store import BlobStore, UploadedFile
    from credbuzz_service.services.database import Database
    from credbuzz_service.services.ledger import Ledger
    from credbuzz_service.services.task_store import TaskStore

# "rejected" is part of the vocabulary but no transition enters it: a
# rejected submission returns the task to "claimed" so the escrow stays live.
VALID_STATUSES = frozenset({"open", "claimed", "submitted", "completed", "rejected", "cancelled"})
VALID_COMPLEXITIES = frozenset({"general", "complex"})
VALID_LOCATIONS = frozenset({"remote", "offline"})

OFFLINE_SUBMISSION_CONTENT = "Completed offline"
MAX_SUBMISSION_CONTENT = 10000

_SUMMARY_EXCLUDED = frozenset({"submission", "review"})


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _deadline_iso(deadline: datetime) -> str:
    if deadline.tzinfo is None:
        deadline = deadline.replace(tzinfo=UTC)
    return deadline.astimezone(UTC).isoformat().replace("+00:00", "Z")


class TaskManager:
    """
    Manages the full task lifecycle: creation, claiming, submission,
    review, cancellation, and deletion.

    Delegates persistence to TaskStore and balance changes to Ledger. Every
    operation that touches more than one row runs inside a single database
    transaction, and every status change is a guarded update that only
    applies if the row is still in the state that was checked.
    """

    def __init__(
        self,
        database: Database,
        store: TaskStore,
        ledger: Ledger,
        blob_store: BlobStore,
        oracle: ReviewOracle,
    ) -> None:
        self._database = database
        self._store = store
        self._ledger = ledger
        self._blob_store = blob_store
        self.oracle = oracle
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Private helper methods
    # ------------------------------------------------------------------

    def _attach_profiles(self, tasks: list[dict[str, Any]]) -> None:
        """Embed creator and claimant name/rating summaries in each task."""
        account_ids = {task["creator_id"] for task in tasks}
        account_ids.update(task["claimant_id"] for task in tasks if task["claimant_id"])
        profiles = self._ledger.profile_summaries(account_ids)
        for task in tasks:
            task["creator"] = profiles.get(task["creator_id"])
            claimant_id = task["claimant_id"]
            task["claimant"] = profiles.get(claimant_id) if claimant_id else None

    def _task_to_response(self, row: dict[str, Any]) -> dict[str, Any]:
        """Convert a stored task to a full task response dict."""
        task = dict(row)
        self._attach_profiles([task])
        return task

    def _task_to_summary(self, row: dict[str, Any]) -> dict[str, Any]:
        """Convert a stored task to a summary dict for list views."""
        summary = {key: value for key, value in row.items() if key not in _SUMMARY_EXCLUDED}
        submission = row["submission"]
        summary["file_count"] = len(submission["files"]) if submission is not None else 0
        return summary

    def _load_task(self, task_id: str) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if task is None:
            raise task_not_found()
        return task

    def _reload(self, task_id: str) -> dict[str, Any]:
        updated = self._store.get_task(task_id)
        if updated is None:
            msg = f"Task {task_id} not found after update"
            raise RuntimeError(msg)
        return self._task_to_response(updated)

    # ------------------------------------------------------------------
    # Creation and editing
    # ------------------------------------------------------------------

    async def create_task(self, actor_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        """
        Create a task and escrow its reward from the creator's balance.

        Error precedence:
        1. VALIDATION_ERROR
        2. ACCOUNT_NOT_FOUND: creator has no account
        3. INSUFFICIENT_CREDITS
        """
        request = parse_request(CreateTaskRequest, payload)
        self._ledger.require_account(actor_id)

        task_id = f"t-{uuid.uuid4()}"
        now = _now_iso()
        task_data: dict[str, Any] = {
            "task_id": task_id,
            "creator_id": actor_id,
            "claimant_id": None,
            "title": request.title,
            "description": request.description,
            "category": request.category,
            "required_skills": request.required_skills,
            "estimated_hours": request.estimated_hours,
            "deadline": _deadline_iso(request.deadline),
            "credit_amount": request.credit_amount,
            "complexity": request.complexity,
            "location": request.location,
            "status": "open",
            "submission": None,
            "rejection_reason": None,
            "review": None,
            "created_at": now,
            "claimed_at": None,
            "submitted_at": None,
            "completed_at": None,
            "cancelled_at": None,
            "updated_at": now,
        }

        with self._database.transaction():
            self._ledger.adjust_balance(
                actor_id,
                -request.credit_amount,
                task_id=task_id,
                tx_type=TX_ESCROW_DEBIT,
            )
            self._ledger.record_task_created(actor_id)
            self._store.insert_task(task_data)

        self._logger.info(
            "Task created",
            extra={"task_id": task_id, "actor_id": actor_id, "credit_amount": request.credit_amount},
        )
        return self._reload(task_id)

    async def update_task(
        self, actor_id: str, task_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Edit the descriptive fields of an open task. The reward never changes.

        Error precedence:
        1. VALIDATION_ERROR
        2. TASK_NOT_FOUND
        3. FORBIDDEN: caller is not the creator
        4. INVALID_STATE: task is not open
        """
        request = parse_request(UpdateTaskRequest, payload)
        changes = request.model_dump(exclude_none=True)
        if not changes:
            raise validation_error("At least one field must be provided")
        if request.deadline is not None:
            changes["deadline"] = _deadline_iso(request.deadline)

        task = self._load_task(task_id)
        if task["creator_id"] != actor_id:
            raise forbidden("Only the creator can edit this task")
        if task["status"] != "open":
            raise invalid_state("Only open tasks can be edited")

        changes["updated_at"] = _now_iso()
        if self._store.update_task(task_id, changes, expected_status="open") == 0:
            raise invalid_state("Only open tasks can be edited")

        return self._reload(task_id)

    # ------------------------------------------------------------------
    # Claiming and submission
    # ------------------------------------------------------------------

    async def claim_task(self, actor_id: str, task_id: str) -> dict[str, Any]:
        """
        Claim an open task. Exactly one of any number of concurrent claims wins.

        Error precedence:
        1. TASK_NOT_FOUND
        2. FORBIDDEN: caller created the task
        3. ACCOUNT_NOT_FOUND: caller has no account
        4. INVALID_STATE: task is not open or already claimed
        """
        task = self._load_task(task_id)
        if task["creator_id"] == actor_id:
            raise forbidden("You cannot claim your own task")
        self._ledger.require_account(actor_id)

        now = _now_iso()
        claimed = self._store.update_task(
            task_id,
            {"status": "claimed", "claimant_id": actor_id, "claimed_at": now, "updated_at": now},
            expected_status="open",
            require_unclaimed=True,
        )
        if claimed == 0:
            raise invalid_state("Task is not available for claiming")

        self._logger.info("Task claimed", extra={"task_id": task_id, "actor_id": actor_id})
        return self._reload(task_id)

    async def submit_task(
        self,
        actor_id: str,
        task_id: str,
        content: str,
        files: list[UploadedFile],
    ) -> dict[str, Any]:
        """
        Submit work for a claimed task.

        Files are written and the oracle is consulted before the guarded
        status change; if the change does not apply, the files are removed.
        An oracle failure is recorded as "review unavailable" and never
        fails the submission.

        Error precedence:
        1. VALIDATION_ERROR: empty submission or content too long
        2. TASK_NOT_FOUND
        3. FORBIDDEN: caller is not the claimant
        4. INVALID_STATE: task is not claimed
        5. TOO_MANY_FILES / FILE_TOO_LARGE
        """
        content = content.strip()
        if content == "" and not files:
            raise validation_error("Submission must include content or at least one file")
        if len(content) > MAX_SUBMISSION_CONTENT:
            raise validation_error(
                f"Submission content must be at most {MAX_SUBMISSION_CONTENT} characters"
            )

        task = self._load_task(task_id)
        if task["claimant_id"] != actor_id:
            raise forbidden("Only the claimant can submit work for this task")
        if task["status"] != "claimed":
            raise invalid_state("Task is not in a state that accepts submissions")

        file_refs = self._blob_store.save(task_id, files)
        try:
            ai_review = await self._review(task, content, file_refs)
            now = _now_iso()
            submission = {
                "content": content,
                "submitted_at": now,
                "files": file_refs,
                "ai_review": ai_review,
            }
            submitted = self._store.update_task(
                task_id,
                {
                    "status": "submitted",
                    "submission": submission,
                    "rejection_reason": None,
                    "submitted_at": now,
                    "updated_at": now,
                },
                expected_status="claimed",
                expected_claimant=actor_id,
            )
            if submitted == 0:
                raise invalid_state("Task is not in a state that accepts submissions")
        except Exception:
            self._blob_store.discard(task_id, file_refs)
            raise

        self._logger.info(
            "Task submitted",
            extra={"task_id": task_id, "actor_id": actor_id, "file_count": len(file_refs)},
        )
        return self._reload(task_id)

    async def _review(
        self, task: dict[str, Any], content: str, file_refs: list[dict[str, Any]]
    ) -> str:
        context = SubmissionContext(
            task_title=task["title"],
            task_description=task["description"],
            required_skills=list(task["required_skills"]),
            content=content,
            filenames=[str(ref["filename"]) for ref in file_refs],
        )
        try:
            return await self.oracle.review(context)
        except OracleUnavailable:
            self._logger.warning(
                "Review oracle unavailable",
                exc_info=True,
                extra={"task_id": task["task_id"]},
            )
            return REVIEW_UNAVAILABLE

    async def mark_offline_complete(self, actor_id: str, task_id: str) -> dict[str, Any]:
        """
        Record that the claimant finished the work outside the platform.

        Stores a placeholder submission and moves the task to "submitted";
        the creator still approves and releases the credits.

        Only tasks whose location is "offline" can be completed this way;
        remote tasks go through a reviewed submission.

        Error precedence:
        1. TASK_NOT_FOUND
        2. FORBIDDEN: caller is not the claimant
        3. INVALID_STATE: task is not claimed, or is not an offline task
        """
        task = self._load_task(task_id)
        if task["claimant_id"] != actor_id:
            raise forbidden("Only the claimant can mark this task as completed offline")
        if task["status"] != "claimed":
            raise invalid_state("Task is not in a state that accepts submissions")
        if task["location"] != "offline":
            raise invalid_state("Only offline tasks can be marked complete offline")

        now = _now_iso()
        submission = {
            "content": OFFLINE_SUBMISSION_CONTENT,
            "submitted_at": now,
            "files": [],
            "ai_review": None,
        }
        submitted = self._store.update_task(
            task_id,
            {
                "status": "submitted",
                "submission": submission,
                "rejection_reason": None,
                "submitted_at": now,
                "updated_at": now,
            },
            expected_status="claimed",
            expected_claimant=actor_id,
        )
        if submitted == 0:
            raise invalid_state("Task is not in a state that accepts submissions")

        self._logger.info(
            "Task marked complete offline", extra={"task_id": task_id, "actor_id": actor_id}
        )
        return self._reload(task_id)

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    async def approve_task(
        self, actor_id: str, task_id: str, payload: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """
        Approve a submission and pay the escrowed reward to the claimant.

        Error precedence:
        1. VALIDATION_ERROR: rating outside 1-5
        2. TASK_NOT_FOUND
        3. FORBIDDEN: caller is not the creator
        4. INVALID_STATE: task is not submitted
        """
        request = parse_request(ApproveTaskRequest, payload if payload is not None else {})

        task = self._load_task(task_id)
        if task["creator_id"] != actor_id:
            raise forbidden("Only the creator can approve this task")
        if task["status"] != "submitted":
            raise invalid_state("Task is not ready for approval")

        claimant_id: str = task["claimant_id"]
        now = _now_iso()
        review = {"rating": request.rating, "comment": request.comment, "reviewed_at": now}

        with self._database.transaction():
            approved = self._store.update_task(
                task_id,
                {"status": "completed", "review": review, "completed_at": now, "updated_at": now},
                expected_status="submitted",
            )
            if approved == 0:
                raise invalid_state("Task is not ready for approval")
            self._ledger.adjust_balance(
                claimant_id,
                task["credit_amount"],
                task_id=task_id,
                tx_type=TX_ESCROW_PAYOUT,
            )
            self._ledger.record_task_completed(claimant_id)
            if request.rating is not None:
                self._ledger.update_rating(claimant_id, request.rating)

        self._logger.info(
            "Task approved",
            extra={
                "task_id": task_id,
                "actor_id": actor_id,
                "claimant_id": claimant_id,
                "credit_amount": task["credit_amount"],
                "rating": request.rating,
            },
        )
        return self._reload(task_id)

    async def reject_task(
        self, actor_id: str, task_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Reject a submission and hand the task back to the claimant.

        No credits move. The task returns to "claimed" with the reason
        recorded, and the claimant may submit again.

        Error precedence:
        1. VALIDATION_ERROR: reason missing or too long
        2. TASK_NOT_FOUND
        3. FORBIDDEN: caller is not the creator
        4. INVALID_STATE: task is not submitted
        """
        request = parse_request(RejectTaskRequest, payload)

        task = self._load_task(task_id)
        if task["creator_id"] != actor_id:
            raise forbidden("Only the creator can reject this task")
        if task["status"] != "submitted":
            raise invalid_state("Task is not ready for review")

        now = _now_iso()
        rejected = self._store.update_task(
            task_id,
            {"status": "claimed", "rejection_reason": request.reason, "updated_at": now},
            expected_status="submitted",
        )
        if rejected == 0:
            raise invalid_state("Task is not ready for review")

        self._logger.info("Task submission rejected", extra={"task_id": task_id, "actor_id": actor_id})
        return self._reload(task_id)

    # ------------------------------------------------------------------
    # Cancellation and deletion
    # ------------------------------------------------------------------

    async def cancel_task(self, actor_id: str, task_id: str) -> dict[str, Any]:
        """
        Cancel an open or claimed task and refund the creator.

        Error precedence:
        1. TASK_NOT_FOUND
        2. FORBIDDEN: caller is not the creator
        3. INVALID_STATE: task is past the point of cancellation
        """
        task = self._load_task(task_id)
        if task["creator_id"] != actor_id:
            raise forbidden("Only the creator can cancel this task")
        if task["status"] not in ("open", "claimed"):
            raise invalid_state("Task cannot be cancelled")

        now = _now_iso()
        with self._database.transaction():
            cancelled = self._store.update_task(
                task_id,
                {"status": "cancelled", "cancelled_at": now, "updated_at": now},
                expected_status=("open", "claimed"),
            )
            if cancelled == 0:
                raise invalid_state("Task cannot be cancelled")
            self._ledger.adjust_balance(
                actor_id,
                task["credit_amount"],
                task_id=task_id,
                tx_type=TX_ESCROW_REFUND,
            )

        self._logger.info(
            "Task cancelled",
            extra={"task_id": task_id, "actor_id": actor_id, "refunded": task["credit_amount"]},
        )
        return self._reload(task_id)

    async def delete_task(self, actor_id: str, task_id: str) -> dict[str, Any]:
        """
        Delete an open, unclaimed task and refund the creator.

        Error precedence:
        1. TASK_NOT_FOUND
        2. FORBIDDEN: caller is not the creator
        3. INVALID_STATE: task is claimed or no longer open
        """
        task = self._load_task(task_id)
        if task["creator_id"] != actor_id:
            raise forbidden("Only the creator can delete this task")
        if task["status"] != "open" or task["claimant_id"] is not None:
            raise invalid_state("Only open and unclaimed tasks can be deleted")

        with self._database.transaction():
            deleted = self._store.delete_task(
                task_id, expected_status="open", require_unclaimed=True
            )
            if deleted == 0:
                raise invalid_state("Only open and unclaimed tasks can be deleted")
            self._ledger.adjust_balance(
                actor_id,
                task["credit_amount"],
                task_id=task_id,
                tx_type=TX_ESCROW_REFUND,
            )

        self._logger.info(
            "Task deleted",
            extra={"task_id": task_id, "actor_id": actor_id, "refunded": task["credit_amount"]},
        )
        return {"task_id": task_id, "deleted": True, "refunded": task["credit_amount"]}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_task(self, task_id: str) -> dict[str, Any]:
        """
        Get a single task by ID.

        Raises:
            ServiceError: TASK_NOT_FOUND
        """
        return self._task_to_response(self._load_task(task_id))

    async def list_tasks(
        self,
        *,
        status: str | None = None,
        category: str | None = None,
        complexity: str | None = None,
        location: str | None = None,
        skill: str | None = None,
        search: str | None = None,
        involving: str | None = None,
        creator_id: str | None = None,
        claimant_id: str | None = None,
        available: bool = False,
        limit: int | None = None,
        offset: int | None = None,
    ) -> dict[str, Any]:
        """
        List tasks with optional filters. All filters use AND logic.

        Returns the page of task summaries and the total match count.
        """
        if status is not None and status not in VALID_STATUSES:
            raise validation_error(
                f"Invalid status filter: {status}",
                {"allowed": sorted(VALID_STATUSES)},
            )
        if complexity is not None and complexity not in VALID_COMPLEXITIES:
            raise validation_error(
                f"Invalid complexity filter: {complexity}",
                {"allowed": sorted(VALID_COMPLEXITIES)},
            )
        if location is not None and location not in VALID_LOCATIONS:
            raise validation_error(
                f"Invalid location filter: {location}",
                {"allowed": sorted(VALID_LOCATIONS)},
            )

        filters: dict[str, Any] = {
            "status": status,
            "category": category,
            "complexity": complexity,
            "location": location,
            "skill": skill,
            "search": search,
            "involving": involving,
            "creator_id": creator_id,
            "claimant_id": claimant_id,
            "available": available,
        }
        tasks = self._store.list_tasks(**filters, limit=limit, offset=offset)
        summaries = [self._task_to_summary(task) for task in tasks]
        self._attach_profiles(summaries)
        return {
            "tasks": summaries,
            "total": self._store.count_matching(**filters),
            "limit": limit,
            "offset": offset if offset is not None else 0,
        }

    async def download_file(self, task_id: str, file_id: str) -> tuple[bytes, str, str]:
        """
        Return the bytes, filename and content type of a submitted file.

        Raises:
            ServiceError: TASK_NOT_FOUND, FILE_NOT_FOUND
        """
        task = self._load_task(task_id)
        submission = task["submission"]
        files: list[dict[str, Any]] = submission["files"] if submission is not None else []
        for file_ref in files:
            if file_ref["file_id"] == file_id:
                content = self._blob_store.load(task_id, file_ref)
                return content, str(file_ref["filename"]), str(file_ref["content_type"])
        raise ServiceError("FILE_NOT_FOUND", "File not found", 404, {})

    # ------------------------------------------------------------------
    # Statistics for the health endpoint
    # ------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Return aggregate task and credit statistics for health reporting."""
        return {
            "total_tasks": self._store.count_tasks(),
            "tasks_by_status": self.count_tasks_by_status(),
            "total_accounts": self._ledger.count_accounts(),
            "credits_in_circulation": self._ledger.total_balance(),
            "credits_in_escrow": self._store.total_escrowed(),
        }

    def count_tasks_by_status(self) -> dict[str, int]:
        """Count tasks grouped by status, with every status present."""
        counts: dict[str, int] = dict.fromkeys(VALID_STATUSES, 0)
        for status_val, count in self._store.count_tasks_by_status().items():
            if status_val in counts:
                counts[status_val] = int(count)
        return counts

    def close(self) -> None:
        """Close the database connection."""
        self._database.close()
