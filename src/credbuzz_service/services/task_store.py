"""SQLite-backed task storage."""

from __future__ import annotations

import json
import sqlite3
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from credbuzz_service.services.database import Database


class DuplicateTaskError(Exception):
    """Raised when attempting to insert a task with a duplicate task_id."""


ESCROWED_STATUSES: tuple[str, ...] = ("open", "claimed", "submitted")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS tasks (
    task_id TEXT PRIMARY KEY,
    creator_id TEXT NOT NULL REFERENCES accounts(account_id),
    claimant_id TEXT REFERENCES accounts(account_id),
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    category TEXT NOT NULL,
    required_skills TEXT NOT NULL DEFAULT '[]',
    estimated_hours INTEGER NOT NULL CHECK (estimated_hours >= 1),
    deadline TEXT NOT NULL,
    credit_amount INTEGER NOT NULL CHECK (credit_amount >= 1),
    complexity TEXT NOT NULL DEFAULT 'general' CHECK (complexity IN ('general', 'complex')),
    location TEXT NOT NULL DEFAULT 'remote' CHECK (location IN ('remote', 'offline')),
    status TEXT NOT NULL DEFAULT 'open',
    submission TEXT,
    rejection_reason TEXT,
    review TEXT,
    created_at TEXT NOT NULL,
    claimed_at TEXT,
    submitted_at TEXT,
    completed_at TEXT,
    cancelled_at TEXT,
    updated_at TEXT NOT NULL,
    CHECK (claimant_id IS NULL OR claimant_id != creator_id)
);

CREATE INDEX IF NOT EXISTS ix_tasks_status_created
    ON tasks(status, created_at);
"""


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class TaskStore:
    """SQLite-backed storage for task rows."""

    _TASK_COLUMNS: tuple[str, ...] = (
        "task_id",
        "creator_id",
        "claimant_id",
        "title",
        "description",
        "category",
        "required_skills",
        "estimated_hours",
        "deadline",
        "credit_amount",
        "complexity",
        "location",
        "status",
        "submission",
        "rejection_reason",
        "review",
        "created_at",
        "claimed_at",
        "submitted_at",
        "completed_at",
        "cancelled_at",
        "updated_at",
    )
    _JSON_COLUMNS: frozenset[str] = frozenset({"required_skills", "submission", "review"})
    _TASK_COLUMNS_SQL = ", ".join(_TASK_COLUMNS)
    _TASK_INSERT_SQL = (
        "INSERT INTO tasks (" + _TASK_COLUMNS_SQL + ") VALUES ("
        + ", ".join("?" for _ in _TASK_COLUMNS)
        + ")"
    )
    _TASK_SELECT_BASE_SQL = "SELECT " + _TASK_COLUMNS_SQL + " FROM tasks"  # nosec B608

    def __init__(self, database: Database) -> None:
        self._database = database
        self._database.init_schema(_SCHEMA)

    def _encode(self, column: str, value: Any) -> Any:
        if column in self._JSON_COLUMNS and value is not None:
            return json.dumps(value)
        return value

    def _row_to_task(self, row: sqlite3.Row) -> dict[str, Any]:
        task: dict[str, Any] = {}
        for column in self._TASK_COLUMNS:
            value = row[column]
            if column in self._JSON_COLUMNS and value is not None:
                value = json.loads(value)
            task[column] = value
        return task

    def insert_task(self, task_data: dict[str, Any]) -> None:
        """Insert a new task row."""
        values = tuple(self._encode(column, task_data[column]) for column in self._TASK_COLUMNS)
        try:
            with self._database.transaction():
                self._database.execute(self._TASK_INSERT_SQL, values)
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise DuplicateTaskError(
                    f"A task with task_id={task_data['task_id']} already exists"
                ) from exc
            raise

    def get_task(self, task_id: str) -> dict[str, Any] | None:
        """Fetch a task by ID."""
        row = self._database.fetch_one(
            self._TASK_SELECT_BASE_SQL + " WHERE task_id = ?",
            (task_id,),
        )
        if row is None:
            return None
        return self._row_to_task(row)

    def _guard_clauses(
        self,
        expected_status: str | tuple[str, ...] | None,
        expected_claimant: str | None,
        require_unclaimed: bool,
    ) -> tuple[str, list[object]]:
        query = ""
        params: list[object] = []
        if isinstance(expected_status, str):
            query += " AND status = ?"
            params.append(expected_status)
        elif expected_status is not None:
            query += " AND status IN (" + ", ".join("?" for _ in expected_status) + ")"
            params.extend(expected_status)
        if expected_claimant is not None:
            query += " AND claimant_id = ?"
            params.append(expected_claimant)
        if require_unclaimed:
            query += " AND claimant_id IS NULL"
        return query, params

    def update_task(
        self,
        task_id: str,
        updates: dict[str, Any],
        *,
        expected_status: str | tuple[str, ...] | None,
        expected_claimant: str | None = None,
        require_unclaimed: bool = False,
    ) -> int:
        """
        Update task columns and return the number of affected rows.

        The guards are part of the WHERE clause, so a row that no longer
        matches them is left untouched and the call returns 0.
        """
        if len(updates) == 0:
            return 0

        if any(column not in self._TASK_COLUMNS for column in updates):
            msg = "Attempted to update unknown task column"
            raise ValueError(msg)

        set_clause = ", ".join(f"{column} = ?" for column in updates)
        params: list[object] = [self._encode(column, value) for column, value in updates.items()]

        query = "UPDATE tasks SET " + set_clause + " WHERE task_id = ?"  # nosec B608
        params.append(task_id)
        guard_sql, guard_params = self._guard_clauses(
            expected_status, expected_claimant, require_unclaimed
        )
        query += guard_sql
        params.extend(guard_params)

        return self._database.execute(query, params)

    def delete_task(
        self,
        task_id: str,
        *,
        expected_status: str | tuple[str, ...] | None,
        require_unclaimed: bool = False,
    ) -> int:
        """Delete a task row if it still matches the guards."""
        guard_sql, guard_params = self._guard_clauses(expected_status, None, require_unclaimed)
        return self._database.execute(
            "DELETE FROM tasks WHERE task_id = ?" + guard_sql,  # nosec B608
            [task_id, *guard_params],
        )

    def _filter_clauses(
        self,
        *,
        status: str | None,
        category: str | None,
        complexity: str | None,
        location: str | None,
        skill: str | None,
        search: str | None,
        involving: str | None,
        creator_id: str | None,
        claimant_id: str | None,
        available: bool,
    ) -> tuple[list[str], list[object]]:
        clauses: list[str] = []
        params: list[object] = []

        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        if category is not None:
            clauses.append("category = ?")
            params.append(category)
        if complexity is not None:
            clauses.append("complexity = ?")
            params.append(complexity)
        if location is not None:
            clauses.append("location = ?")
            params.append(location)
        if skill is not None:
            clauses.append(
                "EXISTS (SELECT 1 FROM json_each(tasks.required_skills) "
                "WHERE LOWER(json_each.value) = LOWER(?))"
            )
            params.append(skill)
        if search is not None:
            pattern = "%" + _escape_like(search.lower()) + "%"
            clauses.append(
                "(LOWER(title) LIKE ? ESCAPE '\\' OR LOWER(description) LIKE ? ESCAPE '\\')"
            )
            params.extend([pattern, pattern])
        if involving is not None:
            clauses.append("(creator_id = ? OR claimant_id = ?)")
            params.extend([involving, involving])
        if creator_id is not None:
            clauses.append("creator_id = ?")
            params.append(creator_id)
        if claimant_id is not None:
            clauses.append("claimant_id = ?")
            params.append(claimant_id)
        if available:
            clauses.append("status = 'open' AND claimant_id IS NULL")

        return clauses, params

    def list_tasks(
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
    ) -> list[dict[str, Any]]:
        """List tasks with optional filters, newest first."""
        clauses, params = self._filter_clauses(
            status=status,
            category=category,
            complexity=complexity,
            location=location,
            skill=skill,
            search=search,
            involving=involving,
            creator_id=creator_id,
            claimant_id=claimant_id,
            available=available,
        )

        query = self._TASK_SELECT_BASE_SQL
        if len(clauses) > 0:
            query += " WHERE " + " AND ".join(clauses)

        query += " ORDER BY created_at DESC, rowid DESC"

        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        if offset is not None:
            if limit is None:
                query += " LIMIT -1"
            query += " OFFSET ?"
            params.append(offset)

        return [self._row_to_task(row) for row in self._database.fetch_all(query, params)]

    def count_matching(
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
    ) -> int:
        """Count tasks matching the same filters as ``list_tasks``."""
        clauses, params = self._filter_clauses(
            status=status,
            category=category,
            complexity=complexity,
            location=location,
            skill=skill,
            search=search,
            involving=involving,
            creator_id=creator_id,
            claimant_id=claimant_id,
            available=available,
        )
        query = "SELECT COUNT(*) FROM tasks"
        if len(clauses) > 0:
            query += " WHERE " + " AND ".join(clauses)
        row = self._database.fetch_one(query, params)
        return int(row[0]) if row is not None else 0

    def count_tasks(self) -> int:
        """Count total tasks."""
        row = self._database.fetch_one("SELECT COUNT(*) FROM tasks")
        return int(row[0]) if row is not None else 0

    def count_tasks_by_status(self) -> dict[str, int]:
        """Count tasks grouped by status."""
        rows = self._database.fetch_all("SELECT status, COUNT(*) FROM tasks GROUP BY status")
        return {str(row[0]): int(row[1]) for row in rows}

    def total_escrowed(self) -> int:
        """Sum of credits held for tasks whose escrow is not yet resolved."""
        row = self._database.fetch_one(
            "SELECT COALESCE(SUM(credit_amount), 0) FROM tasks WHERE status IN (?, ?, ?)",
            ESCROWED_STATUSES,
        )
        return int(row[0]) if row is not None else 0
