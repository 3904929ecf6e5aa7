"""Account ledger: balances, reputation counters, profiles, and the credit log."""

from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from credbuzz_service.core.exceptions import (
    ServiceError,
    account_not_found,
    insufficient_credits,
    validation_error,
)

if TYPE_CHECKING:
    from credbuzz_service.services.database import Database

TX_STARTING_BALANCE = "starting_balance"
TX_ESCROW_DEBIT = "escrow_debit"
TX_ESCROW_REFUND = "escrow_refund"
TX_ESCROW_PAYOUT = "escrow_payout"

_TX_TYPES = frozenset({TX_STARTING_BALANCE, TX_ESCROW_DEBIT, TX_ESCROW_REFUND, TX_ESCROW_PAYOUT})

_ACCOUNT_COLUMNS_SQL = (
    "account_id, name, email, bio, skills, credit_balance, tasks_created_count, "
    "tasks_completed_count, rating_sum, rating_count, email_verified, created_at"
)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS accounts (
    account_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    email TEXT,
    bio TEXT NOT NULL DEFAULT '',
    skills TEXT NOT NULL DEFAULT '[]',
    credit_balance INTEGER NOT NULL DEFAULT 0 CHECK (credit_balance >= 0),
    tasks_created_count INTEGER NOT NULL DEFAULT 0 CHECK (tasks_created_count >= 0),
    tasks_completed_count INTEGER NOT NULL DEFAULT 0 CHECK (tasks_completed_count >= 0),
    rating_sum INTEGER NOT NULL DEFAULT 0 CHECK (rating_sum >= 0),
    rating_count INTEGER NOT NULL DEFAULT 0 CHECK (rating_count >= 0),
    email_verified INTEGER NOT NULL DEFAULT 0 CHECK (email_verified IN (0, 1)),
    created_at TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS ux_accounts_email
    ON accounts(email)
    WHERE email IS NOT NULL;

CREATE TABLE IF NOT EXISTS credit_transactions (
    tx_id TEXT PRIMARY KEY,
    account_id TEXT NOT NULL REFERENCES accounts(account_id),
    task_id TEXT,
    type TEXT NOT NULL,
    amount INTEGER NOT NULL CHECK (amount > 0),
    balance_after INTEGER NOT NULL,
    timestamp TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS ix_credit_transactions_account
    ON credit_transactions(account_id, timestamp);
"""


def _now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _mean_rating(rating_sum: int, rating_count: int) -> float:
    """Mean of every rating received, rounded for display. 0.0 when unrated."""
    if rating_count == 0:
        return 0.0
    return round(rating_sum / rating_count, 2)


class Ledger:
    """
    Manages accounts and every movement of credits between them.

    Balance changes are relative SQL increments guarded by the non-negative
    balance condition, never read-modify-write. Each change appends a row to
    the credit transaction log inside the same database transaction. When the
    caller already holds an open ``Database.transaction()``, every mutator
    joins it.
    """

    def __init__(self, database: Database, starting_balance: int) -> None:
        if starting_balance < 0:
            msg = "starting_balance must be non-negative"
            raise ValueError(msg)
        self._database = database
        self._starting_balance = starting_balance
        self._database.init_schema(_SCHEMA)

    @property
    def starting_balance(self) -> int:
        return self._starting_balance

    def _new_tx_id(self) -> str:
        """Generate a new transaction ID."""
        return f"tx-{uuid.uuid4()}"

    def _row_to_account(self, row: sqlite3.Row) -> dict[str, Any]:
        return {
            "account_id": row["account_id"],
            "name": row["name"],
            "email": row["email"],
            "bio": row["bio"],
            "skills": json.loads(row["skills"]),
            "credit_balance": row["credit_balance"],
            "tasks_created_count": row["tasks_created_count"],
            "tasks_completed_count": row["tasks_completed_count"],
            "rating": _mean_rating(row["rating_sum"], row["rating_count"]),
            "rating_count": row["rating_count"],
            "email_verified": bool(row["email_verified"]),
            "created_at": row["created_at"],
        }

    def _insert_transaction(
        self,
        account_id: str,
        task_id: str | None,
        tx_type: str,
        amount: int,
        balance_after: int,
        timestamp: str,
    ) -> str:
        tx_id = self._new_tx_id()
        self._database.execute(
            "INSERT INTO credit_transactions "
            "(tx_id, account_id, task_id, type, amount, balance_after, timestamp) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (tx_id, account_id, task_id, tx_type, amount, balance_after, timestamp),
        )
        return tx_id

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_account(
        self,
        account_id: str,
        name: str,
        email: str | None = None,
        bio: str = "",
        skills: list[str] | None = None,
    ) -> dict[str, Any]:
        """
        Create a new account funded with the configured starting balance.

        Raises:
            ServiceError: ACCOUNT_EXISTS if the account id or email is taken.
        """
        now = _now_iso()
        skills_json = json.dumps(skills if skills is not None else [])

        try:
            with self._database.transaction():
                self._database.execute(
                    "INSERT INTO accounts "
                    "(account_id, name, email, bio, skills, credit_balance, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (account_id, name, email, bio, skills_json, self._starting_balance, now),
                )
                if self._starting_balance > 0:
                    self._insert_transaction(
                        account_id,
                        None,
                        TX_STARTING_BALANCE,
                        self._starting_balance,
                        self._starting_balance,
                        now,
                    )
        except sqlite3.IntegrityError as exc:
            if "unique" in str(exc).lower():
                raise ServiceError(
                    "ACCOUNT_EXISTS",
                    "Account already exists",
                    409,
                    {},
                ) from exc
            raise

        return self.require_account(account_id)

    def get_account(self, account_id: str) -> dict[str, Any] | None:
        """Fetch an account by ID."""
        row = self._database.fetch_one(
            f"SELECT {_ACCOUNT_COLUMNS_SQL} FROM accounts WHERE account_id = ?",  # nosec B608
            (account_id,),
        )
        if row is None:
            return None
        return self._row_to_account(row)

    def require_account(self, account_id: str) -> dict[str, Any]:
        """Fetch an account or raise ACCOUNT_NOT_FOUND."""
        account = self.get_account(account_id)
        if account is None:
            raise account_not_found()
        return account

    def list_accounts(self, limit: int | None = None, offset: int | None = None) -> list[dict[str, Any]]:
        """List accounts, oldest first."""
        query = f"SELECT {_ACCOUNT_COLUMNS_SQL} FROM accounts ORDER BY created_at, account_id"  # nosec B608
        params: list[object] = []
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        if offset is not None:
            if limit is None:
                query += " LIMIT -1"
            query += " OFFSET ?"
            params.append(offset)
        return [self._row_to_account(row) for row in self._database.fetch_all(query, params)]

    def update_profile(
        self,
        account_id: str,
        *,
        name: str | None = None,
        bio: str | None = None,
        skills: list[str] | None = None,
    ) -> dict[str, Any]:
        """Update profile fields; balances and counters are never touched here."""
        updates: dict[str, object] = {}
        if name is not None:
            updates["name"] = name
        if bio is not None:
            updates["bio"] = bio
        if skills is not None:
            updates["skills"] = json.dumps(skills)

        if updates:
            set_clause = ", ".join(f"{column} = ?" for column in updates)
            changed = self._database.execute(
                "UPDATE accounts SET " + set_clause + " WHERE account_id = ?",  # nosec B608
                [*updates.values(), account_id],
            )
            if changed == 0:
                raise account_not_found()

        return self.require_account(account_id)

    def mark_email_verified(self, email: str) -> str | None:
        """
        Flag the account registered with ``email`` as verified.

        Returns:
            The account id, or None when no account uses that email.
        """
        row = self._database.fetch_one(
            "SELECT account_id FROM accounts WHERE email = ?",
            (email,),
        )
        if row is None:
            return None
        self._database.execute(
            "UPDATE accounts SET email_verified = 1 WHERE account_id = ?",
            (row["account_id"],),
        )
        return str(row["account_id"])

    def profile_summaries(self, account_ids: set[str]) -> dict[str, dict[str, Any]]:
        """Public name and rating for each known id, keyed by account id."""
        if not account_ids:
            return {}
        ids = sorted(account_ids)
        rows = self._database.fetch_all(
            "SELECT account_id, name, rating_sum, rating_count FROM accounts "  # nosec B608
            "WHERE account_id IN (" + ", ".join("?" for _ in ids) + ")",
            ids,
        )
        return {
            row["account_id"]: {
                "account_id": row["account_id"],
                "name": row["name"],
                "rating": _mean_rating(row["rating_sum"], row["rating_count"]),
            }
            for row in rows
        }

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def adjust_balance(
        self,
        account_id: str,
        delta: int,
        *,
        task_id: str | None,
        tx_type: str,
    ) -> int:
        """
        Apply a relative balance change and log it.

        Returns:
            The balance after the change.

        Raises:
            ServiceError: ACCOUNT_NOT_FOUND if the account does not exist.
            ServiceError: INSUFFICIENT_CREDITS if the balance would go negative.
        """
        if delta == 0 or isinstance(delta, bool):
            msg = "delta must be a non-zero integer"
            raise ValueError(msg)
        if tx_type not in _TX_TYPES:
            msg = f"Unknown transaction type: {tx_type}"
            raise ValueError(msg)

        with self._database.transaction():
            changed = self._database.execute(
                "UPDATE accounts SET credit_balance = credit_balance + ? "
                "WHERE account_id = ? AND credit_balance + ? >= 0",
                (delta, account_id, delta),
            )
            if changed == 0:
                if self.get_account(account_id) is None:
                    raise account_not_found()
                raise insufficient_credits()

            row = self._database.fetch_one(
                "SELECT credit_balance FROM accounts WHERE account_id = ?",
                (account_id,),
            )
            if row is None:
                msg = f"Account {account_id} not found after balance update"
                raise RuntimeError(msg)
            balance_after = int(row["credit_balance"])
            self._insert_transaction(
                account_id, task_id, tx_type, abs(delta), balance_after, _now_iso()
            )
        return balance_after

    def get_transactions(self, account_id: str) -> list[dict[str, Any]]:
        """Return the credit log for an account in the order it was written."""
        self.require_account(account_id)
        rows = self._database.fetch_all(
            "SELECT tx_id, account_id, task_id, type, amount, balance_after, timestamp "
            "FROM credit_transactions WHERE account_id = ? ORDER BY rowid",
            (account_id,),
        )
        return [
            {
                "tx_id": row["tx_id"],
                "account_id": row["account_id"],
                "task_id": row["task_id"],
                "type": row["type"],
                "amount": row["amount"],
                "balance_after": row["balance_after"],
                "timestamp": row["timestamp"],
            }
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Reputation counters
    # ------------------------------------------------------------------

    def record_task_created(self, account_id: str) -> None:
        changed = self._database.execute(
            "UPDATE accounts SET tasks_created_count = tasks_created_count + 1 "
            "WHERE account_id = ?",
            (account_id,),
        )
        if changed == 0:
            raise account_not_found()

    def record_task_completed(self, account_id: str) -> None:
        changed = self._database.execute(
            "UPDATE accounts SET tasks_completed_count = tasks_completed_count + 1 "
            "WHERE account_id = ?",
            (account_id,),
        )
        if changed == 0:
            raise account_not_found()

    def update_rating(self, account_id: str, rating: int) -> None:
        """Add one rating. The exact sum is stored; the mean is derived on read."""
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise validation_error("Rating must be an integer between 1 and 5")

        changed = self._database.execute(
            "UPDATE accounts SET "
            "rating_sum = rating_sum + ?, rating_count = rating_count + 1 "
            "WHERE account_id = ?",
            (rating, account_id),
        )
        if changed == 0:
            raise account_not_found()

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def count_accounts(self) -> int:
        row = self._database.fetch_one("SELECT COUNT(*) FROM accounts")
        return int(row[0]) if row is not None else 0

    def total_balance(self) -> int:
        """Sum of all account balances."""
        row = self._database.fetch_one("SELECT COALESCE(SUM(credit_balance), 0) FROM accounts")
        return int(row[0]) if row is not None else 0
