"""Short-lived, single-use one-time codes keyed by email address."""

from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, TypeVar

from credbuzz_service.core.exceptions import ServiceError

if TYPE_CHECKING:
    from collections.abc import Callable

    from credbuzz_service.services.database import Database

T = TypeVar("T")

MAX_ATTEMPTS = 5

_SCHEMA = """
CREATE TABLE IF NOT EXISTS otp_codes (
    email TEXT PRIMARY KEY,
    code_hash TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    attempts INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
"""


def _hash_code(email: str, code: str) -> str:
    return hashlib.sha256(f"{email}:{code}".encode()).hexdigest()


def _iso(moment: datetime) -> str:
    return moment.isoformat(timespec="microseconds").replace("+00:00", "Z")


def _invalid_otp() -> ServiceError:
    return ServiceError("INVALID_OTP", "Invalid or expired code", 400, {})


class OtpStore:
    """
    Issues and verifies numeric one-time codes.

    Only a hash of each code is stored. Issuing a new code for an email
    replaces the previous one; a code is deleted as soon as it is used,
    expires, or has been guessed wrong ``MAX_ATTEMPTS`` times.
    """

    def __init__(self, database: Database, ttl_seconds: int, code_length: int) -> None:
        if ttl_seconds <= 0 or code_length <= 0:
            msg = "ttl_seconds and code_length must be positive"
            raise ValueError(msg)
        self._database = database
        self._ttl = timedelta(seconds=ttl_seconds)
        self._code_length = code_length
        self._database.init_schema(_SCHEMA)

    def _new_code(self) -> str:
        return "".join(secrets.choice("0123456789") for _ in range(self._code_length))

    def issue(self, email: str) -> tuple[str, str]:
        """Create a fresh code for ``email`` and return it with its expiry time."""
        email = email.lower()
        code = self._new_code()
        now = datetime.now(UTC)
        expires_at = _iso(now + self._ttl)
        self._database.execute(
            "INSERT OR REPLACE INTO otp_codes (email, code_hash, expires_at, attempts, created_at) "
            "VALUES (?, ?, ?, 0, ?)",
            (email, _hash_code(email, code), expires_at, _iso(now)),
        )
        return code, expires_at

    def consume(
        self,
        email: str,
        code: str,
        on_accept: Callable[[str], T] | None = None,
    ) -> T | None:
        """
        Verify and burn a code.

        ``on_accept`` runs with the normalised email inside the transaction
        that deletes the code, so its writes commit or roll back together
        with the burn. Its return value is passed through.

        Raises:
            ServiceError: INVALID_OTP if there is no live code or it does not match.
        """
        email = email.lower()
        now = _iso(datetime.now(UTC))
        accepted = False
        result: T | None = None

        with self._database.transaction():
            row = self._database.fetch_one(
                "SELECT code_hash, expires_at, attempts FROM otp_codes WHERE email = ?",
                (email,),
            )
            if row is None:
                raise _invalid_otp()

            if row["expires_at"] <= now:
                self._database.execute("DELETE FROM otp_codes WHERE email = ?", (email,))
            elif hmac.compare_digest(row["code_hash"], _hash_code(email, code)):
                self._database.execute("DELETE FROM otp_codes WHERE email = ?", (email,))
                accepted = True
                if on_accept is not None:
                    result = on_accept(email)
            elif row["attempts"] + 1 >= MAX_ATTEMPTS:
                self._database.execute("DELETE FROM otp_codes WHERE email = ?", (email,))
            else:
                self._database.execute(
                    "UPDATE otp_codes SET attempts = attempts + 1 WHERE email = ?",
                    (email,),
                )

        if not accepted:
            raise _invalid_otp()
        return result

    def purge_expired(self) -> int:
        """Delete expired codes and return how many were removed."""
        return self._database.execute(
            "DELETE FROM otp_codes WHERE expires_at <= ?",
            (_iso(datetime.now(UTC)),),
        )
