"""Review oracle interfaces and value types."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

REVIEW_UNAVAILABLE = "review unavailable"


class OracleUnavailable(Exception):
    """Raised when the oracle cannot produce an annotation."""


@dataclass
class SubmissionContext:
    """Inputs provided to the oracle for one submission."""

    task_title: str
    task_description: str
    required_skills: list[str]
    content: str
    filenames: list[str] = field(default_factory=list)


class ReviewOracle(ABC):
    """Abstract review contract."""

    @abstractmethod
    async def review(self, context: SubmissionContext) -> str:
        """Return a free-text quality annotation for the submission."""


class StaticReviewOracle(ReviewOracle):
    """Deterministic oracle for local/testing use."""

    def __init__(self, annotation: str) -> None:
        self._annotation = annotation

    async def review(self, _context: SubmissionContext) -> str:
        """Return a fixed annotation without external calls."""
        return self._annotation
