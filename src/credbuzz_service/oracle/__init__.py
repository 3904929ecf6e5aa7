"""Submission review oracles."""

from credbuzz_service.oracle.base import (
    REVIEW_UNAVAILABLE,
    OracleUnavailable,
    ReviewOracle,
    StaticReviewOracle,
    SubmissionContext,
)
from credbuzz_service.oracle.llm_oracle import LLMReviewOracle

__all__ = [
    "REVIEW_UNAVAILABLE",
    "LLMReviewOracle",
    "OracleUnavailable",
    "ReviewOracle",
    "StaticReviewOracle",
    "SubmissionContext",
]
