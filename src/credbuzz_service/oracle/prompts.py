"""Prompt templates for LLM-based submission review."""

from __future__ import annotations

SYSTEM_PROMPT = """You review work submitted for small freelance tasks on a credit marketplace.
Judge only whether the submission addresses the task as described.
Answer in at most three sentences of plain text. Do not use markdown."""

REVIEW_TEMPLATE = """Task Title: {task_title}
Required Skills: {required_skills}

=== DESCRIPTION ===
{task_description}

=== SUBMISSION ===
{content}

=== ATTACHED FILES ===
{filenames}

Give a short assessment of how well the submission fulfils the task."""
