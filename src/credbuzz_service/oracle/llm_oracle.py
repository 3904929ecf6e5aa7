"""LiteLLM-backed review oracle."""

from __future__ import annotations

import asyncio
from typing import Any

import litellm

from credbuzz_service.oracle.base import OracleUnavailable, ReviewOracle, SubmissionContext
from credbuzz_service.oracle.prompts import REVIEW_TEMPLATE, SYSTEM_PROMPT


def _extract_content(response: Any) -> str:
    """Extract content from LiteLLM response object."""
    choices: Any
    if isinstance(response, dict):
        choices = response.get("choices")
    else:
        choices = getattr(response, "choices", None)
    if not isinstance(choices, list) or len(choices) == 0:
        raise ValueError("Missing choices in LLM response")

    first = choices[0]
    message: Any = (
        first.get("message") if isinstance(first, dict) else getattr(first, "message", None)
    )
    if message is None:
        raise ValueError("Missing message in LLM response")

    content: Any
    if isinstance(message, dict):
        content = message.get("content")
    else:
        content = getattr(message, "content", None)
    if not isinstance(content, str) or content.strip() == "":
        raise ValueError("Missing content in LLM response")

    return content.strip()


class LLMReviewOracle(ReviewOracle):
    """Review oracle backed by LiteLLM."""

    def __init__(self, model: str, temperature: float, timeout_seconds: float) -> None:
        self._model = model
        self._temperature = temperature
        self._timeout_seconds = timeout_seconds

    async def review(self, context: SubmissionContext) -> str:
        """Ask the model for a short assessment of the submission."""
        skills = ", ".join(context.required_skills) if context.required_skills else "none"
        filenames = "\n".join(context.filenames) if context.filenames else "none"
        prompt = REVIEW_TEMPLATE.format(
            task_title=context.task_title,
            required_skills=skills,
            task_description=context.task_description,
            content=context.content,
            filenames=filenames,
        )

        try:
            response = await asyncio.wait_for(
                litellm.acompletion(
                    model=self._model,
                    messages=[
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": prompt},
                    ],
                    temperature=self._temperature,
                ),
                timeout=self._timeout_seconds,
            )
            return _extract_content(response)
        except Exception as exc:
            raise OracleUnavailable(f"Review model {self._model} unavailable") from exc
