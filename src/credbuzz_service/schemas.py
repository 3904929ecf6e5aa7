"""Pydantic request/response models for the API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from credbuzz_service.core.exceptions import validation_error

ModelT = TypeVar("ModelT", bound=BaseModel)

Complexity = Literal["general", "complex"]
Location = Literal["remote", "offline"]


def _clean_skills(skills: list[str]) -> list[str]:
    cleaned: list[str] = []
    for skill in skills:
        value = skill.strip()
        if value == "":
            msg = "skills must not be empty strings"
            raise ValueError(msg)
        if value.lower() not in {existing.lower() for existing in cleaned}:
            cleaned.append(value)
    return cleaned


class CreateTaskRequest(BaseModel):
    """Request body for POST /tasks."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)
    title: str = Field(min_length=1, max_length=100)
    description: str = Field(min_length=1, max_length=1000)
    category: str = Field(min_length=1, max_length=50)
    required_skills: list[str] = Field(default_factory=list, max_length=20)
    estimated_hours: int = Field(ge=1, strict=True)
    deadline: datetime
    credit_amount: int = Field(ge=1, strict=True)
    complexity: Complexity = "general"
    location: Location = "remote"

    @field_validator("required_skills")
    @classmethod
    def normalize_skills(cls, skills: list[str]) -> list[str]:
        return _clean_skills(skills)


class UpdateTaskRequest(BaseModel):
    """Request body for PUT /tasks/{task_id}. Only present fields change."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)
    title: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, min_length=1, max_length=1000)
    category: str | None = Field(default=None, min_length=1, max_length=50)
    required_skills: list[str] | None = Field(default=None, max_length=20)
    estimated_hours: int | None = Field(default=None, ge=1, strict=True)
    deadline: datetime | None = None
    complexity: Complexity | None = None
    location: Location | None = None

    @field_validator("required_skills")
    @classmethod
    def normalize_skills(cls, skills: list[str] | None) -> list[str] | None:
        if skills is None:
            return None
        return _clean_skills(skills)


class ApproveTaskRequest(BaseModel):
    """Request body for PUT /tasks/{task_id}/approve."""

    model_config = ConfigDict(extra="forbid")
    rating: int | None = Field(default=None, ge=1, le=5, strict=True)
    comment: str = Field(default="", max_length=1000)


class RejectTaskRequest(BaseModel):
    """Request body for PUT /tasks/{task_id}/reject."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)
    reason: str = Field(min_length=1, max_length=1000)


class RegisterAccountRequest(BaseModel):
    """Request body for POST /accounts."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)
    name: str = Field(min_length=1, max_length=100)
    email: str | None = Field(default=None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=254)
    bio: str = Field(default="", max_length=500)
    skills: list[str] = Field(default_factory=list, max_length=20)

    @field_validator("skills")
    @classmethod
    def normalize_skills(cls, skills: list[str]) -> list[str]:
        return _clean_skills(skills)


class UpdateProfileRequest(BaseModel):
    """Request body for PUT /accounts/me."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)
    name: str | None = Field(default=None, min_length=1, max_length=100)
    bio: str | None = Field(default=None, max_length=500)
    skills: list[str] | None = Field(default=None, max_length=20)

    @field_validator("skills")
    @classmethod
    def normalize_skills(cls, skills: list[str] | None) -> list[str] | None:
        if skills is None:
            return None
        return _clean_skills(skills)


class RequestOtpRequest(BaseModel):
    """Request body for POST /auth/request-otp."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=254)


class VerifyOtpRequest(BaseModel):
    """Request body for POST /auth/verify-otp."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", max_length=254)
    code: str = Field(pattern=r"^[0-9]+$", max_length=12)


class HealthResponse(BaseModel):
    """Response model for GET /health."""

    model_config = ConfigDict(extra="forbid")
    status: Literal["ok"]
    uptime_seconds: float
    started_at: str
    total_tasks: int
    tasks_by_status: dict[str, int]
    total_accounts: int
    credits_in_circulation: int
    credits_in_escrow: int


class ErrorResponse(BaseModel):
    """Standard error response model."""

    model_config = ConfigDict(extra="forbid")
    error: str
    message: str
    details: dict[str, object]


def parse_request(model: type[ModelT], data: dict[str, Any]) -> ModelT:
    """Validate a decoded JSON body, raising VALIDATION_ERROR with per-field detail."""
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        fields = {
            ".".join(str(part) for part in error["loc"]) or "body": error["msg"]
            for error in exc.errors()
        }
        first = next(iter(fields.items()))
        raise validation_error(f"Invalid field '{first[0]}': {first[1]}", {"fields": fields}) from exc
