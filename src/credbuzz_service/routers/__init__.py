"""API routers."""

from credbuzz_service.routers import accounts, auth, health, tasks

__all__ = ["accounts", "auth", "health", "tasks"]
