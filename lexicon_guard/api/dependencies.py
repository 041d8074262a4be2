"""Dependency injection for FastAPI."""

from fastapi import Request
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from lexicon_guard import MigrationGuard


async def get_guard(request: Request) -> "MigrationGuard":
    """Get MigrationGuard instance from app state."""
    return request.app.state.guard
