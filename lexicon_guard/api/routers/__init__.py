"""API routers."""

from . import health, migration

__all__ = ["health", "migration"]
