"""Health check endpoints."""

from fastapi import APIRouter, Depends, HTTPException
from typing import Dict

from ..dependencies import get_guard
from lexicon_guard import MigrationGuard

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/ready")
async def readiness_probe(guard: MigrationGuard = Depends(get_guard)) -> Dict[str, str]:
    """Ready when the store may be opened without user action."""
    result = await guard.check_database_version()
    if not result.can_proceed:
        raise HTTPException(status_code=503, detail=result.message)
    return {"status": "ready", "database": result.status.value}


@router.get("/live")
async def liveness_probe() -> Dict[str, str]:
    """Kubernetes liveness probe."""
    return {"status": "alive"}
