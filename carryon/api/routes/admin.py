"""
Admin / observability endpoints
===============================

GET /api/v1/admin/health -- database round-trip plus open socket count
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from carryon.api.dependencies import get_db, get_hub
from carryon.api.schemas import HealthResponse
from carryon.realtime.hub import RealtimeHub

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(
    db: AsyncSession = Depends(get_db),
    hub: RealtimeHub = Depends(get_hub),
):
    await db.execute(text("SELECT 1"))
    return HealthResponse(connections=hub.connection_count)
