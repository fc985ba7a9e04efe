"""Liveness and readiness of the sync server."""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from syncnite.api.deps import get_session, get_settings, get_sync_manager
from syncnite.config import Settings
from syncnite.services.sync_manager import PLAYNITE_TARGET, PLEX_TARGET, SyncManager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    storage: str
    plex_configured: bool
    syncing: list[str]
    snapshots: dict[str, bool]


def _storage_status(settings: Settings) -> str:
    roots = (
        settings.playnite_db_root,
        settings.playnite_media_root,
        settings.plex_db_root,
        settings.plex_media_root,
        settings.snapshot_dir,
    )
    missing = [str(root) for root in roots if not root.is_dir()]
    if missing:
        logger.warning("Health check: missing data directories %s", missing)
        return "missing"
    return "ok"


@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    session: Annotated[AsyncSession, Depends(get_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    manager: Annotated[SyncManager, Depends(get_sync_manager)],
) -> HealthResponse:
    """Report database, storage and sync state; ``degraded`` if either check fails."""
    db_status = "ok"
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.warning("Health check database query failed", exc_info=True)
        db_status = "error"

    storage = await asyncio.to_thread(_storage_status, settings)
    snapshots = {
        PLAYNITE_TARGET: await asyncio.to_thread(manager.playnite_snapshots.path.is_file),
        PLEX_TARGET: await asyncio.to_thread(manager.plex_snapshots.path.is_file),
    }

    return HealthResponse(
        status="ok" if db_status == "ok" and storage == "ok" else "degraded",
        version="0.1.0",
        database=db_status,
        storage=storage,
        plex_configured=settings.plex_configured,
        syncing=sorted(manager.guard.held_keys),
        snapshots=snapshots,
    )
