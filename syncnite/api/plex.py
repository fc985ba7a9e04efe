"""Plex pull-sync endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse, JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from syncnite.api.deps import get_session, get_sync_manager
from syncnite.schemas.plex import (
    ApplyErrorInfo,
    PlexStatusResponse,
    PlexSyncResponse,
    SectionSummary,
    SnapshotSummary,
    SyncRunInfo,
)
from syncnite.services.sync_manager import PLEX_TARGET, SyncManager
from syncnite.services.sync_run_service import get_last_run

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/plex", tags=["plex"])


@router.post("/sync", response_model=PlexSyncResponse)
async def sync_plex(
    manager: Annotated[SyncManager, Depends(get_sync_manager)],
) -> PlexSyncResponse:
    """Run one pull reconciliation. 423 while another one is running."""
    result = await manager.sync_plex()
    delta = result.delta
    outcome = result.outcome
    return PlexSyncResponse(
        ok=not outcome.errors,
        items_scanned=result.items_scanned,
        sections=result.sections,
        upserts=len(delta.db_upserts),
        deletes=len(delta.db_deletes),
        media_upserts=len(delta.media_upserts),
        media_deletes=len(delta.media_deletes),
        applied=outcome.applied,
        skipped=outcome.skipped,
        failed=outcome.failed,
        errors=[
            ApplyErrorInfo(key=e.key, message=e.message, kind=e.kind, url=e.url)
            for e in outcome.errors
        ],
        snapshot_updated_at=result.snapshot.updated_at,
    )


@router.get("/status", response_model=PlexStatusResponse)
async def plex_status(
    manager: Annotated[SyncManager, Depends(get_sync_manager)],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> PlexStatusResponse:
    last_run = await get_last_run(session, PLEX_TARGET)
    snapshot = await manager.plex_snapshots.load()
    summary = None
    if snapshot is not None:
        summary = SnapshotSummary(
            updated_at=snapshot.updated_at,
            server_url=snapshot.server_url,
            entities=len(snapshot.db_versions),
            media=len(snapshot.media_versions),
            sections={
                group: SectionSummary(
                    title=info.title, type=info.type, tick=info.tick, count=info.count
                )
                for group, info in snapshot.sections.items()
            },
        )
    return PlexStatusResponse(
        configured=manager.settings.plex_configured,
        syncing=manager.is_syncing(PLEX_TARGET),
        last_run=SyncRunInfo.model_validate(last_run) if last_run is not None else None,
        snapshot=summary,
    )


@router.get("/collection/{group}")
async def list_collection(
    group: str,
    manager: Annotated[SyncManager, Depends(get_sync_manager)],
) -> JSONResponse:
    rows = await manager.list_plex(group)
    return JSONResponse(content=rows)


@router.get("/media/{path:path}")
async def get_media(
    path: str,
    manager: Annotated[SyncManager, Depends(get_sync_manager)],
) -> FileResponse:
    full_path = await manager.plex_media_path(path)
    return FileResponse(full_path)
