"""Playnite push-sync endpoints: delta, entity upsert/delete, collections, media."""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Request, Response
from fastapi.responses import FileResponse, JSONResponse

from syncnite.api.deps import get_settings, get_sync_manager
from syncnite.config import Settings
from syncnite.filesystem.document_store import UpsertStatus
from syncnite.filesystem.media_store import PutStatus
from syncnite.schemas.playnite import (
    DeltaRequest,
    DeltaResponse,
    InstalledAck,
    MediaDelta,
    MediaPutResponse,
    SnapshotAck,
    UpsertResponse,
)
from syncnite.services.push_delta_service import ClientManifest
from syncnite.services.sync_manager import SyncManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/playnite", tags=["playnite"])

_UPSERT_STATUS_CODES = {UpsertStatus.CREATED: 201, UpsertStatus.UPDATED: 200}
_PUT_STATUS_CODES = {PutStatus.CREATED: 201, PutStatus.UPDATED: 200}


@router.post("/delta", response_model=DeltaResponse)
async def compute_delta(
    body: DeltaRequest,
    manager: Annotated[SyncManager, Depends(get_sync_manager)],
) -> DeltaResponse:
    """Compare the client inventory with the server's documents."""
    manifest = ClientManifest(
        json=body.json_ids,
        versions={
            group: {k: v for k, v in versions.items() if v is not None}
            for group, versions in body.versions.items()
        },
        media_folders=body.media_folders,
    )
    result = await manager.compute_push_delta(manifest)
    return DeltaResponse(
        to_upsert=result.to_upsert,
        to_delete=result.to_delete,
        media=MediaDelta(upload_folders=result.upload_folders),
    )


@router.post("/snapshot", response_model=SnapshotAck)
async def push_snapshot(
    payload: Annotated[Any, Body()],
    manager: Annotated[SyncManager, Depends(get_sync_manager)],
) -> SnapshotAck:
    """Store the extension's library snapshot; refreshes cached collections."""
    record = await manager.record_client_snapshot(payload)
    return SnapshotAck(updated_at=record["updatedAt"], server_updated_at=record["serverUpdatedAt"])


@router.post("/installed", response_model=InstalledAck)
async def push_installed(
    payload: Annotated[Any, Body()],
    manager: Annotated[SyncManager, Depends(get_sync_manager)],
) -> InstalledAck:
    """Replace the list of game ids installed on the Playnite host."""
    record = await manager.record_installed(payload)
    return InstalledAck(count=len(record["installed"]), updated_at=record["updatedAt"])


@router.get("/collection/{collection}")
async def list_collection(
    collection: str,
    manager: Annotated[SyncManager, Depends(get_sync_manager)],
) -> JSONResponse:
    rows = await manager.list_playnite(collection)
    return JSONResponse(content=rows)


# Media routes come before /{collection}/{id} so that /media/<x> is not an entity.


@router.put("/media/{path:path}", response_model=MediaPutResponse)
async def put_media(
    path: str,
    request: Request,
    manager: Annotated[SyncManager, Depends(get_sync_manager)],
    settings: Annotated[Settings, Depends(get_settings)],
    x_content_hash: Annotated[str | None, Header()] = None,
) -> Response:
    """Store a media file; 204 when the stored copy already matches."""
    data = await request.body()
    if len(data) > settings.max_media_upload_bytes:
        raise HTTPException(status_code=413, detail="Media file too large")
    result = await manager.put_playnite_media(path, data, x_content_hash)
    if result.status == PutStatus.UNCHANGED:
        return Response(status_code=204)
    body = MediaPutResponse(status=result.status.value, bytes=result.bytes)
    return JSONResponse(status_code=_PUT_STATUS_CODES[result.status], content=body.model_dump())


@router.get("/media/{path:path}")
async def get_media(
    path: str,
    manager: Annotated[SyncManager, Depends(get_sync_manager)],
) -> FileResponse:
    full_path = await manager.playnite_media_path(path)
    return FileResponse(full_path)


@router.put("/{collection}/{entity_id}", response_model=UpsertResponse)
async def upsert_entity(
    collection: str,
    entity_id: str,
    document: Annotated[Any, Body()],
    manager: Annotated[SyncManager, Depends(get_sync_manager)],
) -> Response:
    """Create or replace one entity document: 201 created, 200 updated, 204 unchanged."""
    result = await manager.upsert_entity(collection, entity_id, document)
    if result.status == UpsertStatus.UNCHANGED:
        return Response(status_code=204)
    body = UpsertResponse(status=result.status.value, collection=result.group, id=result.entity_id)
    return JSONResponse(
        status_code=_UPSERT_STATUS_CODES[result.status], content=body.model_dump()
    )


@router.delete("/{collection}/{entity_id}", status_code=204)
async def delete_entity(
    collection: str,
    entity_id: str,
    manager: Annotated[SyncManager, Depends(get_sync_manager)],
) -> Response:
    """Delete one entity document. Deleting a missing id also returns 204."""
    await manager.delete_entity(collection, entity_id)
    return Response(status_code=204)
