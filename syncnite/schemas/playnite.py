"""Playnite push-sync schemas.

Field aliases follow the wire format of the Playnite extension.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class DeltaRequest(BaseModel):
    """Client inventory: ids per collection, per-id versions, media folder counts."""

    model_config = ConfigDict(populate_by_name=True)

    json_ids: dict[str, list[str]] = Field(default_factory=dict, alias="json")
    versions: dict[str, dict[str, str | None]] = Field(default_factory=dict)
    media_folders: dict[str, int] = Field(default_factory=dict, alias="mediaFolders")


class MediaDelta(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    upload_folders: list[str] = Field(default_factory=list, alias="uploadFolders")


class DeltaResponse(BaseModel):
    """What the client should upload and what the server holds that it dropped."""

    model_config = ConfigDict(populate_by_name=True)

    to_upsert: dict[str, list[str]] = Field(default_factory=dict, alias="toUpsert")
    to_delete: dict[str, list[str]] = Field(default_factory=dict, alias="toDelete")
    media: MediaDelta = Field(default_factory=MediaDelta)


class UpsertResponse(BaseModel):
    status: str
    collection: str
    id: str


class MediaPutResponse(BaseModel):
    status: str
    bytes: int


class SnapshotAck(BaseModel):
    ok: bool = True
    updated_at: str
    server_updated_at: str


class InstalledAck(BaseModel):
    ok: bool = True
    count: int
    updated_at: str
