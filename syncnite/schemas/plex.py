"""Plex pull-sync schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ApplyErrorInfo(BaseModel):
    """A single failed apply operation, retried on the next pass."""

    key: str
    message: str
    kind: str | None = None
    url: str | None = None


class PlexSyncResponse(BaseModel):
    """Outcome of one pull reconciliation."""

    ok: bool
    items_scanned: int
    sections: int
    upserts: int
    deletes: int
    media_upserts: int
    media_deletes: int
    applied: int
    skipped: int
    failed: int
    errors: list[ApplyErrorInfo] = Field(default_factory=list)
    snapshot_updated_at: str


class SyncRunInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    target: str
    source: str | None = None
    started_at: datetime
    finished_at: datetime | None = None
    status: str
    upserts: int
    deletes: int
    media_applied: int
    media_failed: int
    error: str | None = None


class SectionSummary(BaseModel):
    title: str
    type: str | None = None
    tick: int
    count: int


class SnapshotSummary(BaseModel):
    updated_at: str
    server_url: str
    entities: int
    media: int
    sections: dict[str, SectionSummary] = Field(default_factory=dict)


class PlexStatusResponse(BaseModel):
    """Configuration, lock state, last ledger run and last committed snapshot."""

    configured: bool
    syncing: bool
    last_run: SyncRunInfo | None = None
    snapshot: SnapshotSummary | None = None
