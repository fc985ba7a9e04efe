"""Sync run ledger model."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from syncnite.models.base import Base


class SyncRunStatus(StrEnum):
    RUNNING = "running"
    OK = "ok"
    PARTIAL = "partial"
    ERROR = "error"
    LOCKED = "locked"


class SyncRun(Base):
    """One reconciliation pass against a sync target."""

    __tablename__ = "sync_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    target: Mapped[str] = mapped_column(String(32), nullable=False)
    source: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=SyncRunStatus.RUNNING.value
    )
    upserts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deletes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    media_applied: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    media_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (Index("idx_sync_runs_target_started", "target", "started_at"),)
