"""Sync run ledger: one row per reconciliation pass."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import select

from syncnite.models.sync_run import SyncRun, SyncRunStatus

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


def _now() -> datetime:
    return datetime.now(UTC)


async def start_run(session: AsyncSession, target: str, source: str | None = None) -> SyncRun:
    """Insert a ``running`` row and return it."""
    run = SyncRun(
        target=target,
        source=source,
        started_at=_now(),
        status=SyncRunStatus.RUNNING.value,
    )
    session.add(run)
    await session.commit()
    return run


async def finish_run(
    session: AsyncSession,
    run: SyncRun,
    *,
    status: SyncRunStatus,
    upserts: int = 0,
    deletes: int = 0,
    media_applied: int = 0,
    media_failed: int = 0,
    error: str | None = None,
) -> SyncRun:
    """Close a run with its final status and counters."""
    run.status = status.value
    run.finished_at = _now()
    run.upserts = upserts
    run.deletes = deletes
    run.media_applied = media_applied
    run.media_failed = media_failed
    run.error = error
    session.add(run)
    await session.commit()
    return run


async def record_locked(session: AsyncSession, target: str, source: str | None = None) -> SyncRun:
    """Record a pass rejected because another one held the guard."""
    now = _now()
    run = SyncRun(
        target=target,
        source=source,
        started_at=now,
        finished_at=now,
        status=SyncRunStatus.LOCKED.value,
    )
    session.add(run)
    await session.commit()
    return run


async def get_last_run(
    session: AsyncSession, target: str, *, include_locked: bool = False
) -> SyncRun | None:
    """Return the most recent run for ``target``.

    Rejected (locked) attempts are skipped unless ``include_locked`` is set,
    so status reflects the last pass that actually ran.
    """
    stmt = select(SyncRun).where(SyncRun.target == target)
    if not include_locked:
        stmt = stmt.where(SyncRun.status != SyncRunStatus.LOCKED.value)
    stmt = stmt.order_by(SyncRun.started_at.desc(), SyncRun.id.desc()).limit(1)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()
