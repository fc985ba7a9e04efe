"""SQLAlchemy ORM models for Syncnite."""

from syncnite.models.base import Base
from syncnite.models.sync_run import SyncRun, SyncRunStatus

__all__ = [
    "Base",
    "SyncRun",
    "SyncRunStatus",
]
