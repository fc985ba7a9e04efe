"""Shared API dependencies: settings, DB session, sync manager."""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from syncnite.config import Settings
from syncnite.services.sync_manager import SyncManager


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


def get_sync_manager(request: Request) -> SyncManager:
    """Get the sync manager from app state."""
    manager: SyncManager = request.app.state.sync_manager
    return manager


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Get a database session."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session
