"""Shared test fixtures for Syncnite."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from syncnite.config import Settings
from syncnite.exceptions import RemoteError
from syncnite.main import create_app, ensure_data_dirs
from syncnite.models.base import Base
from syncnite.remote.base import RemoteAsset, RemotePage, RemoteSection
from syncnite.services.sync_manager import SyncManager

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable
    from pathlib import Path

    from syncnite.remote.base import RemoteLibrary

TEST_SERVER_URL = "http://plex.test:32400"


class FakeRemoteLibrary:
    """In-memory ``RemoteLibrary`` with switchable failures."""

    source = "plex"

    def __init__(self, server_url: str = TEST_SERVER_URL) -> None:
        self.server_url = server_url
        self.sections: list[RemoteSection] = []
        self.items: dict[str, list[dict[str, Any]]] = {}
        self.assets: dict[str, RemoteAsset] = {}
        self.fail_sections = False
        self.fail_pages: set[tuple[str, int]] = set()
        self.fail_downloads: set[str] = set()
        self.page_requests: list[tuple[str, int, int]] = []
        self.downloads: list[str] = []
        self.active_downloads = 0
        self.max_active_downloads = 0
        self.download_delay = 0.0
        self.closed = False

    def add_section(self, key: str, title: str = "Movies", section_type: str = "movie") -> None:
        self.sections.append(RemoteSection(key=key, title=title, type=section_type))
        self.items.setdefault(key, [])

    def add_item(
        self,
        section_key: str,
        rating_key: str,
        updated_at: int | None,
        *,
        media: dict[str, int] | None = None,
        content_type: str = "image/jpeg",
        **fields: Any,
    ) -> dict[str, Any]:
        """Add an item; ``media`` maps kind to the version in its path."""
        item: dict[str, Any] = {"ratingKey": rating_key, "title": f"Item {rating_key}", **fields}
        if updated_at is not None:
            item["updatedAt"] = updated_at
        for kind, version in (media or {}).items():
            path = f"/library/metadata/{rating_key}/{kind}/{version}"
            if kind == "logo":
                item.setdefault("Image", []).append({"type": "clearLogo", "url": path})
            else:
                item[kind] = path
            self.assets[path] = RemoteAsset(
                content_type=content_type, content=f"{rating_key}:{kind}:{version}".encode()
            )
        self.items[section_key].append(item)
        return item

    def remove_item(self, section_key: str, rating_key: str) -> None:
        self.items[section_key] = [
            item for item in self.items[section_key] if item["ratingKey"] != rating_key
        ]

    async def list_sections(self) -> list[RemoteSection]:
        if self.fail_sections:
            raise RemoteError("sections unavailable")
        return list(self.sections)

    async def list_items(self, section_key: str, start: int, size: int) -> RemotePage:
        self.page_requests.append((section_key, start, size))
        if (section_key, start) in self.fail_pages:
            raise RemoteError(f"page {start} of {section_key} unavailable")
        items = self.items.get(section_key, [])
        return RemotePage(items=items[start : start + size], total_count=len(items))

    async def download(self, path: str) -> RemoteAsset:
        self.active_downloads += 1
        self.max_active_downloads = max(self.max_active_downloads, self.active_downloads)
        try:
            await asyncio.sleep(self.download_delay)
            self.downloads.append(path)
            if path in self.fail_downloads:
                raise RemoteError(f"http_500 for {path}")
            return self.assets[path]
        finally:
            self.active_downloads -= 1

    async def aclose(self) -> None:
        self.closed = True


@asynccontextmanager
async def create_test_client(
    settings: Settings,
    remote_factory: Callable[[], RemoteLibrary] | None = None,
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with a fully initialized app.

    Manually performs the work of the application lifespan because
    ASGITransport does not trigger it. The app is exposed as ``client.app``.
    """
    from syncnite.database import create_engine as create_db_engine

    app = create_app(settings)
    settings.validate_runtime()

    engine, session_factory = create_db_engine(settings)
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.settings = settings

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    ensure_data_dirs(settings)
    app.state.sync_manager = SyncManager(settings, session_factory, remote_factory)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        ac.app = app
        yield ac

    await engine.dispose()


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Create a temporary data directory."""
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def test_settings(data_dir: Path, tmp_path: Path) -> Settings:
    """Create test settings with temporary paths."""
    db_path = tmp_path / "test.db"
    return Settings(
        debug=True,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        data_dir=data_dir,
        plex_server_url=TEST_SERVER_URL,
        plex_token="test-token",
        plex_page_size=2,
        media_download_concurrency=2,
    )


@pytest.fixture
def fake_remote() -> FakeRemoteLibrary:
    return FakeRemoteLibrary()


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with the ledger schema."""
    engine = create_async_engine(
        test_settings.database_url,
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session
