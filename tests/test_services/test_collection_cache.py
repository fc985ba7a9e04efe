"""Tests for the snapshot-mtime driven collection cache."""

from __future__ import annotations

import asyncio
import os
from typing import TYPE_CHECKING

import pytest

from syncnite.exceptions import ValidationError
from syncnite.filesystem.atomic import atomic_write_json
from syncnite.filesystem.document_store import PLAYNITE_COLLECTIONS, DocumentStore
from syncnite.filesystem.snapshot_store import SnapshotStore
from syncnite.services.collection_cache import CollectionCache

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def documents(tmp_path: Path) -> DocumentStore:
    return DocumentStore(tmp_path / "db", PLAYNITE_COLLECTIONS)


@pytest.fixture
def snapshots(tmp_path: Path) -> SnapshotStore:
    return SnapshotStore(tmp_path / "snapshot" / "playnite.snapshot.json")


@pytest.fixture
def cache(documents: DocumentStore, snapshots: SnapshotStore) -> CollectionCache:
    return CollectionCache(documents, snapshots.mtime_ns)


class _GatedStore(DocumentStore):
    """Pauses every listing until ``release`` is set."""

    def __init__(self, root: Path) -> None:
        super().__init__(root, PLAYNITE_COLLECTIONS)
        self.listed = asyncio.Event()
        self.release = asyncio.Event()

    async def alist_ids(self, group: str) -> list[str]:
        ids = await super().alist_ids(group)
        self.listed.set()
        await self.release.wait()
        return ids


def _touch_snapshot(snapshots: SnapshotStore, bump_ns: int) -> None:
    atomic_write_json(snapshots.path, {"updatedAt": str(bump_ns)})
    stat = snapshots.path.stat()
    os.utime(snapshots.path, ns=(stat.st_atime_ns, stat.st_mtime_ns + bump_ns))


class TestCollectionCache:
    async def test_missing_group_directory_is_empty(self, cache: CollectionCache) -> None:
        assert await cache.list("games") == []

    async def test_unknown_group_rejected(self, cache: CollectionCache) -> None:
        with pytest.raises(ValidationError):
            await cache.list("nope")

    async def test_flattens_array_documents(
        self, cache: CollectionCache, documents: DocumentStore
    ) -> None:
        documents.upsert("tags", "a", {"Id": "a"})
        documents.upsert("tags", "batch", [{"Id": "b"}, {"Id": "c"}])

        rows = await cache.list("tags")

        assert sorted(row["Id"] for row in rows) == ["a", "b", "c"]

    async def test_same_mtime_returns_same_object(
        self, cache: CollectionCache, documents: DocumentStore, snapshots: SnapshotStore
    ) -> None:
        documents.upsert("games", "g1", {"Id": "g1"})
        _touch_snapshot(snapshots, 1_000)

        first = await cache.list("games")
        documents.write("games", "g2", {"Id": "g2"})
        second = await cache.list("games")

        assert second is first
        assert len(second) == 1

    async def test_snapshot_commit_triggers_reread(
        self, cache: CollectionCache, documents: DocumentStore, snapshots: SnapshotStore
    ) -> None:
        documents.upsert("games", "g1", {"Id": "g1"})
        _touch_snapshot(snapshots, 1_000)
        first = await cache.list("games")

        documents.write("games", "g2", {"Id": "g2"})
        _touch_snapshot(snapshots, 5_000_000)
        second = await cache.list("games")

        assert second is not first
        assert sorted(row["Id"] for row in second) == ["g1", "g2"]

    async def test_invalidate_forces_reread(
        self, cache: CollectionCache, documents: DocumentStore
    ) -> None:
        first = await cache.list("games")
        documents.write("games", "g1", {"Id": "g1"})

        cache.invalidate("games")

        assert await cache.list("games") == [{"Id": "g1"}]
        assert first == []

    async def test_unreadable_documents_are_skipped(
        self, cache: CollectionCache, documents: DocumentStore
    ) -> None:
        documents.upsert("games", "ok", {"Id": "ok"})
        documents.doc_path("games", "broken").write_text("{nope", encoding="utf-8")

        assert await cache.list("games") == [{"Id": "ok"}]

    async def test_invalidate_during_rebuild_discards_stale_rows(
        self, tmp_path: Path, snapshots: SnapshotStore
    ) -> None:
        store = _GatedStore(tmp_path / "db")
        cache = CollectionCache(store, snapshots.mtime_ns)
        store.upsert("games", "g1", {"Id": "g1"})

        rebuild = asyncio.create_task(cache.list("games"))
        await store.listed.wait()
        store.upsert("games", "g2", {"Id": "g2"})
        cache.invalidate("games")
        store.release.set()

        assert await rebuild == [{"Id": "g1"}]
        rows = await cache.list("games")
        assert sorted(row["Id"] for row in rows) == ["g1", "g2"]
