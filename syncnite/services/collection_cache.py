"""Read-through cache of flattened collection contents.

Coherence is driven purely by the snapshot file's modification time: an entry
is reused while the snapshot mtime it was built against is unchanged. Entity
writes that happen without a snapshot commit are not guaranteed to be visible
until the next snapshot-bearing event; callers needing read-after-write must
call ``invalidate`` or bypass the cache.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from syncnite.filesystem.atomic import read_json_if_exists

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from syncnite.filesystem.document_store import DocumentStore

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    rows: list[Any]
    snapshot_mtime_ns: int | None


def _read_rows(path: Path) -> list[Any]:
    try:
        document = read_json_if_exists(path)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.warning("Skipping unreadable document %s: %s", path, exc)
        return []
    if document is None:
        return []
    return document if isinstance(document, list) else [document]


class CollectionCache:
    """Cache of ``DocumentStore`` groups keyed by group name."""

    def __init__(self, store: DocumentStore, snapshot_mtime: Callable[[], int | None]) -> None:
        self._store = store
        self._snapshot_mtime = snapshot_mtime
        self._entries: dict[str, CacheEntry] = {}
        self._generations: dict[str, int] = {}
        self._epoch = 0
        self._lock = asyncio.Lock()

    async def list(self, raw_group: str) -> list[Any]:
        """Return every row of a group, rebuilding from disk if the snapshot moved."""
        group = self._store.validate_group(raw_group)
        mtime = await asyncio.to_thread(self._snapshot_mtime)

        entry = self._entries.get(group)
        if entry is not None and entry.snapshot_mtime_ns == mtime:
            return entry.rows

        async with self._lock:
            entry = self._entries.get(group)
            if entry is not None and entry.snapshot_mtime_ns == mtime:
                return entry.rows
            started = self._generation(group)
            rows = await self._load_group(group)
            # An invalidate during the load means these rows may predate a write.
            if self._generation(group) == started:
                self._entries[group] = CacheEntry(rows=rows, snapshot_mtime_ns=mtime)
                logger.debug("Collection cache rebuilt for %s: %d rows", group, len(rows))
            return rows

    def invalidate(self, group: str | None = None) -> None:
        if group is None:
            self._epoch += 1
            self._entries.clear()
        else:
            self._generations[group] = self._generations.get(group, 0) + 1
            self._entries.pop(group, None)

    def _generation(self, group: str) -> tuple[int, int]:
        return self._epoch, self._generations.get(group, 0)

    async def _load_group(self, group: str) -> list[Any]:
        ids = await self._store.alist_ids(group)
        paths = [self._store.doc_path(group, entity_id) for entity_id in ids]
        chunks = await asyncio.gather(*(asyncio.to_thread(_read_rows, p) for p in paths))
        rows: list[Any] = []
        for chunk in chunks:
            rows.extend(chunk)
        return rows
