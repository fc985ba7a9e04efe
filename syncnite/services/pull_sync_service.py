"""Pull delta sync: scan a remote library, diff against the last snapshot, apply.

A pass runs in four stages:

1. **Scan** every section page by page and record a version stamp per entity
   (``DbVersions``) and per media reference (``MediaVersions``). A scan that
   fails part-way raises ``ScanIncompleteError`` before anything is diffed, so
   a truncated listing can never turn into mass deletions.
2. **Diff** the new stamps against the previous snapshot.
3. **Apply** upserts and cascade deletes to documents, then download changed
   media with a bounded number of concurrent workers. Per-item failures are
   recorded in an ``ApplyOutcome`` and never abort the pass.
4. **Commit** the new snapshot atomically, with failed keys rolled back to
   their previous stamp so the next pass retries them.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from syncnite.exceptions import (
    RemoteError,
    ScanIncompleteError,
    TransientIOError,
    ValidationError,
)
from syncnite.filesystem.document_store import is_valid_id
from syncnite.filesystem.snapshot_store import (
    SectionInfo,
    Snapshot,
    db_key,
    media_key,
    split_key,
)

if TYPE_CHECKING:
    from syncnite.filesystem.document_store import DocumentStore
    from syncnite.filesystem.media_store import MediaStore
    from syncnite.filesystem.snapshot_store import SnapshotStore
    from syncnite.remote.base import RemoteLibrary, RemoteSection

logger = logging.getLogger(__name__)

MEDIA_KINDS = ("thumb", "art", "banner")
LOGO_KIND = "logo"
_TRAILING_NUMBER_RE = re.compile(r"/(\d+)/?$")


def section_group(section_key: str) -> str:
    return f"section-{section_key}".lower()


def item_tick(item: dict[str, Any]) -> int:
    """Last-modified tick of a remote item: ``updatedAt``, else ``addedAt``, else 0."""
    for field_name in ("updatedAt", "addedAt"):
        value = item.get(field_name)
        try:
            if value is not None:
                return int(value)
        except (TypeError, ValueError):
            continue
    return 0


def media_version(path: str, fallback: int) -> int:
    """Version encoded in the trailing numeric path segment, e.g. ``.../thumb/1700000000``."""
    match = _TRAILING_NUMBER_RE.search(path)
    return int(match.group(1)) if match else fallback


def media_refs(item: dict[str, Any]) -> dict[str, str]:
    """Server-relative media paths of an item, keyed by kind."""
    refs: dict[str, str] = {}
    for kind in MEDIA_KINDS:
        value = item.get(kind)
        if isinstance(value, str) and value.startswith("/"):
            refs[kind] = value
    images = item.get("Image")
    for image in images if isinstance(images, list) else []:
        if not isinstance(image, dict) or image.get("type") != "clearLogo":
            continue
        url = image.get("url")
        if isinstance(url, str) and url.startswith("/"):
            refs[LOGO_KIND] = url
            break
    return refs


@dataclass
class ScannedItem:
    """An item from the scan, kept in memory until the apply phase."""

    group: str
    entity_id: str
    tick: int
    payload: dict[str, Any]
    media: dict[str, str] = field(default_factory=dict)


@dataclass
class ScanResult:
    snapshot: Snapshot
    items: dict[str, ScannedItem]


@dataclass
class SnapshotDelta:
    """Keys to apply, derived purely from version stamps."""

    db_upserts: list[str] = field(default_factory=list)
    db_deletes: list[str] = field(default_factory=list)
    media_upserts: list[str] = field(default_factory=list)
    media_deletes: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.db_upserts or self.db_deletes or self.media_upserts or self.media_deletes)


def _diff_versions(old: dict[str, int], new: dict[str, int]) -> tuple[list[str], list[str]]:
    upserts = sorted(key for key, version in new.items() if old.get(key) != version)
    deletes = sorted(key for key in old if key not in new)
    return upserts, deletes


def compute_snapshot_delta(old: Snapshot | None, new: Snapshot) -> SnapshotDelta:
    """Diff two snapshots.

    Upserts are keys that are new or whose version changed; deletes are keys
    absent from the new snapshot. Without a previous snapshot everything in
    ``new`` is an upsert.
    """
    old_db = old.db_versions if old is not None else {}
    old_media = old.media_versions if old is not None else {}
    db_upserts, db_deletes = _diff_versions(old_db, new.db_versions)
    media_upserts, media_deletes = _diff_versions(old_media, new.media_versions)
    return SnapshotDelta(
        db_upserts=db_upserts,
        db_deletes=db_deletes,
        media_upserts=media_upserts,
        media_deletes=media_deletes,
    )


@dataclass
class ApplyError:
    """One failed apply operation, with enough context to retry it."""

    key: str
    message: str
    kind: str | None = None
    url: str | None = None


@dataclass
class ApplyOutcome:
    """Aggregate result of the apply phase."""

    applied: int = 0
    skipped: int = 0
    errors: list[ApplyError] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.errors)

    @property
    def failed_keys(self) -> set[str]:
        return {error.key for error in self.errors}


@dataclass
class PullSyncResult:
    snapshot: Snapshot
    delta: SnapshotDelta
    outcome: ApplyOutcome
    items_scanned: int
    sections: int = 0
    media_applied: int = 0
    media_failed: int = 0


def _rolled_back(
    new: dict[str, int], old: dict[str, int], failed_keys: set[str]
) -> dict[str, int]:
    """Restore the previous stamp of every failed key (or drop it when it was new)."""
    versions = dict(new)
    for key in failed_keys:
        if key in old:
            versions[key] = old[key]
        else:
            versions.pop(key, None)
    return versions


class PullDeltaReconciler:
    """Converges a local document/media store onto a remote library."""

    def __init__(
        self,
        remote: RemoteLibrary,
        documents: DocumentStore,
        media: MediaStore,
        snapshots: SnapshotStore,
        *,
        page_size: int = 200,
        concurrency: int = 4,
    ) -> None:
        if page_size < 1:
            msg = f"page_size must be >= 1, got {page_size}"
            raise ValueError(msg)
        if concurrency < 1:
            msg = f"concurrency must be >= 1, got {concurrency}"
            raise ValueError(msg)
        self._remote = remote
        self._documents = documents
        self._media = media
        self._snapshots = snapshots
        self._page_size = page_size
        self._concurrency = concurrency

    # ── Scan ─────────────────────────────────────────────

    async def _scan_section(
        self,
        section: RemoteSection,
        group: str,
        items: dict[str, ScannedItem],
        snapshot: Snapshot,
    ) -> None:
        start = 0
        count = 0
        section_tick = 0
        while True:
            try:
                page = await self._remote.list_items(section.key, start, self._page_size)
            except RemoteError as exc:
                raise ScanIncompleteError(
                    f"Scan of section {section.title!r} stopped at offset {start}: {exc}"
                ) from exc

            for item in page.items:
                entity_id = str(item.get("ratingKey") or "").strip()
                if not is_valid_id(entity_id):
                    logger.debug("Skipping item without usable id in %s", group)
                    continue
                tick = item_tick(item)
                refs = media_refs(item)
                key = db_key(group, entity_id)
                if key not in items:
                    count += 1
                items[key] = ScannedItem(group, entity_id, tick, item, refs)
                snapshot.db_versions[key] = tick
                for kind, path in refs.items():
                    snapshot.media_versions[media_key(group, entity_id, kind)] = media_version(
                        path, tick
                    )
                section_tick = max(section_tick, tick)

            start += len(page.items)
            if len(page.items) < self._page_size:
                break
            if page.total_count is not None and start >= page.total_count:
                break

        snapshot.sections[group] = SectionInfo(
            title=section.title, type=section.type, tick=section_tick, count=count
        )
        snapshot.db_ticks = max(snapshot.db_ticks, section_tick)
        logger.info("Scanned section %s (%s): %d items", section.title, group, count)

    async def scan(self) -> ScanResult:
        """Scan every section end to end.

        Raises ScanIncompleteError if any listing request fails, so callers
        never see a partial scan.
        """
        try:
            sections = await self._remote.list_sections()
        except RemoteError as exc:
            raise ScanIncompleteError(f"Failed to list sections: {exc}") from exc

        snapshot = Snapshot(
            updated_at=datetime.now(UTC).isoformat(),
            source=f"{self._remote.source}-sync",
            server_url=self._remote.server_url,
        )
        items: dict[str, ScannedItem] = {}
        for section in sections:
            try:
                group = self._documents.validate_group(section_group(section.key))
            except ValidationError:
                logger.warning("Skipping section with unusable key %r", section.key)
                continue
            await self._scan_section(section, group, items, snapshot)
        return ScanResult(snapshot=snapshot, items=items)

    # ── Apply ────────────────────────────────────────────

    def _cascade_delete(self, group: str, entity_id: str) -> None:
        self._documents.delete(group, entity_id)
        self._media.remove_tree(self._media.entity_dir(group, entity_id))

    async def _apply_entities(
        self, delta: SnapshotDelta, scan: ScanResult, outcome: ApplyOutcome
    ) -> set[tuple[str, str]]:
        groups = sorted({scan.items[key].group for key in delta.db_upserts})
        for group in groups:
            await asyncio.to_thread(self._documents.ensure_group_dir, group)

        for key in delta.db_upserts:
            item = scan.items[key]
            try:
                await asyncio.to_thread(
                    self._documents.write, item.group, item.entity_id, item.payload
                )
            except OSError as exc:
                logger.warning("Failed to write %s: %s", key, exc)
                outcome.errors.append(ApplyError(key=key, message=str(exc)))
                continue
            outcome.applied += 1

        deleted: set[tuple[str, str]] = set()
        for key in delta.db_deletes:
            parts = split_key(key)
            if len(parts) != 2:
                logger.warning("Ignoring malformed snapshot key %r", key)
                outcome.skipped += 1
                continue
            group, entity_id = parts
            try:
                await asyncio.to_thread(self._cascade_delete, group, entity_id)
            except (OSError, ValidationError) as exc:
                logger.warning("Failed to delete %s: %s", key, exc)
                outcome.errors.append(ApplyError(key=key, message=str(exc)))
                continue
            deleted.add((group, entity_id))
            outcome.applied += 1
        return deleted

    async def _download_one(
        self, key: str, item: ScannedItem, kind: str, semaphore: asyncio.Semaphore
    ) -> ApplyError | None:
        path = item.media[kind]
        async with semaphore:
            try:
                asset = await self._remote.download(path)
                directory = self._media.entity_dir(item.group, item.entity_id)
                await asyncio.to_thread(
                    self._media.replace_kind, directory, kind, asset.content, asset.content_type
                )
            except (RemoteError, TransientIOError, ValidationError) as exc:
                logger.warning(
                    "Media download failed for %s/%s (%s) from %s: %s",
                    item.group,
                    item.entity_id,
                    kind,
                    path,
                    exc,
                )
                return ApplyError(key=key, message=str(exc), kind=kind, url=path)
        return None

    async def _apply_media(
        self,
        delta: SnapshotDelta,
        scan: ScanResult,
        deleted: set[tuple[str, str]],
        outcome: ApplyOutcome,
    ) -> tuple[int, int]:
        semaphore = asyncio.Semaphore(self._concurrency)
        jobs = []
        for key in delta.media_upserts:
            group, entity_id, kind = split_key(key)
            item = scan.items[db_key(group, entity_id)]
            jobs.append(self._download_one(key, item, kind, semaphore))
        results = await asyncio.gather(*jobs)
        failures = [error for error in results if error is not None]
        outcome.errors.extend(failures)
        downloaded = len(results) - len(failures)
        outcome.applied += downloaded

        for key in delta.media_deletes:
            parts = split_key(key)
            if len(parts) != 3:
                logger.warning("Ignoring malformed snapshot key %r", key)
                outcome.skipped += 1
                continue
            group, entity_id, kind = parts
            if (group, entity_id) in deleted:
                # Already removed with the entity's media folder.
                outcome.skipped += 1
                continue
            try:
                directory = self._media.entity_dir(group, entity_id)
                await asyncio.to_thread(self._media.remove_kind, directory, kind)
            except (OSError, ValidationError) as exc:
                logger.warning("Failed to remove media %s: %s", key, exc)
                outcome.errors.append(ApplyError(key=key, message=str(exc), kind=kind))
                continue
            outcome.applied += 1
        return downloaded, len(failures)

    # ── Pass ─────────────────────────────────────────────

    async def run(self) -> PullSyncResult:
        """Run one full reconciliation pass."""
        logger.info("Pull sync started: %s", self._remote.server_url)
        old = await self._snapshots.load()
        scan = await self.scan()
        new = scan.snapshot
        delta = compute_snapshot_delta(old, new)
        logger.info(
            "Pull delta: %d upserts, %d deletes, %d media changed, %d media removed",
            len(delta.db_upserts),
            len(delta.db_deletes),
            len(delta.media_upserts),
            len(delta.media_deletes),
        )

        outcome = ApplyOutcome()
        deleted = await self._apply_entities(delta, scan, outcome)
        media_applied, media_failed = await self._apply_media(delta, scan, deleted, outcome)

        failed_keys = outcome.failed_keys
        committed = new
        if failed_keys:
            committed = Snapshot(
                updated_at=new.updated_at,
                source=new.source,
                server_url=new.server_url,
                db_ticks=new.db_ticks,
                sections=new.sections,
                db_versions=_rolled_back(
                    new.db_versions, old.db_versions if old else {}, failed_keys
                ),
                media_versions=_rolled_back(
                    new.media_versions, old.media_versions if old else {}, failed_keys
                ),
            )
        await self._snapshots.commit(committed)

        logger.info(
            "Pull sync finished: %d applied, %d skipped, %d failed",
            outcome.applied,
            outcome.skipped,
            outcome.failed,
        )
        return PullSyncResult(
            snapshot=committed,
            delta=delta,
            outcome=outcome,
            items_scanned=len(scan.items),
            sections=len(new.sections),
            media_applied=media_applied,
            media_failed=media_failed,
        )
