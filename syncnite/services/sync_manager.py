"""Owns the stores, caches and guard of both sync targets and runs reconciliations."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from syncnite.exceptions import FatalIOError, InternalServerError, LockedError, ValidationError
from syncnite.filesystem.atomic import atomic_write_json
from syncnite.filesystem.document_store import (
    PLAYNITE_COLLECTIONS,
    DocumentStore,
    UpsertStatus,
    validate_id,
)
from syncnite.filesystem.media_store import MediaStore
from syncnite.filesystem.snapshot_store import SnapshotStore
from syncnite.models.sync_run import SyncRunStatus
from syncnite.remote.plex import PlexLibraryClient
from syncnite.services.collection_cache import CollectionCache
from syncnite.services.pull_sync_service import PullDeltaReconciler, PullSyncResult
from syncnite.services.push_delta_service import PushDeltaReconciler
from syncnite.services.single_flight import SingleFlightGuard
from syncnite.services.sync_run_service import finish_run, record_locked, start_run

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from syncnite.config import Settings
    from syncnite.filesystem.document_store import UpsertResult
    from syncnite.filesystem.media_store import PutResult
    from syncnite.models.sync_run import SyncRun
    from syncnite.remote.base import RemoteLibrary
    from syncnite.services.push_delta_service import ClientManifest, DeltaResult

logger = logging.getLogger(__name__)

PLAYNITE_TARGET = "playnite"
PLEX_TARGET = "plex"


async def _write_record(path: Path, record: dict[str, Any]) -> None:
    try:
        await asyncio.to_thread(atomic_write_json, path, record)
    except OSError as exc:
        raise FatalIOError(f"Failed to write {path}: {exc}") from exc


class SyncManager:
    """Entry point used by the HTTP layer.

    One instance per application. The guard lives on the instance, so every
    reconciliation key (``plex:<server>``, ``playnite:<root>``) is free again
    after a restart.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        remote_factory: Callable[[], RemoteLibrary] | None = None,
    ) -> None:
        self.settings = settings
        self._session_factory = session_factory
        self._remote_factory = remote_factory or self._default_remote
        self.guard = SingleFlightGuard()

        snapshot_dir = settings.snapshot_dir
        self.playnite_documents = DocumentStore(settings.playnite_db_root, PLAYNITE_COLLECTIONS)
        self.playnite_media = MediaStore(settings.playnite_media_root)
        self.playnite_snapshots = SnapshotStore(snapshot_dir / f"{PLAYNITE_TARGET}.snapshot.json")
        self.playnite_cache = CollectionCache(
            self.playnite_documents, self.playnite_snapshots.mtime_ns
        )
        self.push = PushDeltaReconciler(self.playnite_documents, self.playnite_media)

        self.plex_documents = DocumentStore(settings.plex_db_root)
        self.plex_media = MediaStore(settings.plex_media_root)
        self.plex_snapshots = SnapshotStore(snapshot_dir / f"{PLEX_TARGET}.snapshot.json")
        self.plex_cache = CollectionCache(self.plex_documents, self.plex_snapshots.mtime_ns)

    @property
    def playnite_key(self) -> str:
        return f"{PLAYNITE_TARGET}:{self.settings.playnite_db_root}"

    def is_syncing(self, target: str) -> bool:
        prefix = f"{target}:"
        return any(key.startswith(prefix) for key in self.guard.held_keys)

    # ── Playnite (push) ──────────────────────────────────

    async def compute_push_delta(self, manifest: ClientManifest) -> DeltaResult:
        """Delta for a client inventory. Raises LockedError if one is already running."""
        async with self.guard.hold(self.playnite_key):
            return await self.push.compute(manifest)

    async def upsert_entity(self, collection: str, raw_id: str, document: Any) -> UpsertResult:
        group = self.playnite_documents.validate_group(collection)
        entity_id = validate_id(raw_id)
        result = await self.playnite_documents.aupsert(group, entity_id, document)
        if result.status != UpsertStatus.UNCHANGED:
            self.playnite_cache.invalidate(group)
        return result

    async def delete_entity(self, collection: str, raw_id: str) -> bool:
        group = self.playnite_documents.validate_group(collection)
        entity_id = validate_id(raw_id)
        deleted = await self.playnite_documents.adelete(group, entity_id)
        if deleted:
            self.playnite_cache.invalidate(group)
        logger.info("Delete %s/%s (existed=%s)", group, entity_id, deleted)
        return deleted

    async def list_playnite(self, collection: str) -> list[Any]:
        return await self.playnite_cache.list(collection)

    async def put_playnite_media(
        self, tail: str, data: bytes, expected_hash: str | None = None
    ) -> PutResult:
        return await asyncio.to_thread(self.playnite_media.put, tail, data, expected_hash)

    async def playnite_media_path(self, tail: str) -> Path:
        return await asyncio.to_thread(self.playnite_media.get, tail)

    async def record_client_snapshot(self, payload: Any) -> dict[str, Any]:
        """Store the snapshot pushed by the Playnite extension.

        Committing it moves the playnite snapshot mtime, which refreshes every
        cached playnite collection on the next read.
        """
        if not isinstance(payload, dict):
            raise ValidationError("Body must be a snapshot object", code="invalid_snapshot")
        now = datetime.now(UTC).isoformat()
        updated_at = payload.get("updatedAt") or payload.get("UpdatedAt")
        record = {
            **payload,
            "updatedAt": updated_at if isinstance(updated_at, str) else now,
            "source": payload.get("source") or "playnite-extension",
            "serverUpdatedAt": now,
        }
        await _write_record(self.playnite_snapshots.path, record)
        logger.info("Client snapshot stored (updatedAt=%s)", record["updatedAt"])
        return record

    async def record_installed(self, payload: Any) -> dict[str, Any]:
        """Store the deduplicated list of game ids installed on the Playnite host."""
        installed = payload.get("installed") if isinstance(payload, dict) else None
        if not isinstance(installed, list):
            raise ValidationError(
                "Body must be { installed: string[] }", code="invalid_installed_payload"
            )
        unique = list(dict.fromkeys(str(entry) for entry in installed))
        record = {
            "installed": unique,
            "updatedAt": datetime.now(UTC).isoformat(),
            "source": "playnite-extension",
        }
        await _write_record(self.settings.installed_path, record)
        logger.info("Installed list stored: %d of %d entries unique", len(unique), len(installed))
        return record

    # ── Plex (pull) ──────────────────────────────────────

    def _default_remote(self) -> RemoteLibrary:
        if not self.settings.plex_configured:
            raise ValidationError("Plex server is not configured", code="plex_not_configured")
        return PlexLibraryClient(
            self.settings.plex_server_url,
            self.settings.plex_token,
            self.settings.plex_client_identifier,
            timeout=self.settings.http_timeout_seconds,
        )

    async def list_plex(self, group: str) -> list[Any]:
        return await self.plex_cache.list(group)

    async def plex_media_path(self, tail: str) -> Path:
        return await asyncio.to_thread(self.plex_media.get, tail)

    async def sync_plex(self) -> PullSyncResult:
        """Run one pull reconciliation against the configured Plex server."""
        remote = self._remote_factory()
        key = f"{PLEX_TARGET}:{remote.server_url}"
        try:
            async with self.guard.hold(key):
                return await self._run_pull(remote)
        except LockedError:
            await self._record_locked(PLEX_TARGET, remote.server_url)
            raise
        finally:
            aclose = getattr(remote, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _run_pull(self, remote: RemoteLibrary) -> PullSyncResult:
        run = await self._start_run(PLEX_TARGET, remote.server_url)
        reconciler = PullDeltaReconciler(
            remote,
            self.plex_documents,
            self.plex_media,
            self.plex_snapshots,
            page_size=self.settings.plex_page_size,
            concurrency=self.settings.media_download_concurrency,
        )
        try:
            result = await reconciler.run()
        except Exception as exc:
            logger.error("Plex sync failed: %s", exc)
            await self._finish_run(run, SyncRunStatus.ERROR, error=str(exc))
            raise

        status = SyncRunStatus.PARTIAL if result.outcome.errors else SyncRunStatus.OK
        failed = result.outcome.failed_keys
        await self._finish_run(
            run,
            status,
            upserts=sum(1 for key in result.delta.db_upserts if key not in failed),
            deletes=sum(1 for key in result.delta.db_deletes if key not in failed),
            media_applied=result.media_applied,
            media_failed=result.media_failed,
            error=result.outcome.errors[0].message if result.outcome.errors else None,
        )
        return result

    # ── Ledger ───────────────────────────────────────────

    async def _start_run(self, target: str, source: str) -> SyncRun | None:
        if self._session_factory is None:
            return None
        try:
            async with self._session_factory() as session:
                return await start_run(session, target, source)
        except SQLAlchemyError as exc:
            raise InternalServerError(f"Failed to open {target} sync run: {exc}") from exc

    async def _finish_run(
        self, run: SyncRun | None, status: SyncRunStatus, **counters: Any
    ) -> None:
        if run is None or self._session_factory is None:
            return
        try:
            async with self._session_factory() as session:
                await finish_run(session, run, status=status, **counters)
        except SQLAlchemyError as exc:
            raise InternalServerError(
                f"Failed to record {run.target} sync run {run.id}: {exc}"
            ) from exc

    async def _record_locked(self, target: str, source: str) -> None:
        if self._session_factory is None:
            return
        async with self._session_factory() as session:
            await record_locked(session, target, source)
