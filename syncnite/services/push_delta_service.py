"""Push delta: compare a client-reported inventory against on-disk documents.

The client owns the authoritative copy, so no snapshot is consulted. The
result is advisory: the caller uploads/deletes the named ids afterwards.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from syncnite.exceptions import ValidationError
from syncnite.filesystem.document_store import is_valid_id, metadata_version

if TYPE_CHECKING:
    from syncnite.filesystem.document_store import DocumentStore
    from syncnite.filesystem.media_store import MediaStore

logger = logging.getLogger(__name__)


@dataclass
class ClientManifest:
    """Inventory reported by a client: ids, per-id versions and media folders."""

    json: dict[str, list[str]] = field(default_factory=dict)
    versions: dict[str, dict[str, str]] = field(default_factory=dict)
    media_folders: dict[str, int] = field(default_factory=dict)


@dataclass
class DeltaResult:
    """What the client must upload and what the server holds that the client dropped."""

    to_upsert: dict[str, list[str]] = field(default_factory=dict)
    to_delete: dict[str, list[str]] = field(default_factory=dict)
    upload_folders: list[str] = field(default_factory=list)


def _client_ids(raw_ids: list[str], group: str) -> list[str]:
    """Trim and dedupe ids, skipping invalid ones without failing the call."""
    seen: set[str] = set()
    ids: list[str] = []
    for raw in raw_ids:
        entity_id = str(raw).strip()
        if not is_valid_id(entity_id):
            logger.debug("Skipping invalid id %r in %s", raw, group)
            continue
        if entity_id not in seen:
            seen.add(entity_id)
            ids.append(entity_id)
    return ids


class PushDeltaReconciler:
    """Computes ``DeltaResult`` for a ``ClientManifest``."""

    def __init__(self, documents: DocumentStore, media: MediaStore) -> None:
        self._documents = documents
        self._media = media

    def _needs_upsert(self, group: str, entity_id: str, client_version: str | None) -> bool:
        if not client_version:
            return False
        try:
            stored = self._documents.read(group, entity_id)
        except (OSError, ValueError) as exc:
            logger.warning(
                "Unreadable document %s/%s, requesting upload: %s", group, entity_id, exc
            )
            return True
        return metadata_version(stored) != client_version

    def _compute_group(
        self, group: str, raw_ids: list[str], versions: dict[str, str]
    ) -> tuple[list[str], list[str]]:
        client_ids = _client_ids(raw_ids, group)
        server_ids = set(self._documents.list_ids(group))

        upserts: list[str] = []
        for entity_id in client_ids:
            if entity_id not in server_ids:
                upserts.append(entity_id)
                continue
            client_version = versions.get(entity_id)
            if not isinstance(client_version, str):
                client_version = None
            if self._needs_upsert(group, entity_id, client_version):
                upserts.append(entity_id)

        client_set = set(client_ids)
        deletes = sorted(server_ids - client_set)
        logger.info(
            "Delta for %s: %d to upsert, %d to delete", group, len(upserts), len(deletes)
        )
        return upserts, deletes

    def _missing_folders(self, folders: dict[str, int]) -> list[str]:
        missing: list[str] = []
        for name in sorted(folders):
            try:
                exists = self._media.folder_exists(name)
            except ValidationError:
                logger.debug("Skipping invalid media folder %r", name)
                continue
            if not exists:
                missing.append(name)
        return missing

    async def compute(self, manifest: ClientManifest) -> DeltaResult:
        """Compute the delta for every group in the manifest.

        Every group is validated before any work is done; one unknown group
        rejects the whole call with ValidationError.
        """
        groups = {
            self._documents.validate_group(raw): (raw, raw_ids)
            for raw, raw_ids in manifest.json.items()
        }
        logger.info("Incoming delta request for %d collections", len(groups))

        result = DeltaResult()
        for group, (raw, raw_ids) in groups.items():
            versions = manifest.versions.get(group) or manifest.versions.get(raw) or {}
            upserts, deletes = await asyncio.to_thread(
                self._compute_group, group, list(raw_ids), versions
            )
            if upserts:
                result.to_upsert[group] = upserts
            if deletes:
                result.to_delete[group] = deletes

        result.upload_folders = await asyncio.to_thread(
            self._missing_folders, manifest.media_folders
        )
        if result.upload_folders:
            logger.info("Client should re-upload %d media folders", len(result.upload_folders))
        return result
