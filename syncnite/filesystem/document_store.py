"""Entity document store: one JSON file per entity under ``root/{group}/{id}.json``."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from syncnite.exceptions import FatalIOError, ValidationError
from syncnite.filesystem.atomic import atomic_write_json, read_json_if_exists

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

logger = logging.getLogger(__name__)

PLAYNITE_COLLECTIONS = frozenset(
    {
        "games",
        "companies",
        "tags",
        "sources",
        "platforms",
        "genres",
        "categories",
        "features",
        "series",
        "regions",
        "ageratings",
        "completionstatuses",
        "filterpresets",
        "importexclusions",
    }
)

_ID_RE = re.compile(r"^[A-Za-z0-9_.\-]{1,128}$")
_GROUP_RE = re.compile(r"^[a-z0-9][a-z0-9_\-]{0,63}$")


def is_valid_id(entity_id: str) -> bool:
    """Return True for ids in the safe charset that cannot name a parent directory."""
    return bool(_ID_RE.match(entity_id)) and entity_id not in (".", "..")


def validate_id(raw: object) -> str:
    """Return the trimmed id or raise ValidationError."""
    entity_id = str(raw if raw is not None else "").strip()
    if not entity_id:
        raise ValidationError("missing id", code="missing_id")
    if not is_valid_id(entity_id):
        raise ValidationError(f"invalid id: {entity_id!r}", code="invalid_id")
    return entity_id


def metadata_version(document: Any) -> str | None:
    """Typed accessor for the optional ``MetadataVersion`` field of an opaque document."""
    if isinstance(document, dict):
        value = document.get("MetadataVersion")
        if isinstance(value, str) and value:
            return value
    return None


class UpsertStatus(StrEnum):
    """Outcome of writing a single entity."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass
class UpsertResult:
    group: str
    entity_id: str
    status: UpsertStatus


class DocumentStore:
    """Reads and writes entity documents for one sync source.

    ``allowed_groups`` restricts groups to a fixed allow-list; when omitted,
    any lowercase token is accepted (groups then come from the remote scan).
    """

    def __init__(self, root: Path, allowed_groups: Iterable[str] | None = None) -> None:
        self.root = root
        self.allowed_groups = frozenset(allowed_groups) if allowed_groups is not None else None

    def validate_group(self, raw: object) -> str:
        """Normalize a group name and check it against the allow-list."""
        group = str(raw if raw is not None else "").strip().lower()
        if self.allowed_groups is not None:
            if group not in self.allowed_groups:
                raise ValidationError(f"unknown collection: {group}", code="unknown_collection")
        elif not _GROUP_RE.match(group):
            raise ValidationError(f"invalid group: {group}", code="invalid_group")
        return group

    def group_dir(self, group: str) -> Path:
        return self.root / group

    def doc_path(self, group: str, entity_id: str) -> Path:
        return self.root / group / f"{entity_id}.json"

    def ensure_group_dir(self, group: str) -> Path:
        """Create the group directory; failure aborts the caller's pass."""
        path = self.group_dir(group)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FatalIOError(f"Cannot create group directory {path}: {exc}") from exc
        return path

    def list_ids(self, group: str) -> list[str]:
        """Ids with a document on disk; a missing group directory yields []."""
        try:
            entries = list(self.group_dir(group).iterdir())
        except FileNotFoundError:
            return []
        ids = [
            entry.stem
            for entry in entries
            if entry.suffix == ".json" and is_valid_id(entry.stem) and entry.is_file()
        ]
        return sorted(ids)

    def read(self, group: str, entity_id: str) -> Any | None:
        """Parsed document or None if absent. Parse errors propagate."""
        return read_json_if_exists(self.doc_path(group, entity_id))

    def write(self, group: str, entity_id: str, document: Any) -> None:
        atomic_write_json(self.doc_path(group, entity_id), document)

    def upsert(self, group: str, entity_id: str, document: Any) -> UpsertResult:
        """Write a document unless an identical one is already stored.

        Comparison is structural equality of the parsed JSON; an unreadable
        existing file is overwritten.
        """
        path = self.doc_path(group, entity_id)
        try:
            existing = read_json_if_exists(path)
        except ValueError:
            logger.warning("Overwriting unreadable document %s/%s", group, entity_id)
            existing, exists = None, True
        else:
            exists = existing is not None
        if existing is not None and existing == document:
            return UpsertResult(group, entity_id, UpsertStatus.UNCHANGED)
        atomic_write_json(path, document if document is not None else {})
        status = UpsertStatus.UPDATED if exists else UpsertStatus.CREATED
        logger.debug("Upserted %s/%s (%s)", group, entity_id, status)
        return UpsertResult(group, entity_id, status)

    def delete(self, group: str, entity_id: str) -> bool:
        """Remove a document. Deleting a missing id is success (returns False)."""
        try:
            self.doc_path(group, entity_id).unlink()
        except FileNotFoundError:
            return False
        return True

    # Async wrappers: file I/O runs off the event loop.

    async def aupsert(self, group: str, entity_id: str, document: Any) -> UpsertResult:
        return await asyncio.to_thread(self.upsert, group, entity_id, document)

    async def adelete(self, group: str, entity_id: str) -> bool:
        return await asyncio.to_thread(self.delete, group, entity_id)

    async def alist_ids(self, group: str) -> list[str]:
        return await asyncio.to_thread(self.list_ids, group)

    async def aread(self, group: str, entity_id: str) -> Any | None:
        return await asyncio.to_thread(self.read, group, entity_id)
