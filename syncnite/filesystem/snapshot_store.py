"""Versioned snapshot: the durable record of what the last pull sync saw."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from syncnite.exceptions import FatalIOError
from syncnite.filesystem.atomic import atomic_write_json

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


def db_key(group: str, entity_id: str) -> str:
    """Build a ``DbVersions`` key."""
    return f"{group}:{entity_id}"


def media_key(group: str, entity_id: str, kind: str) -> str:
    """Build a ``MediaVersions`` key."""
    return f"{group}:{entity_id}:{kind}"


def split_key(key: str) -> list[str]:
    """Split a version key into ``[group, id]`` or ``[group, id, kind]``."""
    return key.split(":")


@dataclass
class SectionInfo:
    """Per-group metadata recorded in a snapshot."""

    title: str
    type: str | None = None
    tick: int = 0
    count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"Title": self.title, "Type": self.type, "Tick": self.tick, "Count": self.count}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SectionInfo:
        return cls(
            title=str(data.get("Title", "")),
            type=data.get("Type"),
            tick=int(data.get("Tick") or 0),
            count=int(data.get("Count") or 0),
        )


@dataclass
class Snapshot:
    """Version stamps for every entity and media asset seen by a full scan.

    ``db_versions`` and ``media_versions`` are the only authority for change
    detection; entity and media content is never diffed byte-for-byte.
    """

    updated_at: str
    source: str
    server_url: str = ""
    db_ticks: int = 0
    sections: dict[str, SectionInfo] = field(default_factory=dict)
    db_versions: dict[str, int] = field(default_factory=dict)
    media_versions: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "UpdatedAt": self.updated_at,
            "Source": self.source,
            "ServerUrl": self.server_url,
            "DbTicks": self.db_ticks,
            "Sections": {k: v.to_dict() for k, v in sorted(self.sections.items())},
            "DbVersions": dict(sorted(self.db_versions.items())),
            "MediaVersions": dict(sorted(self.media_versions.items())),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Snapshot:
        raw_sections = data.get("Sections") or {}
        return cls(
            updated_at=str(data.get("UpdatedAt", "")),
            source=str(data.get("Source", "")),
            server_url=str(data.get("ServerUrl", "")),
            db_ticks=int(data.get("DbTicks") or 0),
            sections={str(k): SectionInfo.from_dict(v) for k, v in raw_sections.items()},
            db_versions={str(k): int(v) for k, v in (data.get("DbVersions") or {}).items()},
            media_versions={
                str(k): int(v) for k, v in (data.get("MediaVersions") or {}).items()
            },
        )


class SnapshotStore:
    """Load and atomically commit the snapshot file of one sync target."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def _load_sync(self) -> Snapshot | None:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("Unreadable snapshot %s, treating as first sync: %s", self.path, exc)
            return None
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise TypeError("snapshot root must be an object")
            return Snapshot.from_dict(data)
        except (json.JSONDecodeError, TypeError, ValueError, AttributeError) as exc:
            logger.warning("Corrupt snapshot %s, treating as first sync: %s", self.path, exc)
            return None

    async def load(self) -> Snapshot | None:
        """Return the last committed snapshot, or None when there is no usable one."""
        return await asyncio.to_thread(self._load_sync)

    async def commit(self, snapshot: Snapshot) -> None:
        """Replace the snapshot file atomically.

        Raises FatalIOError when the file cannot be written; the previous
        snapshot then remains in place.
        """
        try:
            await asyncio.to_thread(atomic_write_json, self.path, snapshot.to_dict())
        except OSError as exc:
            raise FatalIOError(f"Failed to commit snapshot {self.path}: {exc}") from exc
        logger.info(
            "Snapshot committed: %s (%d entities, %d media)",
            self.path.name,
            len(snapshot.db_versions),
            len(snapshot.media_versions),
        )

    def mtime_ns(self) -> int | None:
        """Modification time of the snapshot file, or None if it does not exist."""
        try:
            return self.path.stat().st_mtime_ns
        except FileNotFoundError:
            return None
