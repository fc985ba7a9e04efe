"""Sandboxed binary media store.

Writes are skipped when the existing file already matches by size (and by
SHA-1, when the caller supplies one). Per-entity media for the pull variant
uses a fixed ``{kind}.{ext}`` naming scheme with exactly one file per kind.
"""

from __future__ import annotations

import hashlib
import logging
import shutil
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from syncnite.exceptions import NotFoundError, TransientIOError, ValidationError
from syncnite.filesystem.atomic import atomic_write_bytes

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_CONTENT_TYPE_EXTENSIONS = (
    ("image/jpeg", "jpg"),
    ("image/jpg", "jpg"),
    ("image/png", "png"),
    ("image/webp", "webp"),
    ("image/gif", "gif"),
)


def ext_from_content_type(content_type: str) -> str:
    """Map a content type to the file extension used on disk."""
    ct = content_type.lower()
    for prefix, ext in _CONTENT_TYPE_EXTENSIONS:
        if prefix in ct:
            return ext
    return "bin"


def sha1_hex(data: bytes) -> str:
    return hashlib.sha1(data).hexdigest()


def hash_file(path: Path) -> str:
    """Compute SHA-1 of a file in chunks."""
    sha = hashlib.sha1()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha.update(chunk)
    return sha.hexdigest()


class PutStatus(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass
class PutResult:
    status: PutStatus
    bytes: int


class MediaStore:
    """Binary assets rooted at a fixed directory."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def resolve(self, tail: str) -> Path:
        """Resolve a caller-supplied relative path inside the root.

        Raises ValidationError for empty paths, NUL bytes, backslashes and any
        path that escapes the root after normalization. Never clamps.
        """
        rel = tail.lstrip("/")
        if not rel or "\x00" in rel or "\\" in rel:
            raise ValidationError(f"Invalid media path: {tail!r}", code="invalid_media_path")
        root = self.root.resolve()
        full_path = (root / rel).resolve()
        if full_path == root or not full_path.is_relative_to(root):
            raise ValidationError(f"Invalid media path: {tail!r}", code="invalid_media_path")
        return full_path

    def put(self, tail: str, data: bytes, expected_hash: str | None = None) -> PutResult:
        """Store ``data`` at ``tail``; no write when the existing file already matches."""
        path = self.resolve(tail)
        if path.is_dir():
            raise ValidationError(f"Media path is a directory: {tail}", code="invalid_media_path")
        existing_size: int | None = None
        if path.is_file():
            try:
                existing_size = path.stat().st_size
            except FileNotFoundError:
                existing_size = None

        if existing_size is not None and existing_size == len(data):
            if not expected_hash:
                return PutResult(PutStatus.UNCHANGED, len(data))
            try:
                if hash_file(path) == expected_hash.strip().lower():
                    return PutResult(PutStatus.UNCHANGED, len(data))
            except FileNotFoundError:
                existing_size = None

        atomic_write_bytes(path, data)
        logger.debug("Stored media %s: %d bytes", tail, len(data))
        status = PutStatus.CREATED if existing_size is None else PutStatus.UPDATED
        return PutResult(status, len(data))

    def get(self, tail: str) -> Path:
        """Return the absolute path of an existing media file."""
        path = self.resolve(tail)
        if not path.is_file():
            raise NotFoundError(f"Media not found: {tail}")
        return path

    def folder_exists(self, name: str) -> bool:
        """True when ``name`` is a directory directly under the root.

        Raises ValidationError unless ``name`` is a single safe path segment.
        """
        segment = name.strip("/")
        if "/" in segment:
            raise ValidationError(f"Invalid media folder: {name!r}", code="invalid_media_path")
        return self.resolve(segment).is_dir()

    # Pull layout: {root}/{group}/{id}/{kind}.{ext}

    def entity_dir(self, group: str, entity_id: str) -> Path:
        return self.resolve(f"{group}/{entity_id}")

    def replace_kind(self, directory: Path, kind: str, data: bytes, content_type: str) -> Path:
        """Write ``{kind}.{ext}`` and remove any other file of the same kind."""
        target = directory / f"{kind}.{ext_from_content_type(content_type)}"
        try:
            atomic_write_bytes(target, data)
            for stale in directory.glob(f"{kind}.*"):
                if stale != target and stale.is_file():
                    stale.unlink(missing_ok=True)
        except OSError as exc:
            raise TransientIOError(f"Cannot store {target}: {exc}") from exc
        return target

    def remove_kind(self, directory: Path, kind: str) -> int:
        """Delete every ``{kind}.*`` file, leaving sibling kinds alone."""
        removed = 0
        if not directory.is_dir():
            return removed
        for path in directory.glob(f"{kind}.*"):
            if path.is_file():
                path.unlink(missing_ok=True)
                removed += 1
        return removed

    def remove_tree(self, directory: Path) -> bool:
        """Delete an entity's whole media folder (cascade delete)."""
        if not directory.exists():
            return False
        shutil.rmtree(directory)
        return True
