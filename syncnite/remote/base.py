"""Protocol and data classes for remote library sources scanned by the pull sync."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass
class RemoteSection:
    """A section (library) of the remote source."""

    key: str
    title: str
    type: str | None = None


@dataclass
class RemotePage:
    """One page of a section listing."""

    items: list[dict[str, Any]] = field(default_factory=list)
    total_count: int | None = None


@dataclass
class RemoteAsset:
    """Downloaded asset bytes with their content type."""

    content_type: str
    content: bytes


@runtime_checkable
class RemoteLibrary(Protocol):
    """Paginated listing and asset download interface of a remote library."""

    source: str
    server_url: str

    async def list_sections(self) -> list[RemoteSection]:
        """List every section of the library."""
        ...

    async def list_items(self, section_key: str, start: int, size: int) -> RemotePage:
        """Fetch up to ``size`` items of a section starting at offset ``start``."""
        ...

    async def download(self, path: str) -> RemoteAsset:
        """Download an asset by its server-relative path."""
        ...
