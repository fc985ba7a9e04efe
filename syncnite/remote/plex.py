"""Plex Media Server client implementing ``RemoteLibrary`` over the PMS HTTP API."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import quote, urlparse

import httpx

from syncnite.exceptions import RemoteError, ValidationError
from syncnite.remote.base import RemoteAsset, RemotePage, RemoteSection

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)

PLEX_PRODUCT = "Syncnite"
_ERROR_BODY_LIMIT = 300


def normalize_server_url(raw_url: str) -> str:
    """Return the PMS base URL without trailing slashes, or raise ValidationError."""
    candidate = raw_url.strip().rstrip("/")
    parsed = urlparse(candidate)
    if parsed.scheme.lower() not in ("http", "https") or not parsed.hostname:
        raise ValidationError(f"Invalid Plex server URL: {raw_url!r}", code="invalid_server_url")
    return candidate


def _as_list(value: Any) -> list[Any]:
    """Plex returns a bare object instead of a one-element list for single results."""
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


class PlexLibraryClient:
    """Async client for one Plex Media Server.

    The token is sent as ``X-Plex-Token`` header on every request, never in
    the query string, so it does not end up in URLs that get logged.
    """

    source: str = "plex"

    def __init__(
        self,
        server_url: str,
        token: str,
        client_identifier: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.server_url = normalize_server_url(server_url)
        self._client = httpx.AsyncClient(
            base_url=self.server_url,
            headers={
                "Accept": "application/json",
                "X-Plex-Product": PLEX_PRODUCT,
                "X-Plex-Client-Identifier": client_identifier,
                "X-Plex-Token": token,
            },
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> PlexLibraryClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def _get(self, path: str, params: dict[str, str] | None = None) -> httpx.Response:
        try:
            resp = await self._client.get(path, params=params)
        except httpx.HTTPError as exc:
            raise RemoteError(f"Request to {path} failed: {exc}") from exc
        if resp.status_code != 200:
            body = resp.text[:_ERROR_BODY_LIMIT]
            raise RemoteError(f"http_{resp.status_code} for {path}: {body}")
        return resp

    async def _get_container(
        self, path: str, params: dict[str, str] | None = None
    ) -> dict[str, Any]:
        resp = await self._get(path, params)
        content_type = resp.headers.get("content-type", "").lower()
        if "application/json" not in content_type:
            received = content_type or "no content type"
            raise RemoteError(f"Expected JSON from {path}, got {received}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise RemoteError(f"Invalid JSON from {path}: {exc}") from exc
        container = data.get("MediaContainer") if isinstance(data, dict) else None
        if not isinstance(container, dict):
            raise RemoteError(f"Response from {path} has no MediaContainer")
        return container

    async def list_sections(self) -> list[RemoteSection]:
        container = await self._get_container("/library/sections")
        sections: list[RemoteSection] = []
        for directory in _as_list(container.get("Directory")):
            if not isinstance(directory, dict):
                continue
            key = str(directory.get("key") or "").strip()
            if not key:
                continue
            title = str(directory.get("title") or directory.get("name") or key)
            section_type = directory.get("type")
            sections.append(
                RemoteSection(
                    key=key,
                    title=title,
                    type=str(section_type) if section_type is not None else None,
                )
            )
        return sections

    async def list_items(self, section_key: str, start: int, size: int) -> RemotePage:
        container = await self._get_container(
            f"/library/sections/{quote(section_key, safe='')}/all",
            params={
                "X-Plex-Container-Start": str(start),
                "X-Plex-Container-Size": str(size),
            },
        )
        items = [m for m in _as_list(container.get("Metadata")) if isinstance(m, dict)]
        raw_total = container.get("totalSize")
        try:
            total_count = int(raw_total) if raw_total is not None else None
        except (TypeError, ValueError):
            total_count = None
        logger.debug("Section %s: %d items at offset %d", section_key, len(items), start)
        return RemotePage(items=items, total_count=total_count)

    async def download(self, path: str) -> RemoteAsset:
        if not path.startswith("/") or path.startswith("//"):
            raise RemoteError(f"Refusing to download non-relative asset path: {path!r}")
        resp = await self._get(path)
        content_type = resp.headers.get("content-type", "application/octet-stream").lower()
        return RemoteAsset(content_type=content_type, content=resp.content)
