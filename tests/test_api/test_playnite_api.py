"""Integration tests for the Playnite push-sync endpoints."""

from __future__ import annotations

import hashlib
import json
from typing import TYPE_CHECKING

import pytest

from tests.conftest import create_test_client

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from httpx import AsyncClient

    from syncnite.config import Settings


@pytest.fixture
async def client(test_settings: Settings) -> AsyncGenerator[AsyncClient]:
    async with create_test_client(test_settings) as ac:
        yield ac


class TestHealth:
    async def test_health(self, client: AsyncClient) -> None:
        resp = await client.get("/api/health")

        assert resp.status_code == 200
        assert resp.json() == {
            "status": "ok",
            "version": "0.1.0",
            "database": "ok",
            "storage": "ok",
            "plex_configured": True,
            "syncing": [],
            "snapshots": {"playnite": False, "plex": False},
        }

    async def test_health_reports_held_keys_and_snapshots(self, client: AsyncClient) -> None:
        manager = client.app.state.sync_manager
        await client.post("/api/playnite/snapshot", json={"Games": 1})
        manager.guard.try_acquire(manager.playnite_key)

        body = (await client.get("/api/health")).json()

        assert body["syncing"] == [manager.playnite_key]
        assert body["snapshots"] == {"playnite": True, "plex": False}

    async def test_missing_data_directory_is_degraded(
        self, client: AsyncClient, test_settings: Settings
    ) -> None:
        test_settings.plex_media_root.rmdir()

        body = (await client.get("/api/health")).json()

        assert body["status"] == "degraded"
        assert body["storage"] == "missing"


class TestEntityEndpoints:
    async def test_upsert_status_codes(self, client: AsyncClient) -> None:
        doc = {"Id": "g1", "Name": "Portal", "MetadataVersion": "v1"}

        created = await client.put("/api/playnite/games/g1", json=doc)
        unchanged = await client.put("/api/playnite/games/g1", json=doc)
        updated = await client.put("/api/playnite/games/g1", json={**doc, "Name": "Portal 2"})

        assert created.status_code == 201
        assert created.json() == {"status": "created", "collection": "games", "id": "g1"}
        assert unchanged.status_code == 204
        assert unchanged.content == b""
        assert updated.status_code == 200
        assert updated.json()["status"] == "updated"

    async def test_unknown_collection_is_400(self, client: AsyncClient) -> None:
        resp = await client.put("/api/playnite/users/u1", json={"Id": "u1"})
        assert resp.status_code == 400
        assert resp.json()["code"] == "unknown_collection"

    async def test_invalid_id_is_400(self, client: AsyncClient) -> None:
        resp = await client.put("/api/playnite/games/bad%20id", json={})
        assert resp.status_code == 400
        assert resp.json()["code"] == "invalid_id"

    async def test_delete_is_idempotent(self, client: AsyncClient) -> None:
        await client.put("/api/playnite/games/g1", json={"Id": "g1"})

        first = await client.delete("/api/playnite/games/g1")
        second = await client.delete("/api/playnite/games/g1")

        assert first.status_code == 204
        assert second.status_code == 204

    async def test_collection_lists_written_entities(self, client: AsyncClient) -> None:
        await client.put("/api/playnite/tags/t1", json={"Id": "t1", "Name": "RPG"})
        await client.put("/api/playnite/tags/t2", json={"Id": "t2", "Name": "FPS"})

        resp = await client.get("/api/playnite/collection/tags")

        assert resp.status_code == 200
        assert sorted(row["Name"] for row in resp.json()) == ["FPS", "RPG"]

    async def test_collection_missing_is_empty(self, client: AsyncClient) -> None:
        resp = await client.get("/api/playnite/collection/genres")
        assert resp.status_code == 200
        assert resp.json() == []


class TestDeltaEndpoint:
    async def test_delta_wire_format(self, client: AsyncClient) -> None:
        await client.put("/api/playnite/games/keep", json={"MetadataVersion": "v1"})
        await client.put("/api/playnite/games/stale", json={"MetadataVersion": "v1"})
        await client.put("/api/playnite/games/gone", json={"MetadataVersion": "v1"})

        resp = await client.post(
            "/api/playnite/delta",
            json={
                "json": {"games": ["keep", "stale", "new"]},
                "versions": {"games": {"keep": "v1", "stale": "v2"}},
                "mediaFolders": {"keep": 3},
            },
        )

        assert resp.status_code == 200
        assert resp.json() == {
            "toUpsert": {"games": ["stale", "new"]},
            "toDelete": {"games": ["gone"]},
            "media": {"uploadFolders": ["keep"]},
        }

    async def test_unknown_group_rejects_whole_request(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/playnite/delta", json={"json": {"games": ["a"], "bogus": ["b"]}}
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "unknown_collection"

    async def test_malformed_manifest_is_422(self, client: AsyncClient) -> None:
        resp = await client.post("/api/playnite/delta", json={"json": ["not", "a", "map"]})
        assert resp.status_code == 422


class TestMediaEndpoints:
    async def test_put_then_get(self, client: AsyncClient) -> None:
        data = b"\x89PNG fake image"

        created = await client.put("/api/playnite/media/g1/cover.png", content=data)
        fetched = await client.get("/api/playnite/media/g1/cover.png")

        assert created.status_code == 201
        assert created.json() == {"status": "created", "bytes": len(data)}
        assert fetched.status_code == 200
        assert fetched.content == data

    async def test_same_bytes_with_hash_is_204(self, client: AsyncClient) -> None:
        data = b"same bytes"
        digest = hashlib.sha1(data).hexdigest()
        await client.put("/api/playnite/media/g1/icon.png", content=data)

        resp = await client.put(
            "/api/playnite/media/g1/icon.png", content=data, headers={"X-Content-Hash": digest}
        )

        assert resp.status_code == 204

    async def test_same_size_different_hash_is_updated(self, client: AsyncClient) -> None:
        await client.put("/api/playnite/media/g1/icon.png", content=b"aaaa")

        resp = await client.put(
            "/api/playnite/media/g1/icon.png",
            content=b"bbbb",
            headers={"X-Content-Hash": hashlib.sha1(b"bbbb").hexdigest()},
        )

        assert resp.status_code == 200
        assert resp.json()["status"] == "updated"

    async def test_missing_media_is_404(self, client: AsyncClient) -> None:
        resp = await client.get("/api/playnite/media/g1/none.png")
        assert resp.status_code == 404

    async def test_traversal_is_400(self, client: AsyncClient) -> None:
        resp = await client.put("/api/playnite/media/g1/..%2F..%2F..%2Fescape.png", content=b"x")
        assert resp.status_code == 400
        assert resp.json()["code"] == "invalid_media_path"

    async def test_too_large_is_413(self, test_settings: Settings) -> None:
        settings = test_settings.model_copy(update={"max_media_upload_bytes": 4})
        async with create_test_client(settings) as client:
            resp = await client.put("/api/playnite/media/g1/big.png", content=b"12345")
        assert resp.status_code == 413


class TestSnapshotEndpoint:
    async def test_snapshot_is_stored(self, client: AsyncClient, test_settings: Settings) -> None:
        resp = await client.post(
            "/api/playnite/snapshot", json={"updatedAt": "2026-03-01T00:00:00Z", "Games": 12}
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["ok"] is True
        assert body["updated_at"] == "2026-03-01T00:00:00Z"
        stored = json.loads(
            (test_settings.snapshot_dir / "playnite.snapshot.json").read_text(encoding="utf-8")
        )
        assert stored["Games"] == 12
        assert stored["serverUpdatedAt"] == body["server_updated_at"]

    async def test_non_object_snapshot_is_400(self, client: AsyncClient) -> None:
        resp = await client.post("/api/playnite/snapshot", json=[1, 2])
        assert resp.status_code == 400

    async def test_installed_list_is_stored(
        self, client: AsyncClient, test_settings: Settings
    ) -> None:
        resp = await client.post(
            "/api/playnite/installed", json={"installed": ["g1", "g2", "g1"]}
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["ok"] is True
        assert body["count"] == 2
        stored = json.loads(test_settings.installed_path.read_text(encoding="utf-8"))
        assert stored["installed"] == ["g1", "g2"]
        assert stored["updatedAt"] == body["updated_at"]

    async def test_installed_must_be_a_list(self, client: AsyncClient) -> None:
        resp = await client.post("/api/playnite/installed", json={"installed": "g1"})

        assert resp.status_code == 400
        assert resp.json()["code"] == "invalid_installed_payload"
