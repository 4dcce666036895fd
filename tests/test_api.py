"""
HTTP tests for the project, operation, export, job and admin GC endpoints.

The app runs without its lifespan: storage, event manager and render queue
are installed on app.state by the fixture and the queue is drained by hand.
Run with: pytest tests/test_api.py -v
"""

import asyncio
import uuid
from types import SimpleNamespace

import pytest
from conftest import ADMIN_ID, OTHER_USER_ID, OWNER_ID, FakeMediaProcessor, effect_op
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from hybridedit.main import app
from hybridedit.models import Base
from hybridedit.models.database import get_db
from hybridedit.services.event_manager import ProjectEventManager
from hybridedit.services.storage_service import LocalStorageService
from hybridedit.tasks.render_queue import RenderQueue

OWNER = {"X-User-Id": OWNER_ID}
OTHER = {"X-User-Id": OTHER_USER_ID}
ADMIN = {"X-User-Id": ADMIN_ID}


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def api(tmp_path):
    """TestClient wired to a throwaway SQLite file and storage root."""
    db_file = tmp_path / "api.db"
    sync_engine = create_engine(f"sqlite:///{db_file}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()

    # Each TestClient request runs on its own event loop; never reuse connections
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_file}", poolclass=NullPool)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    storage = LocalStorageService(tmp_path / "storage")
    media = FakeMediaProcessor()
    events = ProjectEventManager()
    queue = RenderQueue(session_factory, storage, media, events)

    app.dependency_overrides[get_db] = override_get_db
    app.state.storage = storage
    app.state.event_manager = events
    app.state.render_queue = queue
    try:
        yield SimpleNamespace(
            client=TestClient(app, raise_server_exceptions=False),
            queue=queue,
            media=media,
            storage=storage,
            uploads=storage.upload_root,
        )
    finally:
        app.dependency_overrides.clear()


def drain(api) -> int:
    return asyncio.run(api.queue.drain())


def register_video(api, content: bytes = b"api source video", name: str = "source.mp4") -> dict:
    api.uploads.mkdir(parents=True, exist_ok=True)
    path = api.uploads / f"{uuid.uuid4().hex}_{name}"
    path.write_bytes(content)
    response = api.client.post("/api/videos", json={"file_path": str(path), "title": name}, headers=OWNER)
    assert response.status_code == 200
    return response.json()


def create_project(api, name: str = "API project") -> dict:
    video = register_video(api)["video"]
    response = api.client.post(
        "/api/projects", json={"name": name, "video_id": video["id"]}, headers=OWNER
    )
    assert response.status_code == 201
    return response.json()


def append(api, project_id: str, brightness: int = 10, headers=OWNER):
    return api.client.post(
        f"/api/projects/{project_id}/ops",
        json={"ops": [effect_op("brightness", brightness=brightness)]},
        headers=headers,
    )


# =============================================================================
# Projects and videos
# =============================================================================


class TestProjects:
    def test_health(self, api):
        response = api.client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_create_and_get_project(self, api):
        project = create_project(api)

        assert project["current_version"] == 0
        assert project["user_id"] == OWNER_ID

        response = api.client.get(f"/api/projects/{project['id']}", headers=OWNER)
        assert response.status_code == 200
        assert response.json()["name"] == "API project"

    def test_other_user_is_forbidden(self, api):
        project = create_project(api)

        response = api.client.get(f"/api/projects/{project['id']}", headers=OTHER)

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

    def test_unknown_project(self, api):
        response = api.client.get(f"/api/projects/{uuid.uuid4()}", headers=OWNER)

        assert response.status_code == 404
        body = response.json()
        assert body["error"]["code"] == "PROJECT_NOT_FOUND"
        assert body["detail"] == body["error"]["message"]

    def test_unknown_source_video(self, api):
        response = api.client.post(
            "/api/projects", json={"name": "x", "video_id": str(uuid.uuid4())}, headers=OWNER
        )
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "VIDEO_NOT_FOUND"

    def test_request_validation_error_envelope(self, api):
        response = api.client.post("/api/projects", json={"name": ""}, headers=OWNER)

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_duplicate_upload_is_aliased(self, api):
        first = register_video(api, b"same bytes", "a.mp4")
        second = register_video(api, b"same bytes", "b.mp4")

        assert first["duplicate"] is False
        assert second["duplicate"] is True
        assert second["video"]["id"] == first["video"]["id"]
        assert second["video"]["ref_count"] == 2

    def test_upload_outside_upload_dir_is_rejected(self, api, tmp_path):
        register_video(api, b"shared bytes", "a.mp4")
        elsewhere = tmp_path / "not_an_upload" / "personal_copy.mp4"
        elsewhere.parent.mkdir()
        elsewhere.write_bytes(b"shared bytes")

        response = api.client.post(
            "/api/videos", json={"file_path": str(elsewhere), "title": "copy.mp4"}, headers=OTHER
        )

        assert response.status_code == 400
        body = response.json()
        assert body["error"]["code"] == "VALIDATION_ERROR"
        assert body["error"]["location"]["field"] == "file_path"
        assert elsewhere.read_bytes() == b"shared bytes"

    def test_upload_path_traversal_is_rejected(self, api, tmp_path):
        outside = tmp_path / "secret.mp4"
        outside.write_bytes(b"secret")

        response = api.client.post(
            "/api/videos", json={"file_path": "../../secret.mp4", "title": "x.mp4"}, headers=OWNER
        )

        assert response.status_code == 400
        assert outside.exists()

    def test_missing_upload(self, api):
        response = api.client.post(
            "/api/videos",
            json={"file_path": str(api.uploads / "never_written.mp4"), "title": "x.mp4"},
            headers=OWNER,
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_events_stream_requires_owner(self, api):
        project = create_project(api)

        response = api.client.get(f"/api/projects/{project['id']}/events", headers=OTHER)

        assert response.status_code == 403


# =============================================================================
# Operations and proxy jobs
# =============================================================================


class TestOperations:
    def test_append_enqueues_proxy_render(self, api):
        project = create_project(api)

        response = append(api, project["id"])

        assert response.status_code == 201
        body = response.json()
        assert body["version"] == 1
        job = api.client.get(f"/api/jobs/{body['job_id']}", headers=OWNER).json()
        assert job["status"] == "pending"
        assert job["job_type"] == "proxy"

        assert drain(api) == 1

        job = api.client.get(f"/api/jobs/{body['job_id']}", headers=OWNER).json()
        assert job["status"] == "completed"
        refreshed = api.client.get(f"/api/projects/{project['id']}", headers=OWNER).json()
        assert refreshed["current_version"] == 1
        assert refreshed["latest_proxy_key"] == f"proxy/{project['id']}/v1_proxy.mp4"

    def test_versions_increase_by_one(self, api):
        project = create_project(api)

        versions = [append(api, project["id"], brightness=i).json()["version"] for i in range(3)]

        assert versions == [1, 2, 3]

    def test_empty_batch_rejected(self, api):
        project = create_project(api)

        response = api.client.post(f"/api/projects/{project['id']}/ops", json={"ops": []}, headers=OWNER)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
        assert api.queue.size == 0

    def test_non_owner_cannot_append(self, api):
        project = create_project(api)

        response = append(api, project["id"], headers=OTHER)

        assert response.status_code == 403
        assert api.queue.size == 0

    def test_list_operations_prefix(self, api):
        project = create_project(api)
        for i in range(3):
            append(api, project["id"], brightness=i)

        response = api.client.get(f"/api/projects/{project['id']}/ops?version=2", headers=OWNER)

        assert response.status_code == 200
        body = response.json()
        assert body["current_version"] == 3
        assert [op["version"] for op in body["operations"]] == [1, 2]

    def test_list_operations_future_version(self, api):
        project = create_project(api)
        append(api, project["id"])

        response = api.client.get(f"/api/projects/{project['id']}/ops?version=5", headers=OWNER)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_VERSION"


# =============================================================================
# Exports
# =============================================================================


class TestExports:
    def test_export_then_cache_hit(self, api):
        project = create_project(api)
        for i in range(3):
            append(api, project["id"], brightness=i)
        drain(api)

        first = api.client.post(f"/api/projects/{project['id']}/export", json={"version": 2}, headers=OWNER)
        assert first.status_code == 202
        assert first.json()["status"] == "pending"
        drain(api)

        second = api.client.post(f"/api/projects/{project['id']}/export", json={"version": 2}, headers=OWNER)
        assert second.status_code == 200
        body = second.json()
        assert body["status"] == "existing"
        assert body["export"]["version"] == 2
        assert body["options_ignored"] is False
        assert len([c for c in api.media.apply_calls if c["width"] == 1920]) == 1

        listing = api.client.get(f"/api/projects/{project['id']}/exports", headers=OWNER).json()
        assert [e["version"] for e in listing["exports"]] == [2]
        assert listing["latest_export_key"] == f"export/{project['id']}/v2_final.mp4"

    def test_export_defaults_to_current_version(self, api):
        project = create_project(api)
        append(api, project["id"])
        append(api, project["id"])

        response = api.client.post(f"/api/projects/{project['id']}/export", json={}, headers=OWNER)

        assert response.status_code == 202
        assert response.json()["version"] == 2

    def test_different_options_return_existing_export(self, api):
        project = create_project(api)
        append(api, project["id"])
        api.client.post(f"/api/projects/{project['id']}/export", json={"version": 1}, headers=OWNER)
        drain(api)

        response = api.client.post(
            f"/api/projects/{project['id']}/export",
            json={"version": 1, "resolution": "1280x720", "format": "webm"},
            headers=OWNER,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["options_ignored"] is True
        assert body["export"]["resolution"] == "1920x1080"

    def test_version_out_of_range(self, api):
        project = create_project(api)
        append(api, project["id"])

        response = api.client.post(f"/api/projects/{project['id']}/export", json={"version": 4}, headers=OWNER)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_VERSION"

    def test_export_of_empty_project(self, api):
        project = create_project(api)

        response = api.client.post(f"/api/projects/{project['id']}/export", json={}, headers=OWNER)

        assert response.status_code == 400

    def test_pin_toggle(self, api):
        project = create_project(api)
        append(api, project["id"])
        api.client.post(f"/api/projects/{project['id']}/export", json={}, headers=OWNER)
        drain(api)

        pinned = api.client.post(f"/api/projects/{project['id']}/versions/1/pin", headers=OWNER)
        unpinned = api.client.post(f"/api/projects/{project['id']}/versions/1/pin", headers=OWNER)

        assert pinned.json()["pinned"] is True
        assert unpinned.json()["pinned"] is False

    def test_pin_missing_export(self, api):
        project = create_project(api)
        append(api, project["id"])

        response = api.client.post(f"/api/projects/{project['id']}/versions/1/pin", headers=OWNER)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "EXPORT_NOT_FOUND"


# =============================================================================
# Jobs
# =============================================================================


class TestJobs:
    @pytest.mark.parametrize("job_id", ["not-a-uuid", str(uuid.uuid4())])
    def test_unknown_job(self, api, job_id):
        response = api.client.get(f"/api/jobs/{job_id}", headers=OWNER)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_cancel_pending_job(self, api):
        project = create_project(api)
        job_id = append(api, project["id"]).json()["job_id"]

        cancelled = api.client.delete(f"/api/jobs/{job_id}", headers=OWNER)
        again = api.client.delete(f"/api/jobs/{job_id}", headers=OWNER)

        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "cancelled"
        assert again.status_code == 409
        assert again.json()["error"]["code"] == "CONFLICT"
        assert drain(api) == 0

    def test_other_user_cannot_see_or_cancel_job(self, api):
        project = create_project(api)
        job_id = append(api, project["id"]).json()["job_id"]

        status_response = api.client.get(f"/api/jobs/{job_id}", headers=OTHER)
        cancel_response = api.client.delete(f"/api/jobs/{job_id}", headers=OTHER)

        assert status_response.status_code == 404
        assert cancel_response.status_code == 404
        assert cancel_response.json()["error"]["code"] == "NOT_FOUND"
        owner_view = api.client.get(f"/api/jobs/{job_id}", headers=OWNER)
        assert owner_view.json()["status"] == "pending"
        assert drain(api) == 1


# =============================================================================
# Admin GC
# =============================================================================


class TestAdminGC:
    def test_requires_admin(self, api):
        response = api.client.post("/api/admin/gc/calculate", json={}, headers=OWNER)

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

    def test_calculate_archive_delete(self, api):
        project = create_project(api)
        for _ in range(2):
            append(api, project["id"])
        for version in (1, 2):
            api.client.post(f"/api/projects/{project['id']}/export", json={"version": version}, headers=OWNER)
        drain(api)
        api.client.post(f"/api/projects/{project['id']}/versions/2/pin", headers=OWNER)

        report = api.client.post(
            "/api/admin/gc/calculate", json={"ttl_days": 0, "keep_latest_n": 0}, headers=ADMIN
        ).json()
        assert report["candidates_marked"] == 1
        assert report["exports_pinned"] == 1

        candidates = api.client.get("/api/admin/gc/candidates", headers=ADMIN).json()
        assert candidates["count"] == 1
        export_id = candidates["candidates"][0]["export_id"]

        archived = api.client.post(
            "/api/admin/gc/archive", json={"export_ids": [export_id]}, headers=ADMIN
        ).json()
        assert archived["archived"] == 1

        refused = api.client.post(
            "/api/admin/gc/delete", json={"export_ids": [export_id]}, headers=ADMIN
        )
        assert refused.status_code == 400
        assert refused.json()["error"]["code"] == "CONFIRMATION_REQUIRED"

        deleted = api.client.post(
            "/api/admin/gc/delete", json={"export_ids": [export_id], "confirmed": True}, headers=ADMIN
        ).json()
        assert deleted["deleted"] == 1
        assert deleted["space_saved"] > 0

        listing = api.client.get(f"/api/projects/{project['id']}/exports", headers=OWNER).json()
        assert [(e["version"], e["pinned"]) for e in listing["exports"]] == [(2, True)]

    def test_archive_requires_ids(self, api):
        response = api.client.post("/api/admin/gc/archive", json={"export_ids": []}, headers=ADMIN)
        assert response.status_code == 422

    def test_unused_videos(self, api):
        create_project(api)

        response = api.client.get("/api/admin/gc/unused-videos", headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["count"] == 0
