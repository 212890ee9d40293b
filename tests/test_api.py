"""
Tests for the PhotoBook Export HTTP API.
"""

import io
import os
import threading

from pypdf import PdfReader

from fakes import OTHER_OWNER, OWNER, FakeRenderer
from photobook_export.main import app, get_export_manager


def _create(client, headers, album_id="album-1"):
    return client.post("/api/pdf/tasks", json={"albumId": album_id}, headers=headers)


class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    def test_health_returns_ok(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestExportFlow:
    """End-to-end export: create, poll, download."""

    def test_create_poll_download(self, client, manager, make_album, content_factory, owner_headers):
        make_album(contents=[content_factory(), content_factory()])

        response = _create(client, owner_headers)
        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "PDF export task created and queued for processing"
        task_id = body["taskId"]

        manager.wait(task_id, timeout=30)

        progress = client.get(f"/api/pdf/tasks/{task_id}/progress", headers=owner_headers)
        assert progress.status_code == 200
        assert progress.json()["status"] == "completed"
        assert progress.json()["progress"] == 100
        assert progress.json()["failureReason"] is None

        download = client.get(f"/api/pdf/tasks/{task_id}/download", headers=owner_headers)
        assert download.status_code == 200
        assert download.headers["content-type"] == "application/pdf"
        assert 'filename="Summer-Trip.pdf"' in download.headers["content-disposition"]
        pages = PdfReader(io.BytesIO(download.content)).pages
        assert [(round(float(p.mediabox.width)), round(float(p.mediabox.height))) for p in pages] == [(600, 450), (600, 450)]

    def test_numeric_album_id_accepted(self, client, manager, make_album, content_factory, owner_headers):
        make_album(album_id="42", contents=[content_factory()])

        response = _create(client, owner_headers, album_id=42)

        assert response.status_code == 200
        manager.wait(response.json()["taskId"], timeout=30)

    def test_failed_task_reports_reason(self, client, make_manager, make_album, content_factory, owner_headers):
        failing = make_manager(FakeRenderer(fail_on={1}))
        app.dependency_overrides[get_export_manager] = lambda: failing
        make_album(contents=[content_factory()])

        task_id = _create(client, owner_headers).json()["taskId"]
        failing.wait(task_id, timeout=30)

        body = client.get(f"/api/pdf/tasks/{task_id}/progress", headers=owner_headers).json()
        assert body["status"] == "failed"
        assert "no page could be rendered" in body["failureReason"]

        download = client.get(f"/api/pdf/tasks/{task_id}/download", headers=owner_headers)
        assert download.status_code == 400


class TestCreateValidation:
    """Tests for request validation on task creation."""

    def test_missing_album_id(self, client, tasks, owner_headers):
        response = client.post("/api/pdf/tasks", json={}, headers=owner_headers)
        assert response.status_code == 400
        assert tasks.list_tasks(OWNER) == []

    def test_empty_album(self, client, tasks, make_album, owner_headers):
        make_album(contents=[])

        response = _create(client, owner_headers)

        assert response.status_code == 400
        assert "no pages" in response.json()["detail"]
        assert tasks.list_tasks(OWNER) == []

    def test_album_not_owned(self, client, tasks, make_album, content_factory, other_headers):
        make_album(contents=[content_factory()])

        response = _create(client, other_headers)

        assert response.status_code == 404
        assert tasks.list_tasks(OTHER_OWNER) == []

    def test_missing_identity(self, client, make_album, content_factory):
        make_album(contents=[content_factory()])

        response = client.post("/api/pdf/tasks", json={"albumId": "album-1"})

        assert response.status_code == 401

    def test_duplicate_rejected_when_configured(self, client, make_manager, make_album, content_factory, owner_headers):
        release = threading.Event()
        renderer = FakeRenderer()
        renderer.on_render = lambda call: release.wait(timeout=10)
        strict = make_manager(renderer, duplicate_policy="reject")
        app.dependency_overrides[get_export_manager] = lambda: strict
        make_album(contents=[content_factory()])

        first = _create(client, owner_headers)
        second = _create(client, owner_headers)
        release.set()
        strict.wait(first.json()["taskId"], timeout=30)

        assert first.status_code == 200
        assert second.status_code == 409


class TestTaskQueries:
    """Tests for progress, listing and download lookups."""

    def test_progress_of_unknown_task(self, client, owner_headers):
        response = client.get("/api/pdf/tasks/does-not-exist/progress", headers=owner_headers)
        assert response.status_code == 404

    def test_progress_of_another_users_task(self, client, manager, make_album, content_factory, owner_headers, other_headers):
        make_album(contents=[content_factory()])
        task_id = _create(client, owner_headers).json()["taskId"]
        manager.wait(task_id, timeout=30)

        assert client.get(f"/api/pdf/tasks/{task_id}/progress", headers=other_headers).status_code == 404
        assert client.get(f"/api/pdf/tasks/{task_id}/download", headers=other_headers).status_code == 404

    def test_download_before_completion(self, client, tasks, make_album, content_factory, owner_headers):
        make_album(contents=[content_factory()])
        tasks.create_task("queued-task", OWNER, "album-1")

        response = client.get("/api/pdf/tasks/queued-task/download", headers=owner_headers)

        assert response.status_code == 400

    def test_download_with_missing_artifact(self, client, manager, make_album, content_factory, owner_headers):
        make_album(contents=[content_factory()])
        task_id = _create(client, owner_headers).json()["taskId"]
        manager.wait(task_id, timeout=30)
        os.remove(manager.get_task(OWNER, task_id).artifact_path)

        response = client.get(f"/api/pdf/tasks/{task_id}/download", headers=owner_headers)

        assert response.status_code == 404

    def test_list_newest_first(self, client, manager, make_album, content_factory, owner_headers):
        make_album("album-1", contents=[content_factory()], title="First")
        make_album("album-2", contents=[content_factory()], title="Second")
        first = _create(client, owner_headers, "album-1").json()["taskId"]
        manager.wait(first, timeout=30)
        second = _create(client, owner_headers, "album-2").json()["taskId"]
        manager.wait(second, timeout=30)

        listed = client.get("/api/pdf/tasks", headers=owner_headers).json()

        assert [t["taskId"] for t in listed] == [second, first]
        assert [t["albumTitle"] for t in listed] == ["Second", "First"]
        assert all(t["status"] == "completed" for t in listed)


class TestRetiredRoutes:
    def test_synchronous_album_export_is_gone(self, client, owner_headers):
        response = client.get("/api/pdf/album/album-1", headers=owner_headers)

        assert response.status_code == 410
        assert response.json()["deprecated"] is True

    def test_tasks_cannot_be_cancelled(self, client, manager, make_album, content_factory, owner_headers):
        make_album(contents=[content_factory()])
        task_id = _create(client, owner_headers).json()["taskId"]
        manager.wait(task_id, timeout=30)

        response = client.delete(f"/api/pdf/tasks/{task_id}/progress", headers=owner_headers)

        assert response.status_code == 405
        assert manager.get_task(OWNER, task_id).status == "completed"
