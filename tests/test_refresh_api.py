import os

import pytest
from fastapi.testclient import TestClient

from app.core.config import settings
from app.db.sqlite import sqlite_db
from app.main import app
from app.models.refresh import LastRunInfo, ResolveErrorKind, ResolveResult
from app.services.refresh.errors import RefreshBusyError
from app.services.refresh.orchestrator import refresh_orchestrator
from app.services.refresh.resolver import video_resolver

pytestmark = pytest.mark.unit

SECRET = "cron-secret"


@pytest.fixture()
def temp_db(tmp_path):
    old_db_path = sqlite_db._db_path
    try:
        db_path = tmp_path / "refresh-api.db"
        sqlite_db._db_path = str(db_path)
        sqlite_db._ensure_data_dir()
        sqlite_db._init_db()
        sqlite_db._last_event_cleanup_at = 0.0
        yield db_path
    finally:
        sqlite_db._db_path = old_db_path
        if os.path.exists(os.path.dirname(old_db_path)):
            sqlite_db._init_db()


@pytest.fixture()
def client(temp_db, monkeypatch):
    del temp_db
    monkeypatch.setattr(settings, "secret_key", SECRET)
    return TestClient(app, raise_server_exceptions=False)


def test_banner_and_health(client):
    resp = client.get("/")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "running"
    assert data["timestamp"]

    assert client.get("/health").json() == {"status": "healthy"}


def test_trigger_starts_background_run(monkeypatch, client):
    triggers = []
    monkeypatch.setattr(refresh_orchestrator, "start_background", lambda *, trigger: triggers.append(trigger))

    resp = client.post("/update-urls", headers={"x-secret-key": SECRET})
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "started"
    assert data["message"] == "URL update process started"
    assert triggers == ["http"]


@pytest.mark.parametrize("headers", [{}, {"x-secret-key": "wrong"}])
def test_trigger_rejects_bad_secret(monkeypatch, client, headers):
    triggers = []
    monkeypatch.setattr(refresh_orchestrator, "start_background", lambda *, trigger: triggers.append(trigger))

    resp = client.post("/update-urls", headers=headers)
    assert resp.status_code == 401
    assert resp.json()["error"]["type"] == "http_error"
    assert triggers == []


def test_trigger_disabled_without_configured_secret(monkeypatch, client):
    monkeypatch.setattr(settings, "secret_key", "")
    resp = client.post("/update-urls", headers={"x-secret-key": ""})
    assert resp.status_code == 503


def test_trigger_while_running_returns_409(monkeypatch, client):
    def _busy(*, trigger):
        raise RefreshBusyError(trigger)

    monkeypatch.setattr(refresh_orchestrator, "start_background", _busy)
    resp = client.post("/update-urls", headers={"x-secret-key": SECRET})
    assert resp.status_code == 409
    data = resp.json()
    assert data["error"]["type"] == "refresh_busy"
    assert data["detail"] == "URL update already running"


def test_status_reports_queue_counts_and_last_run(monkeypatch, client):
    sqlite_db.create_url_update_task(table_name="episodes", row_id=1, facebook_video_id="fb-1")
    done = sqlite_db.create_url_update_task(table_name="movies", row_id=2, facebook_video_id="fb-2")
    sqlite_db.finish_url_update_task(done, "completed")
    monkeypatch.setattr(
        refresh_orchestrator,
        "_last_run",
        LastRunInfo(
            trigger="cron",
            started_at="2024-01-01T00:00:00+00:00",
            finished_at="2024-01-01T00:02:00+00:00",
            success=True,
            stats={"updated": 3},
        ),
    )

    resp = client.get("/status")
    assert resp.status_code == 200
    data = resp.json()
    assert (data["pending"], data["completed"], data["failed"]) == (1, 1, 0)
    assert data["running"] is False
    assert data["last_run"]["trigger"] == "cron"
    assert data["last_run"]["stats"]["updated"] == 3
    assert data["message"] == "Queue runs every 24 hours"


def test_test_video_reports_resolver_result(monkeypatch, client):
    seen = []

    async def _fake_resolve(video_id, budget):
        seen.append((video_id, budget.ceiling))
        budget.consume()
        return ResolveResult.fail(ResolveErrorKind.PERMISSION_DENIED, "No permission")

    monkeypatch.setattr(video_resolver, "resolve", _fake_resolve)

    resp = client.get("/test-video/123456", headers={"x-secret-key": SECRET})
    assert resp.status_code == 200
    data = resp.json()
    assert data["video_id"] == "123456"
    assert data["result"] == {"success": False, "kind": "permission_denied", "message": "No permission"}
    assert seen == [("123456", 1)]
    assert sqlite_db.count_url_update_tasks_by_status() == {}


def test_test_video_requires_secret(client):
    assert client.get("/test-video/1").status_code == 401


def test_logs_lists_event_logs_with_source_filter(client):
    sqlite_db.create_event_log(source="refresh", action="refresh.run.start", message="start")
    sqlite_db.create_event_log(source="system", action="app.startup.record_kinds", message="ok")

    resp = client.get("/logs", params={"source": "refresh", "limit": 10}, headers={"x-secret-key": SECRET})
    assert resp.status_code == 200
    items = resp.json()["items"]
    assert [item["action"] for item in items] == ["refresh.run.start"]


def test_logs_limit_is_validated(client):
    resp = client.get("/logs", params={"limit": 0}, headers={"x-secret-key": SECRET})
    assert resp.status_code == 422
    assert resp.json()["error"]["type"] == "validation_error"


def test_requests_are_recorded_as_event_logs(client):
    client.get("/status")
    logs = sqlite_db.list_event_logs(source="api", limit=10)
    assert any(item["path"] == "/status" and item["status_code"] == 200 for item in logs)


def test_unexpected_error_returns_500(monkeypatch, client):
    def _boom():
        raise RuntimeError("boom")

    monkeypatch.setattr(refresh_orchestrator.store, "summary", _boom)
    resp = client.get("/status")
    assert resp.status_code == 500
    data = resp.json()
    assert data["detail"] == "服务异常，请稍后再试"
    assert data["error"]["type"] == "internal_error"
