from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from gallery_importer.api.dependencies import get_application, get_settings
from gallery_importer.main import app

_ITEMS = [
    {"nid": 101, "title": "Spring fair", "gallery_types": [{"name": "Events"}]},
    {"nid": 102, "title": "Harbour walk"},
    {"nid": 103, "title": ""},
]


@pytest.fixture
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    monkeypatch.setenv("GALLERY_IMPORTER_STAGING_DIR", str(tmp_path / "staging"))
    monkeypatch.setenv("GALLERY_IMPORTER_LOG_DIR", str(tmp_path / "logs"))
    # keep the background dispatcher away from jobs stepped by hand
    for name in (
        "ENQUEUE_DELAY_SECONDS",
        "CONTINUE_DELAY_SECONDS",
        "SLOW_STEP_DELAY_SECONDS",
        "LOCK_RETRY_DELAY_SECONDS",
    ):
        monkeypatch.setenv(f"GALLERY_IMPORTER_{name}", "600")
    monkeypatch.delenv("GALLERY_IMPORTER_API_TOKEN", raising=False)
    get_settings.cache_clear()
    get_application.cache_clear()

    with TestClient(app) as test_client:
        yield test_client

    get_settings.cache_clear()
    get_application.cache_clear()


def _upload(client: TestClient, items: list[object], **params: object) -> dict[str, object]:
    response = client.post(
        "/imports",
        params=params,
        content=json.dumps({"items": items}),
        headers={"X-Owner-Id": "editor-1"},
    )
    assert response.status_code in {200, 202}, response.text
    return response.json()


def test_healthz(client: TestClient) -> None:
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "dispatcher": "running"}


def test_small_upload_is_imported_synchronously(client: TestClient) -> None:
    response = client.post("/imports", content=json.dumps(_ITEMS))

    assert response.status_code == 200
    body = response.json()
    assert body["background"] is False
    assert body["total"] == 3
    assert body["created"] == 2
    assert body["skipped"] == 1
    assert "Item 2: skipped (no title)" in body["messages"]

    lookup = client.get("/imports/external-ids/101")
    assert lookup.status_code == 200
    assert lookup.json()["exists"] is True
    assert lookup.json()["title"] == "Spring fair"
    assert client.get("/imports/external-ids/999").json()["exists"] is False


def test_invalid_json_upload_returns_422(client: TestClient) -> None:
    response = client.post("/imports", content=b"{broken")

    assert response.status_code == 422
    assert response.json()["detail"]["error"] == "invalid_payload"
    assert response.json()["detail"]["message"].startswith("Invalid JSON")


def test_inline_processing_failure_is_not_reported_as_bad_payload(
    client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def unavailable(name: str) -> object:
        raise RuntimeError("database unavailable")

    catalog = get_application().import_service._galleries
    monkeypatch.setattr(catalog, "find_or_create_term", unavailable)

    response = client.post("/imports", content=json.dumps(_ITEMS))

    assert response.status_code == 500
    assert response.json()["detail"] == {
        "error": "import_failed",
        "message": "Unexpected error: database unavailable",
    }


def test_empty_upload_returns_400(client: TestClient) -> None:
    response = client.post("/imports", content=b"   ")

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "invalid"


def test_background_import_runs_by_steps_and_notifies_owner(client: TestClient) -> None:
    enqueued = _upload(client, _ITEMS, background="true")

    assert enqueued["background"] is True
    job_id = enqueued["jobId"]
    assert enqueued["logUrl"] == f"/imports/jobs/{job_id}/log"

    status = client.get(f"/imports/jobs/{job_id}", headers={"X-Owner-Id": "editor-1"})
    assert status.status_code == 200
    assert status.json()["status"] == "queued"

    step = client.post(f"/imports/jobs/{job_id}/step")
    assert step.status_code == 200
    assert step.json()["disposition"] == "complete"
    assert step.json()["job"]["created"] == 2
    assert step.json()["job"]["skipped"] == 1
    assert step.json()["job"]["done"] is True

    notifications = client.get("/notifications", headers={"X-Owner-Id": "editor-1"})
    assert notifications.status_code == 200
    (notice,) = notifications.json()["notifications"]
    assert notice["jobId"] == job_id
    assert notice["message"] == (
        f"Gallery import complete (job {job_id}): 2 created, 0 updated, 1 skipped."
    )
    again = client.get("/notifications", headers={"X-Owner-Id": "editor-1"})
    assert again.json() == {"notifications": []}

    log_text = client.get(f"/imports/jobs/{job_id}/log").text
    assert f"Job {job_id} queued." in log_text
    assert "Item 2: skipped (no title)" in log_text

    listed = client.get("/imports/jobs", headers={"X-Owner-Id": "editor-1"}).json()["jobs"]
    assert [item["jobId"] for item in listed] == [job_id]
    assert listed[0]["status"] == "complete"


def test_control_commands_follow_job_status(client: TestClient) -> None:
    items = [{"nid": nid, "title": f"Gallery {nid}"} for nid in range(1, 8)]
    job_id = _upload(client, items, background="true")["jobId"]

    assert client.post(f"/imports/jobs/{job_id}/step").json()["disposition"] == "continuing"

    paused = client.post(f"/imports/jobs/{job_id}/control", json={"action": "pause"})
    assert paused.status_code == 200
    assert paused.json() == {"jobId": job_id, "status": "paused", "success": True}

    conflict = client.post(f"/imports/jobs/{job_id}/control", json={"action": "pause"})
    assert conflict.status_code == 409
    assert conflict.json()["detail"]["error"] == "cannot_pause"

    assert client.post(f"/imports/jobs/{job_id}/step").json()["disposition"] == "ignored"

    resumed = client.post(f"/imports/jobs/{job_id}/control", json={"action": "resume"})
    assert resumed.json()["status"] == "queued"

    stopped = client.post(f"/imports/jobs/{job_id}/control", json={"action": "stop"})
    assert stopped.json()["status"] == "stopped"

    step = client.post(f"/imports/jobs/{job_id}/step").json()
    assert step["disposition"] == "ignored"
    assert step["job"]["processed"] == 5


def test_unknown_control_action_returns_422(client: TestClient) -> None:
    job_id = _upload(client, _ITEMS, background="true")["jobId"]

    response = client.post(f"/imports/jobs/{job_id}/control", json={"action": "restart"})

    assert response.status_code == 422


def test_jobs_are_private_to_their_owner(client: TestClient) -> None:
    job_id = _upload(client, _ITEMS, background="true")["jobId"]

    foreign = client.get(f"/imports/jobs/{job_id}", headers={"X-Owner-Id": "editor-2"})
    assert foreign.status_code == 403
    assert foreign.json()["detail"]["error"] == "forbidden"

    missing = client.get("/imports/jobs/does-not-exist")
    assert missing.status_code == 404

    other_kind = client.get(f"/deletions/jobs/{job_id}")
    assert other_kind.status_code == 404

    listed = client.get("/imports/jobs", headers={"X-Owner-Id": "editor-2"})
    assert listed.json() == {"jobs": []}


def test_notifications_require_owner_header(client: TestClient) -> None:
    response = client.get("/notifications")

    assert response.status_code == 400


def test_gallery_deletion_endpoint(client: TestClient) -> None:
    client.post("/imports", content=json.dumps(_ITEMS))
    gallery_id = client.get("/imports/external-ids/102").json()["galleryId"]

    deleted = client.delete(f"/galleries/{gallery_id}")
    assert deleted.status_code == 200
    assert deleted.json()["deleted"] is True
    assert deleted.json()["background"] is False

    assert client.get("/imports/external-ids/102").json()["exists"] is False
    missing = client.delete(f"/galleries/{gallery_id}")
    assert missing.status_code == 404
    assert client.get("/deletions/jobs").json() == {"jobs": []}


def test_api_token_is_enforced(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GALLERY_IMPORTER_STAGING_DIR", str(tmp_path / "staging"))
    monkeypatch.setenv("GALLERY_IMPORTER_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("GALLERY_IMPORTER_API_TOKEN", "s3cret")
    get_settings.cache_clear()
    get_application.cache_clear()

    with TestClient(app) as client:
        unauthorized = client.get("/imports/jobs")
        wrong = client.get("/imports/jobs", headers={"Authorization": "Bearer nope"})
        authorized = client.get("/imports/jobs", headers={"Authorization": "Bearer s3cret"})
        health = client.get("/healthz")

    get_settings.cache_clear()
    get_application.cache_clear()

    assert unauthorized.status_code == 401
    assert unauthorized.json()["detail"]["error"] == "unauthorized"
    assert wrong.status_code == 401
    assert authorized.status_code == 200
    assert health.status_code == 200
