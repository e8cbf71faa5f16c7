"""Tests for the asynchronous export pipeline"""
import json
import os

import pytest
from fastapi.testclient import TestClient

from devicehub.config import settings
from devicehub.jobs import functions
from devicehub.main import app
from devicehub.models.device import Device
from devicehub.models.export_job import ExportJob
from devicehub.models.user import User
from devicehub.services import export_service
from devicehub.utils.errors import NotFound


@pytest.fixture
def device_id(client: TestClient, auth_headers: dict, sample_device_data: dict) -> int:
    device_id = client.post("/devices", json=sample_device_data, headers=auth_headers).json()["device"]["id"]
    for day, value in ((2, 1.0), (15, 2.0), (28, 3.0)):
        client.post(
            f"/devices/{device_id}/logs",
            json={"event": "units_consumed", "value": value, "timestamp": f"2024-03-{day:02d}T12:00:00Z"},
            headers=auth_headers,
        )
    return device_id


def _submit(client, headers, device_id, **overrides):
    payload = {"deviceId": device_id, "startDate": "2024-03-01", "endDate": "2024-03-20", "format": "json"}
    payload.update(overrides)
    return client.post("/exports", json=payload, headers=headers)


def test_export_job_completes(client: TestClient, auth_headers: dict, device_id: int):
    response = _submit(client, auth_headers, device_id)
    assert response.status_code == 202
    job_id = response.json()["jobId"]
    assert len(job_id) == 32

    assert app.state.jobs.wait_idle(10)

    job = client.get(f"/exports/{job_id}", headers=auth_headers).json()
    assert job["status"] == "completed"
    assert job["jobId"] == job_id
    assert job["deviceId"] == device_id
    assert job["fileUrl"] == f"{settings.EXPORT_BASE_URL}/{job_id}.json"
    assert job["error"] is None

    with open(os.path.join(settings.EXPORT_DIR, f"{job_id}.json")) as fh:
        rows = json.load(fh)
    assert [row["value"] for row in rows] == [2.0, 1.0]


def test_export_job_csv(client: TestClient, auth_headers: dict, device_id: int):
    job_id = _submit(client, auth_headers, device_id, format="csv", endDate="2024-03-31").json()["jobId"]
    assert app.state.jobs.wait_idle(10)

    job = client.get(f"/exports/{job_id}", headers=auth_headers).json()
    assert job["fileUrl"].endswith(f"{job_id}.csv")

    with open(os.path.join(settings.EXPORT_DIR, f"{job_id}.csv")) as fh:
        lines = fh.read().splitlines()
    assert lines[0] == "id,device_id,event,value,timestamp"
    assert len(lines) == 4


def test_export_job_failure_is_recorded(client: TestClient, auth_headers: dict, device_id: int, monkeypatch):
    def broken_write(db, job, export_dir):
        raise OSError("disk full")

    monkeypatch.setattr(export_service, "write_export_file", broken_write)

    job_id = _submit(client, auth_headers, device_id).json()["jobId"]
    assert app.state.jobs.wait_idle(10)

    job = client.get(f"/exports/{job_id}", headers=auth_headers).json()
    assert job["status"] == "failed"
    assert job["error"] == "disk full"
    assert job["fileUrl"] is None


def test_notification_failure_does_not_fail_export(client: TestClient, auth_headers: dict, device_id: int, monkeypatch):
    def broken_webhook(event, payload):
        raise ConnectionError("webhook unreachable")

    monkeypatch.setattr(functions, "send_webhook", broken_webhook)

    job_id = _submit(client, auth_headers, device_id).json()["jobId"]
    assert app.state.jobs.wait_idle(10)

    job = client.get(f"/exports/{job_id}", headers=auth_headers).json()
    assert job["status"] == "completed"
    assert job["fileUrl"] == f"{settings.EXPORT_BASE_URL}/{job_id}.json"
    assert job["error"] is None


def test_export_job_is_private(client: TestClient, make_user, sample_device_data: dict):
    alice = make_user("alice@example.com")
    bob = make_user("bob@example.com")
    device_id = client.post("/devices", json=sample_device_data, headers=alice).json()["device"]["id"]

    # Bob cannot export Alice's device
    assert _submit(client, bob, device_id).status_code == 404

    job_id = _submit(client, alice, device_id).json()["jobId"]
    assert client.get(f"/exports/{job_id}", headers=bob).status_code == 404
    assert client.get(f"/exports/{job_id}", headers=alice).status_code == 200


def test_export_validation(client: TestClient, auth_headers: dict, device_id: int):
    assert _submit(client, auth_headers, device_id, startDate="not-a-date").status_code == 400
    assert _submit(client, auth_headers, device_id, format="xml").status_code == 400
    assert client.get("/exports/unknown", headers=auth_headers).status_code == 404


def test_export_rate_limit(client: TestClient, auth_headers: dict, device_id: int):
    for _ in range(5):
        assert _submit(client, auth_headers, device_id).status_code == 202

    response = _submit(client, auth_headers, device_id)
    assert response.status_code == 429
    assert "Retry-After" in response.headers


# ---------------------------------------------------------------------------
# Service level
# ---------------------------------------------------------------------------

class RecordingEngine:
    def __init__(self):
        self.sent = []

    def send(self, name, data):
        self.sent.append((name, data))
        return "evt"


@pytest.fixture
def job(db):
    user = User(name="Owner", email="owner@example.com", password_hash="x")
    db.add(user)
    db.commit()
    device = Device(name="m", type="meter", owner_id=user.id)
    db.add(device)
    db.commit()
    job = ExportJob(job_id="job-1", user_id=user.id, device_id=device.id,
                    start_date="2024-03-01", end_date="2024-03-02", format="json")
    db.add(job)
    db.commit()
    return job


def test_status_only_moves_forward(db, job):
    assert export_service.advance_job_status(db, "job-1", "processing") is True
    assert export_service.advance_job_status(db, "job-1", "accepted") is False
    assert export_service.advance_job_status(db, "job-1", "completed", file_url="u") is True
    assert export_service.advance_job_status(db, "job-1", "failed", error="late") is False

    db.refresh(job)
    assert job.status == "completed"
    assert job.error is None


def test_advance_unknown_job(db):
    with pytest.raises(NotFound):
        export_service.advance_job_status(db, "missing", "processing")


def test_submit_sends_event(db, job):
    engine = RecordingEngine()
    job_id = export_service.submit_export_job(db, engine, job.user_id, job.device_id, "2024-03-01", "2024-03-05", "csv")

    assert engine.sent == [(
        "export/large",
        {"jobId": job_id, "userId": job.user_id, "deviceId": job.device_id,
         "startDate": "2024-03-01", "endDate": "2024-03-05", "format": "csv"},
    )]
    assert export_service.get_job_status(db, job_id).status == "accepted"


def test_requeue_unfinished_jobs(db, job):
    done = ExportJob(job_id="job-2", user_id=job.user_id, device_id=job.device_id,
                     start_date="2024-03-01", end_date="2024-03-02", format="json", status="completed")
    db.add(done)
    db.commit()

    engine = RecordingEngine()
    assert export_service.requeue_unfinished_jobs(db, engine) == 1
    assert engine.sent[0][1]["jobId"] == "job-1"
