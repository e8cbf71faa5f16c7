"""Tests for usage aggregation"""
from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from devicehub.models.device import Device
from devicehub.models.device_log import DeviceLog
from devicehub.models.user import User
from devicehub.services import usage_reports
from devicehub.utils.errors import ValidationError


@pytest.fixture
def owner(db):
    user = User(name="Owner", email="owner@example.com", password_hash="x")
    db.add(user)
    db.commit()
    return user


def _log(device, value, ts, event="units_consumed"):
    return DeviceLog(device_id=device.id, event=event, value=value, timestamp=ts)


def test_bucket_key():
    ts = datetime(2024, 3, 5, 14, 42)
    assert usage_reports.bucket_key(ts, "day") == (2024, 3, 5)
    assert usage_reports.bucket_key(ts, "hour") == (2024, 3, 5, 14)


def test_format_usage_report():
    report = usage_reports.format_usage_report([((2024, 3, 5, 9), 1.5), ((2024, 3, 5, 10), 2.0)], "hour")
    assert report == {
        "labels": ["2024-03-05 09:00", "2024-03-05 10:00"],
        "datasets": [{"label": "units_consumed", "data": [1.5, 2.0]}],
    }


def test_report_without_devices(db, owner):
    report = usage_reports.generate_usage_report_for_user(
        db, owner.id, datetime(2024, 1, 1), datetime(2024, 12, 31), "day"
    )
    assert report == {"labels": [], "datasets": [{"label": "units_consumed", "data": []}]}


def test_daily_report_across_devices(db, owner):
    meter = Device(name="m", type="meter", owner_id=owner.id)
    lamp = Device(name="l", type="light", owner_id=owner.id)
    other_owner = User(name="Other", email="other@example.com", password_hash="x")
    db.add_all([meter, lamp, other_owner])
    db.commit()
    foreign = Device(name="f", type="meter", owner_id=other_owner.id)
    db.add(foreign)
    db.commit()

    db.add_all([
        _log(meter, 1.0, datetime(2024, 3, 6, 8)),
        _log(lamp, 2.0, datetime(2024, 3, 6, 20)),
        _log(meter, 4.0, datetime(2024, 3, 4, 12)),
        _log(meter, 100.0, datetime(2024, 3, 6, 9), event="temperature"),
        _log(foreign, 50.0, datetime(2024, 3, 6, 9)),
        _log(meter, 7.0, datetime(2024, 2, 1, 0)),  # outside the range
    ])
    db.commit()

    report = usage_reports.generate_usage_report_for_user(
        db, owner.id, datetime(2024, 3, 1), datetime(2024, 3, 31, 23, 59, 59), "day"
    )
    # Sorted ascending, no zero-filled gap for 2024-03-05
    assert report["labels"] == ["2024-03-04", "2024-03-06"]
    assert report["datasets"][0]["data"] == [4.0, 3.0]


def test_hourly_report(db, owner):
    meter = Device(name="m", type="meter", owner_id=owner.id)
    db.add(meter)
    db.commit()
    db.add_all([
        _log(meter, 1.0, datetime(2024, 3, 6, 8, 5)),
        _log(meter, 1.5, datetime(2024, 3, 6, 8, 55)),
        _log(meter, 2.0, datetime(2024, 3, 6, 23, 0)),
    ])
    db.commit()

    report = usage_reports.generate_usage_report_for_user(
        db, owner.id, datetime(2024, 3, 6), datetime(2024, 3, 7), "hour"
    )
    assert report["labels"] == ["2024-03-06 08:00", "2024-03-06 23:00"]
    assert report["datasets"][0]["data"] == [2.5, 2.0]


def test_invalid_group_by(db, owner):
    with pytest.raises(ValidationError):
        usage_reports.generate_usage_report_for_user(db, owner.id, datetime(2024, 1, 1), datetime(2024, 1, 2), "week")


def test_usage_report_endpoint(client: TestClient, auth_headers: dict, sample_device_data: dict):
    device_id = client.post("/devices", json=sample_device_data, headers=auth_headers).json()["device"]["id"]
    client.post(
        f"/devices/{device_id}/logs",
        json={"event": "units_consumed", "value": 3, "timestamp": "2024-03-06T10:30:00Z"},
        headers=auth_headers,
    )

    response = client.get(
        "/usage-reports?startDate=2024-03-01&endDate=2024-03-06&groupBy=hour",
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert response.json() == {
        "labels": ["2024-03-06 10:00"],
        "datasets": [{"label": "units_consumed", "data": [3.0]}],
    }


def test_usage_report_endpoint_validation(client: TestClient, auth_headers: dict):
    missing = client.get("/usage-reports?endDate=2024-03-06", headers=auth_headers)
    assert missing.status_code == 400
    assert missing.json()["message"] == "startDate is required"

    bad_group = client.get("/usage-reports?startDate=2024-03-01&endDate=2024-03-06&groupBy=week", headers=auth_headers)
    assert bad_group.status_code == 400

    assert client.get("/usage-reports?startDate=2024-03-01&endDate=2024-03-06").status_code == 401
