"""Tests for the Data Explorer endpoints."""

import json
from datetime import datetime, timezone

import pytest


URL = "/api/v1/data-receiver"


@pytest.fixture
def three_entries(client, device_headers):
    for i in range(3):
        client.post(URL, json={"id": f"e{i}", "sensorId": "gh-1", "temperature": 20 + i}, headers=device_headers)


def test_list_newest_first_with_limit(client, three_entries):
    body = client.get("/api/data", params={"limit": 2}).json()

    assert body["total"] == 2
    assert [e["id"] for e in body["entries"]] == ["e2", "e1"]


def test_list_filters_by_source(client, services, three_entries):
    other = client.post("/api/sources", json={"name": "Other"}).json()
    client.post(URL, json={"id": "o1", "sensorId": "z"}, headers={"X-API-Key": other["api_key"]})

    body = client.get("/api/data", params={"source_id": other["id"]}).json()

    assert [e["id"] for e in body["entries"]] == ["o1"]


def test_get_and_delete_entry(client, three_entries):
    assert client.get("/api/data/e1").json()["metadata"]["temperature"] == 21

    assert client.delete("/api/data/e1").status_code == 200
    assert client.get("/api/data/e1").status_code == 404
    assert client.delete("/api/data/e1").status_code == 404


def test_clear_all(client, services, three_entries):
    response = client.delete("/api/data")

    assert response.json() == {"success": True, "deleted": 3}
    assert services.data.count() == 0


def test_export_csv_download(client, three_entries):
    response = client.get("/api/data/export", params={"format": "csv"})

    today = datetime.now(timezone.utc).date().isoformat()
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.headers["content-disposition"] == f'attachment; filename="data-export-{today}.csv"'
    lines = response.text.split("\n")
    assert lines[0].startswith("timestamp,id,Source,Sensor ID,File Name")
    assert len(lines) == 4


def test_export_json_download(client, three_entries):
    response = client.get("/api/data/export", params={"format": "json"})

    items = json.loads(response.text)
    assert len(items) == 3
    assert {item["Source"] for item in items} == {"Greenhouse ESP32"}


def test_export_with_no_data(client):
    assert client.get("/api/data/export").text == "No data available"


def test_flatten_keeps_columns_over_metadata(services, three_entries):
    flat = services.data.get_entry("e0").flatten()

    assert flat["id"] == "e0"
    assert flat["sensor_id"] == "gh-1"
    assert flat["temperature"] == 20
    assert "metadata" not in flat


def test_flat_rows(client, three_entries):
    body = client.get("/api/data/flat", params={"limit": 1}).json()

    assert body["total"] == 1
    row = body["rows"][0]
    assert (row["id"], row["sensor_id"], row["temperature"]) == ("e2", "gh-1", 22)
    assert "metadata" not in row


def test_export_flat_csv(client, three_entries):
    response = client.get("/api/data/export", params={"format": "csv", "flat": "true"})

    lines = response.text.split("\n")
    header = lines[0].split(",")
    assert header[:2] == ["timestamp", "id"]
    assert "temperature" in header and "Source" not in header
    assert len(lines) == 4


def test_export_flat_json(client, three_entries):
    response = client.get("/api/data/export", params={"format": "json", "flat": "true"})

    items = json.loads(response.text)
    assert sorted(item["temperature"] for item in items) == [20, 21, 22]
