"""Tests for POST /api/v1/data-receiver."""

import json

import pytest

from apially.routers.ingest import extract_api_key
from apially.services.container import PAYLOAD_DIR_NAME


URL = "/api/v1/data-receiver"


@pytest.mark.parametrize(
    "x_api_key, authorization, expected",
    [
        ("key-a", "Bearer key-b", "key-a"),
        (None, "Bearer key-b", "key-b"),
        (None, "key-c", "key-c"),
        (None, None, None),
        ("  ", "", None),
    ],
)
def test_extract_api_key(x_api_key, authorization, expected):
    assert extract_api_key(x_api_key, authorization) == expected


def test_ingest_stores_entry_and_returns_receipt(client, services, source, device_headers):
    payload = {
        "id": "reading-1",
        "sensorId": "gh-1",
        "timestamp": "2026-01-06T03:00:00Z",
        "temperature": 21.4,
        "userId": "someone",
    }

    response = client.post(URL, json=payload, headers={**device_headers, "X-Forwarded-For": "203.0.113.9, 10.0.0.1"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Data received and processed successfully"
    assert body["receipt"]["id"] == "reading-1"
    assert body["receipt"]["source"] == "Greenhouse ESP32"

    entry = services.data.get_entry("reading-1")
    assert entry.source_id == source.id
    assert entry.sensor_id == "gh-1"
    assert entry.timestamp.isoformat() == "2026-01-06T03:00:00+00:00"
    assert entry.metadata["temperature"] == 21.4
    assert entry.metadata["clientIp"] == "203.0.113.9"
    assert "receivedAt" in entry.metadata
    assert "userId" not in entry.metadata
    assert "sensorId" not in entry.metadata
    assert entry.file_path == f"{source.id}/{entry.file_name}"
    assert entry.file_name.endswith("_reading-1.json")
    assert ":" not in entry.file_name

    assert services.sources.get_source(source.id).data_count == 1


def test_ingest_writes_raw_payload_file(client, services, tmp_path, source, device_headers):
    client.post(URL, json={"sensorId": "gh-1", "co2": 400}, headers=device_headers)

    entry = services.data.list_entries()[0]
    raw = json.loads((tmp_path / "source-data" / entry.file_path).read_text(encoding="utf-8"))

    assert raw["co2"] == 400
    assert raw["sourceId"] == source.id
    assert raw["id"] == entry.id


def test_bearer_authorization_is_accepted(client, source):
    response = client.post(URL, json={"sensorId": "x"}, headers={"Authorization": f"Bearer {source.api_key}"})

    assert response.status_code == 200


def test_missing_api_key(client):
    response = client.post(URL, json={"sensorId": "x"})

    assert response.status_code == 401
    assert set(response.json()) == {"error", "message", "help"}


def test_unknown_or_inactive_key(client, services, source, device_headers):
    assert client.post(URL, json={"sensorId": "x"}, headers={"X-API-Key": "0" * 32}).status_code == 403

    client.patch(f"/api/sources/{source.id}", json={"active": False})
    response = client.post(URL, json={"sensorId": "x"}, headers=device_headers)

    assert response.status_code == 403
    assert response.json() == {"error": "Invalid or inactive API key"}


def test_body_must_be_a_json_object(client, device_headers):
    bad_json = client.post(URL, content=b"{nope", headers={**device_headers, "Content-Type": "application/json"})
    array = client.post(URL, json=[1, 2], headers=device_headers)

    assert bad_json.status_code == 400
    assert bad_json.json()["error"] == "Invalid JSON format"
    assert array.status_code == 400


def test_sensor_id_required_without_schema(client, device_headers):
    response = client.post(URL, json={"temperature": 1}, headers=device_headers)

    assert response.status_code == 400
    assert "sensorId" in response.json()["error"]


def test_global_schema_is_enforced(client, device_headers):
    client.post("/api/schema", json={"fieldTypes": {"temperature": "number"}, "requiredFields": ["temperature"]})

    response = client.post(URL, json={"temperature": "warm"}, headers=device_headers)

    assert response.status_code == 400
    assert response.json() == {
        "error": "Data validation failed",
        "details": ["Field temperature should be type number, got string"],
    }
    # The schema replaces the sensorId rule
    assert client.post(URL, json={"temperature": 3}, headers=device_headers).status_code == 200


def test_source_schema_wins_over_global(client, source, device_headers):
    client.post("/api/schema", json={"fieldTypes": {"temperature": "number"}, "requiredFields": ["temperature"]})
    client.put(
        f"/api/sources/{source.id}/schema",
        json={"fieldTypes": {"co2": "number"}, "requiredFields": ["co2"]},
    )

    assert client.post(URL, json={"co2": 410}, headers=device_headers).status_code == 200
    assert client.post(URL, json={"temperature": 3}, headers=device_headers).status_code == 400


def test_duplicate_id_conflicts(client, device_headers):
    payload = {"id": "same", "sensorId": "x"}

    assert client.post(URL, json=payload, headers=device_headers).status_code == 200
    assert client.post(URL, json=payload, headers=device_headers).status_code == 409


def test_bad_timestamp(client, device_headers):
    response = client.post(URL, json={"sensorId": "x", "timestamp": "yesterday-ish"}, headers=device_headers)

    assert response.status_code == 400


@pytest.mark.parametrize("entry_id", ["../../../../escaped", "a/b", "..\\evil", "x..y"])
def test_ids_that_could_leave_storage_are_rejected(client, services, tmp_path, device_headers, entry_id):
    response = client.post(URL, json={"id": entry_id, "sensorId": "x"}, headers=device_headers)

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid data"
    assert services.data.count() == 0
    assert list((tmp_path / PAYLOAD_DIR_NAME).rglob("*.json")) == []


def test_payload_file_outside_storage_is_not_written(services, source, tmp_path):
    entry = services.data.ingest(source, {"sensorId": "x"})
    entry.file_path = "../outside.json"

    services.data._write_payload_file(entry, {"sensorId": "x"})

    assert not (tmp_path / "outside.json").exists()


# --- Device-published schema ---


SCHEMA_URL = "/api/v1/schema"


def test_device_publishes_schema_for_its_source(client, services, source, device_headers):
    body = {"fieldTypes": {"sensorId": "string", "temperature": "number"}, "requiredFields": ["temperature"]}

    response = client.put(SCHEMA_URL, json=body, headers=device_headers)

    assert response.status_code == 200
    assert response.json() == {"schema": body}
    assert services.sources.get_source(source.id).data_schema.required_fields == ["temperature"]

    rejected = client.post(URL, json={"sensorId": "x"}, headers=device_headers)
    assert rejected.status_code == 400
    assert rejected.json()["details"] == ["Missing required field: temperature"]


@pytest.mark.parametrize(
    "body",
    [
        {"fieldTypes": {}, "requiredFields": ["temperature"]},
        {"fieldTypes": {"temperature": "decimal"}, "requiredFields": []},
    ],
)
def test_device_schema_must_be_valid(client, services, source, device_headers, body):
    response = client.put(SCHEMA_URL, json=body, headers=device_headers)

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid schema"
    assert services.sources.get_source(source.id).data_schema is None


@pytest.mark.parametrize("headers, expected", [({}, 401), ({"X-API-Key": "not-a-real-key"}, 403)])
def test_device_schema_needs_a_valid_key(client, headers, expected):
    body = {"fieldTypes": {"t": "number"}, "requiredFields": []}

    assert client.put(SCHEMA_URL, json=body, headers=headers).status_code == expected
