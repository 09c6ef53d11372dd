"""Tests for the Dropbox client, the backup manager and the Backups endpoints."""

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from apially.models import (
    BackupStatus,
    BackupType,
    CreateDropboxConfigRequest,
    ExportFormat,
    UpdateDropboxConfigRequest,
)


def form(request) -> dict:
    return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}


def today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


@pytest.fixture
def config(services):
    return services.backups.create_config(
        CreateDropboxConfigRequest(dropbox_path="/ApiAlly", dropbox_token="sl.manual", daily_backup_enabled=True)
    )


@pytest.fixture
def two_entries(services, source):
    services.data.ingest(source, {"id": "a", "sensorId": "gh-1", "temperature": 20}, client_ip="10.0.0.1")
    services.data.ingest(source, {"id": "b", "sensorId": "gh-1", "temperature": 21}, client_ip="10.0.0.1")


# =============================================================================
# DropboxService
# =============================================================================

@pytest.mark.asyncio
async def test_upload_file_sends_dropbox_headers(services, fake_dropbox):
    result = await services.dropbox.upload_file("sl.tok", "/ApiAlly/", "a.csv", "x,y")

    assert result["path_display"] == "/ApiAlly/a.csv"
    request = fake_dropbox.uploads()[0]
    assert request.headers["Authorization"] == "Bearer sl.tok"
    assert request.headers["Content-Type"] == "application/octet-stream"
    assert request.content == b"x,y"


@pytest.mark.asyncio
async def test_connection_test_uploads_then_deletes(services, fake_dropbox):
    assert await services.dropbox.test_connection("/ApiAlly", "sl.tok") is True

    assert [r.url.path for r in fake_dropbox.requests] == ["/2/files/upload", "/2/files/delete_v2"]
    assert fake_dropbox.uploads()[0].content == b"Connection test"


@pytest.mark.asyncio
async def test_connection_test_fails_on_rejected_upload(services, fake_dropbox):
    fake_dropbox.upload_status = 401

    assert await services.dropbox.test_connection("/ApiAlly", "sl.bad") is False
    assert [r.url.path for r in fake_dropbox.requests] == ["/2/files/upload"]


@pytest.mark.asyncio
async def test_connection_test_fails_when_cleanup_cannot_reach_dropbox(services, fake_dropbox):
    fake_dropbox.delete_error = httpx.ConnectError("connection refused")

    assert await services.dropbox.test_connection("/ApiAlly", "sl.tok") is False
    assert [r.url.path for r in fake_dropbox.requests] == ["/2/files/upload", "/2/files/delete_v2"]


def test_generate_auth_url(services):
    url = services.dropbox.generate_auth_url("app-key", "http://localhost/cb", state="cfg-1")

    parsed = urlparse(url)
    assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "https://www.dropbox.com/oauth2/authorize"
    assert {k: v[0] for k, v in parse_qs(parsed.query).items()} == {
        "client_id": "app-key",
        "response_type": "code",
        "redirect_uri": "http://localhost/cb",
        "token_access_type": "offline",
        "state": "cfg-1",
    }


@pytest.mark.asyncio
async def test_exchange_code_for_tokens(services, fake_dropbox):
    tokens = await services.dropbox.exchange_code_for_tokens("app-key", "app-secret", "the-code", "http://cb")

    assert tokens.access_token == "sl.fresh-token"
    assert tokens.refresh_token == "refresh-abc"
    request = fake_dropbox.requests[0]
    assert request.headers["Authorization"].startswith("Basic ")
    assert form(request) == {"grant_type": "authorization_code", "code": "the-code", "redirect_uri": "http://cb"}


@pytest.mark.asyncio
async def test_token_request_failure_returns_none(services, fake_dropbox):
    fake_dropbox.token_status = 400

    assert await services.dropbox.refresh_access_token("app-key", "app-secret", "r") is None


# =============================================================================
# BackupManager: configs and OAuth
# =============================================================================

def test_config_paths_must_be_absolute(services, config):
    with pytest.raises(ValueError):
        services.backups.create_config(CreateDropboxConfigRequest(dropbox_path="ApiAlly"))
    with pytest.raises(ValueError):
        services.backups.update_config(config.id, UpdateDropboxConfigRequest(dropbox_path="nope"))


def test_new_token_clears_expiry(services, config):
    config.access_token_expires_at = datetime.now(timezone.utc)
    services.backups._save_config(config)

    updated = services.backups.update_config(config.id, UpdateDropboxConfigRequest(dropbox_token="sl.other"))

    assert updated.dropbox_token == "sl.other"
    assert updated.access_token_expires_at is None
    assert services.backups.update_config("missing", UpdateDropboxConfigRequest()) is None


def test_authorize_url_carries_config_id(services, config):
    url = services.backups.authorize_url(config.id)

    query = parse_qs(urlparse(url).query)
    assert query["state"] == [config.id]
    assert query["client_id"] == ["app-key"]
    assert query["redirect_uri"] == ["http://localhost:8000/api/dropbox/oauth/callback"]
    assert services.backups.authorize_url("missing") is None


def test_authorize_url_without_app_key(services, config):
    services.backups.default_app_key = ""

    with pytest.raises(ValueError):
        services.backups.authorize_url(config.id)


@pytest.mark.asyncio
async def test_complete_oauth_stores_tokens(services, config, fake_dropbox):
    updated = await services.backups.complete_oauth(config.id, "the-code")

    assert updated.dropbox_token == "sl.fresh-token"
    assert updated.refresh_token == "refresh-abc"
    assert updated.access_token_expires_at > datetime.now(timezone.utc) + timedelta(hours=3)
    assert services.backups.get_config(config.id).dropbox_token == "sl.fresh-token"
    assert form(fake_dropbox.requests[0])["redirect_uri"] == "http://localhost:8000/api/dropbox/oauth/callback"

    assert await services.backups.complete_oauth("missing", "code") is None


@pytest.mark.asyncio
async def test_complete_oauth_rejected_code(services, config, fake_dropbox):
    fake_dropbox.token_status = 400

    with pytest.raises(ValueError):
        await services.backups.complete_oauth(config.id, "bad-code")


# =============================================================================
# BackupManager: backups
# =============================================================================

@pytest.mark.asyncio
async def test_run_backup_uploads_and_logs(services, config, two_entries, fake_dropbox):
    result = await services.backups.run_backup(config_id=config.id)

    file_name = f"backup_{today()}.csv"
    assert result["status"] == "success"
    assert result["file_name"] == file_name
    assert result["path"] == f"/ApiAlly/{file_name}"
    assert result["record_count"] == 2

    upload = fake_dropbox.uploads()[0]
    assert upload.headers["Authorization"] == "Bearer sl.manual"
    assert upload.content.decode().startswith("timestamp,id,Source,Sensor ID,File Name")

    log = services.backups.list_logs()[0]
    assert log.id == result["log_id"]
    assert log.status == BackupStatus.COMPLETED
    assert log.backup_type == BackupType.MANUAL
    assert log.dropbox_url == f"/ApiAlly/{file_name}"
    assert log.completed_at is not None

    assert all(entry.backed_up_dropbox for entry in services.data.all_entries())


@pytest.mark.asyncio
async def test_run_backup_json_with_explicit_path(services, two_entries, fake_dropbox):
    result = await services.backups.run_backup(
        dropbox_path="/Elsewhere", dropbox_token="sl.direct", export_format=ExportFormat.JSON
    )

    assert result["path"] == f"/Elsewhere/backup_{today()}.json"
    assert services.backups.list_logs()[0].config_id is None


@pytest.mark.asyncio
async def test_run_backup_failure_is_logged(services, config, two_entries, fake_dropbox):
    fake_dropbox.upload_status = 500

    result = await services.backups.run_backup(config_id=config.id)

    assert result["status"] == "error"
    assert result["error_type"] == "http_error"
    assert result["error_message"] == "Dropbox upload failed: HTTP 500"
    log = services.backups.list_logs()[0]
    assert log.status == BackupStatus.FAILED
    assert log.error_message == "Dropbox upload failed: HTTP 500"
    assert not any(entry.backed_up_dropbox for entry in services.data.all_entries())


@pytest.mark.asyncio
async def test_run_backup_unreadable_upload_reply_fails_the_log(services, config, two_entries, fake_dropbox):
    fake_dropbox.upload_body = b"<html>gateway hiccup</html>"

    result = await services.backups.run_backup(config_id=config.id)

    assert result["status"] == "error"
    assert result["error_type"] == "unknown_error"
    log = services.backups.list_logs()[0]
    assert log.id == result["log_id"]
    assert log.status == BackupStatus.FAILED
    assert log.completed_at is not None
    assert not any(entry.backed_up_dropbox for entry in services.data.all_entries())


@pytest.mark.asyncio
async def test_run_backup_connection_error_fails_the_log(services, config, two_entries, monkeypatch):
    async def unreachable(*args, **kwargs):
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(services.dropbox, "upload_file", unreachable)

    result = await services.backups.run_backup(config_id=config.id)

    assert result["error_type"] == "connection_error"
    assert services.backups.list_logs()[0].status == BackupStatus.FAILED


@pytest.mark.asyncio
async def test_run_backup_error_types(services):
    assert (await services.backups.run_backup())["error_type"] == "not_configured"
    assert (await services.backups.run_backup(config_id="missing"))["error_type"] == "not_found"
    bad_path = await services.backups.run_backup(dropbox_path="relative", dropbox_token="sl.x")
    assert bad_path["error_type"] == "invalid_config"


@pytest.mark.asyncio
async def test_run_backup_refreshes_expiring_token(services, fake_dropbox):
    config = services.backups.create_config(
        CreateDropboxConfigRequest(dropbox_path="/ApiAlly", dropbox_token="sl.old", refresh_token="r-1")
    )
    config.access_token_expires_at = datetime.now(timezone.utc) + timedelta(seconds=30)
    services.backups._save_config(config)

    result = await services.backups.run_backup()

    assert result["status"] == "success"
    assert form(fake_dropbox.requests[0]) == {"grant_type": "refresh_token", "refresh_token": "r-1"}
    assert fake_dropbox.uploads()[0].headers["Authorization"] == "Bearer sl.fresh-token"
    assert services.backups.get_config(config.id).dropbox_token == "sl.fresh-token"


@pytest.mark.asyncio
async def test_run_backup_with_failed_refresh(services, fake_dropbox):
    services.backups.create_config(CreateDropboxConfigRequest(dropbox_path="/ApiAlly", refresh_token="r-1"))
    fake_dropbox.token_status = 400

    result = await services.backups.run_backup()

    assert result["error_type"] == "auth_error"
    assert fake_dropbox.uploads() == []


@pytest.mark.asyncio
async def test_manager_connection_test(services, config):
    assert await services.backups.test_connection(config_id=config.id) == {
        "status": "success",
        "message": "Dropbox connection successful",
    }
    assert (await services.backups.test_connection())["error_type"] == "invalid_config"
    assert (await services.backups.test_connection(config_id="missing"))["error_type"] == "not_found"


@pytest.mark.asyncio
async def test_scheduled_backups_only_cover_enabled_configs(services, config, two_entries, fake_dropbox):
    services.backups.create_config(CreateDropboxConfigRequest(dropbox_path="/Manual", dropbox_token="sl.m"))
    services.backups.create_config(
        CreateDropboxConfigRequest(dropbox_path="/Off", dropbox_token="sl.o", daily_backup_enabled=True, is_active=False)
    )

    summary = await services.backups.process_scheduled_backups()

    assert summary["processed_count"] == 1
    assert summary["success_count"] == 1
    assert summary["error_count"] == 0
    assert summary["results"][0]["config_id"] == config.id
    assert services.backups.list_logs()[0].backup_type == BackupType.SCHEDULED
    # connection test upload, then the backup itself
    assert len(fake_dropbox.uploads()) == 2




@pytest.mark.asyncio
async def test_scheduled_backup_failure_sends_alert(services, config, configured_email_service, fake_smtp, fake_dropbox):
    services.backups.email_service = configured_email_service
    fake_dropbox.upload_status = 403

    summary = await services.backups.process_scheduled_backups()

    assert summary["error_count"] == 1
    assert summary["results"][0]["error_message"] == "Connection test failed: Dropbox connection failed"
    assert services.backups.list_logs() == []
    alert = fake_smtp.sent[0]
    assert alert["Subject"] == "Backup Failed: /ApiAlly"
    assert alert["To"] == "ops@example.com"


# =============================================================================
# Endpoints
# =============================================================================

def test_config_endpoints_hide_secrets(client):
    response = client.post(
        "/api/dropbox/configs",
        json={"dropbox_path": "/ApiAlly", "dropbox_token": "sl.secret", "app_secret": "shh"},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["has_token"] is True
    assert body["has_refresh_token"] is False
    assert "dropbox_token" not in body
    assert "app_secret" not in body

    config_id = body["id"]
    assert [c["id"] for c in client.get("/api/dropbox/configs").json()] == [config_id]

    patched = client.patch(f"/api/dropbox/configs/{config_id}", json={"daily_backup_enabled": True})
    assert patched.json()["daily_backup_enabled"] is True

    assert client.delete(f"/api/dropbox/configs/{config_id}").status_code == 200
    assert client.get(f"/api/dropbox/configs/{config_id}").status_code == 404


def test_config_endpoint_rejects_relative_path(client):
    assert client.post("/api/dropbox/configs", json={"dropbox_path": "ApiAlly"}).status_code == 400


def test_backup_endpoint_and_logs(client, config, two_entries):
    result = client.post("/api/dropbox/backup", json={"config_id": config.id}).json()

    assert result["status"] == "success"
    logs = client.get("/api/backup-logs").json()
    assert [(log["id"], log["status"]) for log in logs] == [(result["log_id"], "completed")]

    assert client.delete(f"/api/backup-logs/{result['log_id']}").status_code == 200
    assert client.delete(f"/api/backup-logs/{result['log_id']}").status_code == 404


def test_backup_endpoint_errors(client):
    assert client.post("/api/dropbox/backup", json={"config_id": "missing"}).status_code == 404

    response = client.post("/api/dropbox/backup", json={})
    assert response.status_code == 200
    assert response.json()["error_type"] == "not_configured"


def test_test_connection_endpoint_is_rate_limited(client):
    body = {"dropbox_path": "/ApiAlly", "dropbox_token": "sl.tok"}

    first = client.post("/api/dropbox/test-connection", json=body)
    assert first.json() == {"status": "success", "message": "Dropbox connection successful"}
    assert first.headers["X-RateLimit-Limit"] == "5"
    assert first.headers["X-RateLimit-Remaining"] == "4"

    for _ in range(4):
        client.post("/api/dropbox/test-connection", json=body)
    blocked = client.post("/api/dropbox/test-connection", json=body)

    assert blocked.status_code == 429
    assert blocked.headers["Retry-After"] == "3600"


def test_scheduled_backup_endpoint(client, config):
    body = client.post("/api/dropbox/backup/scheduled").json()

    assert body["success"] is True
    assert body["processed_count"] == 1


def test_authorize_url_endpoint(client, config):
    url = client.get("/api/dropbox/oauth/authorize-url", params={"config_id": config.id}).json()["authorize_url"]

    assert url.startswith("https://www.dropbox.com/oauth2/authorize?")
    assert client.get("/api/dropbox/oauth/authorize-url", params={"config_id": "missing"}).status_code == 404


def test_oauth_exchange_endpoint(client, config):
    response = client.post("/api/dropbox/oauth/exchange", json={"config_id": config.id, "code": "c"})

    assert response.status_code == 200
    assert response.json()["has_refresh_token"] is True


def test_oauth_callback_redirects_to_dashboard(client, services, config):
    response = client.get(
        "/api/dropbox/oauth/callback",
        params={"code": "the-code", "state": config.id},
        follow_redirects=False,
    )

    assert response.status_code == 307
    assert response.headers["location"] == "http://localhost:5173/?dropbox=connected"
    assert services.backups.get_config(config.id).refresh_token == "refresh-abc"


@pytest.mark.parametrize(
    "params",
    [{"error": "access_denied"}, {"code": "c"}, {"code": "c", "state": "missing"}],
)
def test_oauth_callback_failures(client, params):
    response = client.get("/api/dropbox/oauth/callback", params=params, follow_redirects=False)

    assert response.headers["location"] == "http://localhost:5173/?dropbox=error"


def test_oauth_callback_skips_dashboard_auth(client, services, config):
    services.dashboard_api_key = "dash-key"

    response = client.get(
        "/api/dropbox/oauth/callback",
        params={"code": "the-code", "state": config.id},
        follow_redirects=False,
    )

    assert response.headers["location"].endswith("?dropbox=connected")
    assert client.get("/api/dropbox/configs").status_code == 401
