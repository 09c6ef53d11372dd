"""
Shared fixtures: a temporary data directory, fully wired services, a fake
Dropbox (httpx.MockTransport), a fake SMTP relay and a TestClient.
"""

import json
import smtplib

import httpx
import pytest
from fastapi.testclient import TestClient

from apially.main import app
from apially.models import CreateSourceRequest
from apially.routers import set_services
from apially.services import EmailService, build_services


SMTP_ENV = ["SMTP_HOST", "SMTP_PORT", "SMTP_USER", "SMTP_PASSWORD", "FROM_EMAIL", "ALERT_EMAIL", "ALERT_COOLDOWN"]


# --- Fake SMTP relay ---


class FakeSMTP:
    """Stands in for smtplib.SMTP / SMTP_SSL and remembers what was sent."""

    sent: list = []
    fail_with = None

    def __init__(self, host, port, *args, **kwargs):
        self.host = host
        self.port = port

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        pass

    def login(self, user, password):
        if FakeSMTP.fail_with is not None:
            raise FakeSMTP.fail_with

    def send_message(self, msg):
        FakeSMTP.sent.append(msg)


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.sent = []
    FakeSMTP.fail_with = None
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    monkeypatch.setattr(smtplib, "SMTP_SSL", FakeSMTP)
    return FakeSMTP


@pytest.fixture
def email_service(monkeypatch, fake_smtp) -> EmailService:
    """An unconfigured email service (no SMTP credentials)."""
    for name in SMTP_ENV:
        monkeypatch.delenv(name, raising=False)
    return EmailService()


@pytest.fixture
def configured_email_service(monkeypatch, fake_smtp) -> EmailService:
    for name in SMTP_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SMTP_HOST", "smtp.example.com")
    monkeypatch.setenv("SMTP_PORT", "587")
    monkeypatch.setenv("SMTP_USER", "robot@example.com")
    monkeypatch.setenv("SMTP_PASSWORD", "hunter2")
    monkeypatch.setenv("ALERT_EMAIL", "ops@example.com")
    return EmailService()


# --- Fake Dropbox ---


class FakeDropbox:
    """
    Request handler for httpx.MockTransport.

    Records every request; uploads succeed unless upload_status is changed.
    Set upload_body to reply to uploads with raw (non-JSON) bytes, and
    delete_error to an httpx exception to raise on deletes.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.upload_status = 200
        self.token_status = 200
        self.upload_body = None
        self.delete_error = None
        self.token_payload = {
            "access_token": "sl.fresh-token",
            "token_type": "bearer",
            "expires_in": 14400,
            "refresh_token": "refresh-abc",
        }

    def uploads(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == "/2/files/upload"]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/2/files/upload":
            if self.upload_status != 200:
                return httpx.Response(self.upload_status, json={"error_summary": "path/no_write_permission/"})
            if self.upload_body is not None:
                return httpx.Response(200, content=self.upload_body)
            arg = json.loads(request.headers["Dropbox-API-Arg"])
            return httpx.Response(200, json={"path_display": arg["path"], "size": len(request.content)})

        if path == "/2/files/delete_v2":
            if self.delete_error is not None:
                raise self.delete_error
            return httpx.Response(200, json={"metadata": {}})

        if path == "/oauth2/token":
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_grant"})
            return httpx.Response(200, json=self.token_payload)

        return httpx.Response(404)


@pytest.fixture
def fake_dropbox() -> FakeDropbox:
    return FakeDropbox()


# --- Services / app ---


@pytest.fixture
def services(tmp_path, email_service, fake_dropbox):
    return build_services(
        data_dir=tmp_path,
        email_service=email_service,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(fake_dropbox)),
        dropbox_app_key="app-key",
        dropbox_app_secret="app-secret",
        dropbox_redirect_uri="http://localhost:8000/api/dropbox/oauth/callback",
        frontend_url="http://localhost:5173",
    )


@pytest.fixture
def client(services):
    set_services(services)
    yield TestClient(app)
    set_services(None)


@pytest.fixture
def source(services):
    return services.sources.create_source(CreateSourceRequest(name="Greenhouse ESP32", url="http://greenhouse.local"))


@pytest.fixture
def device_headers(source) -> dict:
    return {"X-API-Key": source.api_key}
