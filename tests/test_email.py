"""Tests for EmailService and the email endpoints."""

import smtplib

import pytest


def test_unconfigured_service_skips_exports_and_alerts(email_service, fake_smtp):
    assert email_service.is_configured is False
    assert email_service.send_export_email("me@example.com", "x", "csv", "daily", 0, "a,b") is False
    assert email_service.send_backup_failure_alert("cfg", "/ApiAlly", "boom") is False
    assert fake_smtp.sent == []

    with pytest.raises(RuntimeError):
        email_service.send_test_email("me@example.com")


def test_test_email_uses_starttls_relay(configured_email_service, fake_smtp):
    configured_email_service.send_test_email("me@example.com")

    message = fake_smtp.sent[0]
    assert message["Subject"] == "SMTP Test - ApiAlly"
    assert message["From"] == "robot@example.com"
    assert message["To"] == "me@example.com"


def test_port_465_uses_implicit_tls(monkeypatch, configured_email_service, fake_smtp):
    used = []

    class RecordingSSL(fake_smtp):
        def __init__(self, host, port, *args, **kwargs):
            super().__init__(host, port)
            used.append((host, port))

        def starttls(self):
            raise AssertionError("SMTP_SSL must not STARTTLS")

    monkeypatch.setattr(smtplib, "SMTP_SSL", RecordingSSL)
    configured_email_service.smtp_port = 465

    configured_email_service.send_test_email("me@example.com")

    assert used == [("smtp.example.com", 465)]


def test_json_export_attachment(configured_email_service, fake_smtp):
    assert configured_email_service.send_export_email("me@example.com", "Raw dump", "json", "daily", 2, "[]") is True

    attachment = [part for part in fake_smtp.sent[0].walk() if part.get_filename()][0]
    assert attachment.get_content_type() == "application/json"
    assert attachment.get_filename().startswith("Raw_dump_")


def test_backup_alert_cooldown(configured_email_service, fake_smtp):
    assert configured_email_service.send_backup_failure_alert("cfg-1", "/ApiAlly", "boom") is True
    assert configured_email_service.send_backup_failure_alert("cfg-1", "/ApiAlly", "boom again") is False
    assert configured_email_service.send_backup_failure_alert("cfg-2", "/Other", "boom") is True

    assert [m["Subject"] for m in fake_smtp.sent] == ["Backup Failed: /ApiAlly", "Backup Failed: /Other"]


def test_backup_alert_swallows_smtp_errors(configured_email_service, fake_smtp):
    fake_smtp.fail_with = smtplib.SMTPAuthenticationError(535, b"bad credentials")

    assert configured_email_service.send_backup_failure_alert("cfg-1", "/ApiAlly", "boom") is False


# --- Endpoints ---


def test_test_endpoint_validates_address(client):
    assert client.post("/api/email/test", json={}).status_code == 400
    assert client.post("/api/email/test", json={"testEmail": "not-an-email"}).status_code == 400


def test_test_endpoint_reports_failure_with_config(client):
    response = client.post("/api/email/test", json={"testEmail": "me@example.com"})

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "Failed to send test email"
    assert "SMTP_USER" in body["details"]
    assert body["config"] == {"host": "smtp.gmail.com", "port": 587, "user": ""}


def test_test_endpoint_success(client, services, configured_email_service, fake_smtp):
    services.email = configured_email_service

    response = client.post("/api/email/test", json={"testEmail": "me@example.com"})

    assert response.json() == {"success": True, "message": "Test email sent successfully to me@example.com"}
    assert response.headers["X-RateLimit-Remaining"] == "4"
    assert len(fake_smtp.sent) == 1


def test_export_endpoint(client, services, configured_email_service, fake_smtp):
    body = {
        "exportConfig": {"name": "Ad hoc", "email": "me@example.com", "format": "csv"},
        "exportContent": "a,b\n1,2",
        "recordCount": 1,
    }

    assert client.post("/api/email/export", json=body).status_code == 500

    services.email = configured_email_service
    response = client.post("/api/email/export", json=body)
    assert response.json() == {"success": True, "message": "Export email sent to me@example.com"}
    assert fake_smtp.sent[0]["Subject"] == "Scheduled Export: Ad hoc"

    fake_smtp.fail_with = smtplib.SMTPAuthenticationError(535, b"bad credentials")
    assert client.post("/api/email/export", json=body).status_code == 502


def test_export_endpoint_requires_email(client):
    body = {"exportConfig": {"name": "Ad hoc"}, "exportContent": "x"}

    assert client.post("/api/email/export", json=body).status_code == 400
