"""
Email Service
=============

Sends scheduled-export emails, SMTP test emails and backup failure alerts.

Author: ApiAlly Team
"""

import smtplib
import logging
import os
from email.mime.application import MIMEApplication
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from datetime import datetime, timezone

from apially.utils.csv_export import export_filename

logger = logging.getLogger(__name__)


class EmailService:
    """
    Service for sending email through an SMTP relay.

    Configure with environment variables:
    - SMTP_HOST: SMTP server hostname (default: smtp.gmail.com)
    - SMTP_PORT: SMTP server port (default: 587, use 465 for implicit TLS)
    - SMTP_USER: SMTP username/email
    - SMTP_PASSWORD: SMTP password or app password
    - FROM_EMAIL: Sender address (default: SMTP_USER)
    - ALERT_EMAIL: Where backup failure alerts go
    - ALERT_COOLDOWN: Seconds between alerts for the same Dropbox config (default: 3600)
    """

    def __init__(self):
        """Initialize email service with configuration from environment."""
        self.smtp_host = os.getenv("SMTP_HOST", "smtp.gmail.com")
        self.smtp_port = int(os.getenv("SMTP_PORT", "587"))
        self.smtp_user = os.getenv("SMTP_USER", "")
        self.smtp_password = os.getenv("SMTP_PASSWORD", "")
        self.alert_email = os.getenv("ALERT_EMAIL", "")
        self.from_email = os.getenv("FROM_EMAIL", self.smtp_user or "noreply@apially.com")

        # Track sent alerts to avoid spam (config_id -> last_alert_time)
        self._last_alerts: dict[str, datetime] = {}
        self.alert_cooldown_seconds = int(os.getenv("ALERT_COOLDOWN", "3600"))

        # Check if email is configured
        self.is_configured = bool(self.smtp_user and self.smtp_password)
        if not self.is_configured:
            logger.warning(
                "Email service not configured. Set SMTP_USER and SMTP_PASSWORD "
                "environment variables to enable export emails and alerts."
            )

    def public_config(self) -> dict:
        """SMTP settings that are safe to show (no password)."""
        return {
            "host": self.smtp_host,
            "port": self.smtp_port,
            "user": self.smtp_user,
        }

    def _can_send_alert(self, key: str) -> bool:
        """Check if we can send an alert for this key (cooldown check)."""
        if key not in self._last_alerts:
            return True

        last_alert = self._last_alerts[key]
        elapsed = (datetime.now(timezone.utc) - last_alert).total_seconds()
        return elapsed >= self.alert_cooldown_seconds

    def _record_alert(self, key: str):
        """Record that an alert was sent for this key."""
        self._last_alerts[key] = datetime.now(timezone.utc)

    def _send(self, msg: MIMEMultipart):
        """
        Hand a message to the relay.

        Port 465 speaks TLS from the first byte; anything else gets STARTTLS.
        Raises smtplib.SMTPException / OSError on failure.
        """
        if self.smtp_port == 465:
            with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port) as server:
                server.login(self.smtp_user, self.smtp_password)
                server.send_message(msg)
        else:
            with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                server.starttls()
                server.login(self.smtp_user, self.smtp_password)
                server.send_message(msg)

    # =========================================================================
    # SCHEDULED EXPORTS
    # =========================================================================

    def send_export_email(
        self,
        to_email: str,
        export_name: str,
        export_format: str,
        frequency: str,
        record_count: int,
        content: str,
    ) -> bool:
        """
        Email an export with the file attached.

        Returns:
            True if sent, False if SMTP is not configured

        Raises:
            smtplib.SMTPException, OSError: The relay refused or was unreachable
        """
        if not self.is_configured:
            logger.debug(f"Email not configured, skipping export email for {export_name}")
            return False

        now = datetime.now(timezone.utc)
        generated = now.strftime("%Y-%m-%d %H:%M:%S UTC")
        file_name = export_filename(export_name, export_format, now.date())

        msg = MIMEMultipart("mixed")
        msg["Subject"] = f"Scheduled Export: {export_name}"
        msg["From"] = self.from_email
        msg["To"] = to_email

        text_content = f"""
Your Scheduled Export is Ready
==============================

Your scheduled export "{export_name}" has been generated successfully.

Format: {export_format.upper()}
Frequency: {frequency}
Records: {record_count}
Generated: {generated}

Please find your data export attached to this email.

---
ApiAlly Team
"""

        html_content = f"""
<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
    <h2>Your Scheduled Export is Ready</h2>
    <p>Hello,</p>
    <p>Your scheduled export "<strong>{export_name}</strong>" has been generated successfully.</p>
    <p><strong>Export Details:</strong></p>
    <ul>
        <li>Format: {export_format.upper()}</li>
        <li>Frequency: {frequency}</li>
        <li>Records: {record_count}</li>
        <li>Generated: {generated}</li>
    </ul>
    <p>Please find your data export attached to this email.</p>
    <p>Best regards,<br>ApiAlly Team</p>
</body>
</html>
"""

        body = MIMEMultipart("alternative")
        body.attach(MIMEText(text_content, "plain"))
        body.attach(MIMEText(html_content, "html"))
        msg.attach(body)

        if export_format == "csv":
            attachment = MIMEText(content, "csv", "utf-8")
        else:
            attachment = MIMEApplication(content.encode("utf-8"), "json")
        attachment.add_header("Content-Disposition", "attachment", filename=file_name)
        msg.attach(attachment)

        self._send(msg)
        logger.info(f"Export email '{export_name}' sent to {to_email} ({file_name})")
        return True

    # =========================================================================
    # SMTP TEST
    # =========================================================================

    def send_test_email(self, to_email: str):
        """
        Send a test email. Raises on any failure so the caller can show why.
        """
        if not self.is_configured:
            raise RuntimeError("SMTP is not configured (set SMTP_USER and SMTP_PASSWORD)")

        sent_at = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = "SMTP Test - ApiAlly"
        msg["From"] = self.from_email
        msg["To"] = to_email

        text_content = f"""
SMTP Test Email
===============

This is a test email to verify that your SMTP configuration is working correctly.

SMTP Host: {self.smtp_host}
SMTP Port: {self.smtp_port}
From Email: {self.from_email}
Sent At: {sent_at}

If you received this email, your SMTP configuration is working properly!
"""

        html_content = f"""
<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
    <h2>SMTP Test Email</h2>
    <p>Hello!</p>
    <p>This is a test email to verify that your SMTP configuration is working correctly.</p>
    <p><strong>Test Details:</strong></p>
    <ul>
        <li>SMTP Host: {self.smtp_host}</li>
        <li>SMTP Port: {self.smtp_port}</li>
        <li>From Email: {self.from_email}</li>
        <li>Sent At: {sent_at}</li>
    </ul>
    <p>If you received this email, your SMTP configuration is working properly!</p>
    <p>Best regards,<br>ApiAlly Team</p>
</body>
</html>
"""

        msg.attach(MIMEText(text_content, "plain"))
        msg.attach(MIMEText(html_content, "html"))

        self._send(msg)
        logger.info(f"SMTP test email sent to {to_email}")

    # =========================================================================
    # ALERTS
    # =========================================================================

    def send_backup_failure_alert(
        self,
        config_id: str,
        dropbox_path: str,
        error_message: str,
    ) -> bool:
        """
        Tell ALERT_EMAIL that a scheduled backup failed.

        Returns:
            True if email was sent successfully, False otherwise
        """
        if not self.is_configured or not self.alert_email:
            logger.debug(f"Alerts not configured, skipping backup alert for {dropbox_path}")
            return False

        # Check cooldown to avoid spam
        if not self._can_send_alert(config_id):
            logger.debug(f"Alert cooldown active for {dropbox_path}, skipping")
            return False

        try:
            msg = MIMEMultipart("alternative")
            msg["Subject"] = f"Backup Failed: {dropbox_path}"
            msg["From"] = self.from_email
            msg["To"] = self.alert_email

            timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")

            text_content = f"""
Scheduled Backup Failed
=======================

Dropbox folder: {dropbox_path}
Error: {error_message}

Time: {timestamp}
Config ID: {config_id}
"""

            html_content = f"""
<!DOCTYPE html>
<html>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
    <div style="background: #dc3545; color: white; padding: 20px; border-radius: 8px 8px 0 0;">
        <h2>Scheduled Backup Failed</h2>
    </div>
    <div style="background: #f8f9fa; padding: 20px; border: 1px solid #dee2e6;">
        <p><strong>Dropbox folder:</strong> {dropbox_path}</p>
        <div style="background: #fff; border-left: 4px solid #dc3545; padding: 15px; margin: 15px 0;">
            <strong>Error:</strong><br>
            {error_message}
        </div>
        <p><strong>Time:</strong> {timestamp}</p>
        <p><strong>Config ID:</strong> <code>{config_id}</code></p>
    </div>
</body>
</html>
"""

            msg.attach(MIMEText(text_content, "plain"))
            msg.attach(MIMEText(html_content, "html"))

            self._send(msg)

            self._record_alert(config_id)
            logger.info(f"Backup failure alert sent to {self.alert_email} for {dropbox_path}")
            return True

        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP authentication failed: {e}")
            return False
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send backup alert: {type(e).__name__}: {e}")
            return False
