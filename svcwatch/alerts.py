from __future__ import annotations

import logging
import smtplib
import subprocess
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import httpx

from .settings import Settings


log = logging.getLogger(__name__)


def broadcast_wall(message: str, timeout_s: float = 5.0) -> bool:
    """Write a message to every logged-in terminal, like the shell `wall`."""
    try:
        cp = subprocess.run(["wall"], input=message, text=True, capture_output=True, timeout=timeout_s, check=False)  # nosec: B603 B607
    except (OSError, subprocess.TimeoutExpired) as e:
        log.warning("wall broadcast failed: %s", e)
        return False
    return cp.returncode == 0


def post_webhook(url: str, payload: dict, timeout_s: float = 5.0) -> bool:
    try:
        with httpx.Client(timeout=timeout_s, follow_redirects=False) as client:
            resp = client.post(url, json=payload)
    except httpx.HTTPError as e:
        log.warning("Webhook alert failed: %s: %s", type(e).__name__, e)
        return False
    if resp.status_code >= 400:
        log.warning("Webhook alert rejected: HTTP %s", resp.status_code)
        return False
    return True


def send_email(settings: Settings, subject: str, body: str) -> bool:
    """Send an email if SMTP settings are configured.

    Environment variables:
      - SVCW_ENABLE_EMAIL=true
      - SVCW_SMTP_HOST / SVCW_SMTP_PORT
      - SVCW_SMTP_USER / SVCW_SMTP_PASSWORD
      - SVCW_EMAIL_FROM / SVCW_EMAIL_TO
    """
    if not settings.enable_email:
        return False
    if not all(
        [
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_user,
            settings.smtp_password,
            settings.email_from,
            settings.email_to,
        ]
    ):
        return False

    try:
        msg = MIMEMultipart()
        msg["From"] = settings.email_from
        msg["To"] = settings.email_to
        msg["Subject"] = subject
        msg.attach(MIMEText(body, "plain"))

        server = smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=10)
        server.starttls()
        server.login(settings.smtp_user, settings.smtp_password)
        server.sendmail(settings.email_from, [settings.email_to], msg.as_string())
        server.quit()
        return True
    except (smtplib.SMTPException, OSError) as e:
        log.warning("Email alert failed: %s", e)
        return False


class Alerter:
    """Operator notifications for recovery outcomes. Delivery is best-effort."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def notify(self, service: str, subject: str, body: str, critical: bool = False) -> None:
        if self.settings.enable_wall:
            broadcast_wall(f"{subject}\n{body}")
        if self.settings.webhook_url:
            post_webhook(
                self.settings.webhook_url,
                {"service": service, "severity": "critical" if critical else "info", "subject": subject, "body": body},
            )
        send_email(self.settings, subject, body)
