"""
email_alert.py — Email alert delivery channel.

Delivery mechanism:
    • simulation — log the message and report success (default, local dev)
    • smtp       — multipart (plain + HTML) message via smtplib, run in a
                   worker thread so the event loop keeps serving requests

═══════════════════════════════════════════════════════════════════════════
EMAIL TEMPLATE STRUCTURE
═══════════════════════════════════════════════════════════════════════════

    Subject: 🚨 {LEVEL} ALERT: {location}
    Body:
        ┌─────────────────────────────────────────┐
        │  {level} HEALTH ALERT   (level colour)   │
        ├─────────────────────────────────────────┤
        │  Alert for {location}                    │
        │  {message}                               │
        │                                          │
        │  Date: {today}     Source: Health Dept.  │
        └─────────────────────────────────────────┘

Header colour: red for critical / Red, orange for high / Orange,
amber for every other level.
"""

from __future__ import annotations

import asyncio
import html
import logging
import smtplib
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import formataddr
from typing import Any, Mapping, Optional

from backend.app.alerts.models import AlertChannel, DeliveryAttempt, DeliveryStatus
from backend.app.core.config import settings

logger = logging.getLogger(__name__)

_RED = "#ef4444"
_ORANGE = "#f97316"
_AMBER = "#f59e0b"

_LEVEL_COLOURS = {
    "critical": _RED,
    "Red": _RED,
    "high": _ORANGE,
    "Orange": _ORANGE,
}


def level_colour(level: str) -> str:
    return _LEVEL_COLOURS.get(level, _AMBER)


def build_subject(alert: Mapping[str, Any]) -> str:
    return f"🚨 {str(alert.get('level', '')).upper()} ALERT: {alert.get('location', '')}"


def build_html_body(alert: Mapping[str, Any]) -> str:
    """Render the HTML email body; user-supplied text is escaped."""
    level = str(alert.get("level", ""))
    location = html.escape(str(alert.get("location", "")))
    message = html.escape(str(alert.get("message", "")))
    today = datetime.now(timezone.utc).strftime("%d %b %Y")

    return f"""
    <div style="font-family:'Segoe UI',Arial,sans-serif;max-width:600px;margin:0 auto;border:1px solid #e2e8f0;border-radius:12px;overflow:hidden;">
      <div style="background:{level_colour(level)};padding:25px;text-align:center;">
        <h1 style="color:white;margin:0;font-size:24px;text-transform:uppercase;letter-spacing:1px;">{html.escape(level)} Health Alert</h1>
      </div>
      <div style="padding:30px;background:#ffffff;">
        <h2 style="margin-top:0;color:#1e293b;font-size:20px;">Alert for {location}</h2>
        <p style="font-size:16px;color:#475569;line-height:1.6;background:#f8fafc;padding:15px;border-radius:8px;border-left:4px solid #cbd5e1;">
          {message}
        </p>
        <div style="margin-top:30px;padding:15px;border-top:1px solid #e2e8f0;font-size:13px;color:#64748b;">
          <span><strong>Date:</strong> {today}</span>
          <span style="float:right;"><strong>Source:</strong> Health Department</span>
        </div>
      </div>
      <div style="background:#f1f5f9;padding:12px;text-align:center;border-top:1px solid #e2e8f0;font-size:11px;color:#94a3b8;">
        Sent via {html.escape(settings.APP_NAME)}
      </div>
    </div>
    """


def build_plain_body(alert: Mapping[str, Any]) -> str:
    return (
        f"{str(alert.get('level', '')).upper()} HEALTH ALERT\n\n"
        f"Alert for {alert.get('location', '')}\n"
        f"{alert.get('message', '')}\n\n"
        f"Date: {datetime.now(timezone.utc).strftime('%d %b %Y')}\n"
        f"Source: Health Department\n"
    )


def build_message(alert: Mapping[str, Any], to_address: str) -> EmailMessage:
    message = EmailMessage()
    message["Subject"] = build_subject(alert)
    message["From"] = formataddr((settings.EMAIL_FROM_NAME, settings.EMAIL_FROM_ADDRESS))
    message["To"] = to_address
    message.set_content(build_plain_body(alert))
    message.add_alternative(build_html_body(alert), subtype="html")
    return message


def _send_smtp(message: EmailMessage) -> None:
    """Blocking SMTP send; runs in a worker thread."""
    with smtplib.SMTP(
        settings.SMTP_HOST,
        settings.SMTP_PORT,
        timeout=settings.EMAIL_TIMEOUT_SECONDS,
    ) as server:
        if settings.SMTP_USE_TLS:
            server.starttls()
        if settings.SMTP_USER:
            server.login(settings.SMTP_USER, settings.SMTP_PASSWORD or "")
        server.send_message(message)


async def send(
    alert: Mapping[str, Any],
    to_address: str,
    *,
    provider: Optional[str] = None,
) -> DeliveryAttempt:
    """
    Send one alert email to one address.

    Parameters
    ----------
    alert : mapping
        Alert record (``level``, ``location``, ``message`` are used).
    to_address : str
        Already validated recipient address.
    provider : str, optional
        "simulation" or "smtp"; defaults to ``settings.EMAIL_PROVIDER``.

    Returns
    -------
    DeliveryAttempt
        Never raises for transport errors; the attempt carries the failure.
    """
    provider = provider or settings.EMAIL_PROVIDER
    attempt = DeliveryAttempt(
        channel=AlertChannel.EMAIL,
        recipient=to_address,
        status=DeliveryStatus.SENDING,
    )

    try:
        message = build_message(alert, to_address)

        if provider == "simulation":
            logger.info(
                "[EMAIL] Alert %s → %s: Subject='%s'",
                alert.get("id"), to_address, message["Subject"],
                extra={"alert_id": alert.get("id"), "channel": "email"},
            )
            attempt.status = DeliveryStatus.DELIVERED
            attempt.provider_response = {"mode": "simulated", "to": to_address}

        elif provider == "smtp":
            if not settings.SMTP_HOST:
                raise ValueError("SMTP_HOST is not configured")
            await asyncio.to_thread(_send_smtp, message)
            logger.info(
                "[EMAIL/SMTP] Sent alert %s to %s", alert.get("id"), to_address,
                extra={"alert_id": alert.get("id"), "channel": "email"},
            )
            attempt.status = DeliveryStatus.DELIVERED
            attempt.provider_response = {"mode": "smtp", "host": settings.SMTP_HOST}

        else:
            attempt.status = DeliveryStatus.FAILED
            attempt.error_message = f"Unknown email provider: {provider}"

    except (smtplib.SMTPException, OSError, ValueError) as exc:
        logger.error(
            "[EMAIL] Failed to send to %s: %s", to_address, exc,
            extra={"alert_id": alert.get("id"), "channel": "email"},
        )
        attempt.status = DeliveryStatus.FAILED
        attempt.error_message = str(exc)

    attempt.completed_at = datetime.now(timezone.utc)
    return attempt
