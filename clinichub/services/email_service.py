"""Email delivery for appointment notifications over SMTP."""

import asyncio
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape

import structlog

from clinichub.config import Settings, settings
from clinichub.schemas.notifications import NotificationPayload

logger = structlog.get_logger(__name__)


def render_appointment_email(payload: NotificationPayload) -> str:
    """Render the HTML body of an appointment notification."""
    rows = [
        ("Patient", payload.patient_name),
        ("Doctor", payload.doctor_name),
        ("Date", payload.date),
        ("Time", payload.time),
        ("Reason", payload.reason),
        ("Status", payload.status),
    ]
    details = "\n".join(
        f'<div class="detail"><span class="label">{label}:</span> {escape(value)}</div>'
        for label, value in rows
    )
    return f"""<!DOCTYPE html>
<html>
<head>
  <style>
    body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
    .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
    .header {{ background-color: #4CAF50; color: white; padding: 20px; text-align: center; }}
    .content {{ background-color: #f9f9f9; padding: 20px; border: 1px solid #ddd; }}
    .detail {{ margin: 10px 0; }}
    .label {{ font-weight: bold; }}
    .footer {{ margin-top: 20px; padding: 10px; text-align: center; font-size: 12px; color: #666; }}
  </style>
</head>
<body>
  <div class="container">
    <div class="header"><h1>ClinicHub Appointment Notification</h1></div>
    <div class="content">
      <h2>{escape(payload.title)}</h2>
      <p>{escape(payload.message)}</p>
{details}
    </div>
    <div class="footer">This is an automated message, please do not reply.</div>
  </div>
</body>
</html>"""


class EmailSender:
    """Sends HTML email through the configured SMTP server."""

    def __init__(self, config: Settings = settings):
        """Initialize sender with SMTP settings."""
        self.config = config

    @property
    def enabled(self) -> bool:
        """Whether SMTP credentials are configured."""
        return self.config.email_enabled

    def _send_sync(self, to: str, subject: str, html_content: str) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.config.email_from
        msg["To"] = to
        msg.attach(MIMEText(html_content, "html"))

        host, port = self.config.smtp_host, self.config.smtp_port
        context = ssl.create_default_context()
        if port == 465:
            connection = smtplib.SMTP_SSL(host, port, context=context, timeout=30)
        else:
            connection = smtplib.SMTP(host, port, timeout=30)

        with connection as server:
            if port != 465 and self.config.smtp_use_tls:
                server.starttls(context=context)
            server.login(self.config.smtp_username, self.config.smtp_password)
            server.sendmail(self.config.email_from, [to], msg.as_string())

    async def send(self, to: str, subject: str, html_content: str) -> None:
        """
        Send one email without blocking the event loop.

        Raises:
            smtplib.SMTPException: On delivery failure
        """
        await asyncio.to_thread(self._send_sync, to, subject, html_content)
        logger.info("email_sent", to=to, subject=subject)
