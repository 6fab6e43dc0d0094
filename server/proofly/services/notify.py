import smtplib
from email.message import EmailMessage
from html import escape
from typing import Any, Dict, Optional

import structlog
from twilio.base.exceptions import TwilioException

from proofly import utils
from proofly.errors import NotificationDispatchError
from proofly.utils import normalize_phone, utcnow

LOGGER = structlog.get_logger(__name__)

EMAIL_SUBJECT = "Work Complete - Please Review"


class TwilioSmsSender:
    def __init__(self, client=None, from_number: Optional[str] = None):
        self.client = client if client is not None else utils.twilio_client
        self.from_number = from_number or utils.TWILIO_SMS_FROM

    def send(self, to: str, body: str) -> str:
        if not (self.client and self.from_number):
            raise NotificationDispatchError("SMS is not configured (Twilio credentials / sender missing)")
        try:
            message = self.client.messages.create(from_=self.from_number, to=normalize_phone(to), body=body)
        except TwilioException as e:
            raise NotificationDispatchError(f"Failed to send SMS notification: {e}") from e
        LOGGER.info("sms_sent", to=to, sid=message.sid)
        return message.sid


class SmtpEmailSender:
    def __init__(self, host: Optional[str] = None, port: Optional[int] = None,
                 username: Optional[str] = None, password: Optional[str] = None,
                 sender: Optional[str] = None, use_tls: Optional[bool] = None):
        self.host = host or utils.SMTP_HOST
        self.port = port or utils.SMTP_PORT
        self.username = username or utils.SMTP_USERNAME
        self.password = password or utils.SMTP_PASSWORD
        self.sender = sender or utils.SMTP_FROM
        self.use_tls = utils.SMTP_USE_TLS if use_tls is None else use_tls

    def send(self, to: str, subject: str, text: str, html: Optional[str] = None) -> None:
        if not self.host:
            raise NotificationDispatchError("Email is not configured (SMTP_HOST missing)")
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(text)
        if html:
            msg.add_alternative(html, subtype="html")
        try:
            with smtplib.SMTP(self.host, self.port, timeout=20) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password or "")
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationDispatchError(f"Failed to send email notification: {e}") from e
        LOGGER.info("email_sent", to=to)


def sms_body(job: Dict[str, Any], url: str) -> str:
    return (
        f"Hi {job.get('clientName') or 'there'}! We completed your "
        f"{job.get('serviceType') or 'service'}. Please review our work: {url}"
    )


def email_text(job: Dict[str, Any], url: str) -> str:
    return (
        f"Hi {job.get('clientName') or 'there'},\n\n"
        f"We've just completed your {job.get('serviceType') or 'service'} service. "
        "Please take a moment to review our work.\n\n"
        f"Service: {job.get('serviceType') or '-'}\n"
        f"Address: {job.get('address') or '-'}\n"
        f"Completed: {utcnow():%Y-%m-%d}\n"
        f"Photos taken: {len(job.get('photos') or [])}\n\n"
        f"Review and approve: {url}\n\n"
        "This link will expire in 48 hours. If you have any questions, please contact us directly.\n\n"
        "Thank you for your business!"
    )


def email_html(job: Dict[str, Any], url: str) -> str:
    name = escape(job.get("clientName") or "there")
    service = escape(job.get("serviceType") or "service")
    address = escape(job.get("address") or "-")
    link = escape(url, quote=True)
    return f"""<!DOCTYPE html>
<html><body style="font-family: Arial, sans-serif; line-height: 1.6;">
  <h1>Work Completed</h1>
  <p>Hi {name},</p>
  <p>We've just completed your {service} service. Please take a moment to review our work.</p>
  <ul>
    <li><strong>Service:</strong> {service}</li>
    <li><strong>Address:</strong> {address}</li>
    <li><strong>Completed:</strong> {utcnow():%Y-%m-%d}</li>
    <li><strong>Photos taken:</strong> {len(job.get('photos') or [])}</li>
  </ul>
  <p><a href="{link}">Review Work</a></p>
  <p><small>This link will expire in 48 hours.</small></p>
</body></html>"""


class NotificationDispatcher:
    """Routes a review link to the client over the chosen channel."""

    def __init__(self, email_sender=None, sms_sender=None):
        self.email_sender = email_sender or SmtpEmailSender()
        self.sms_sender = sms_sender or TwilioSmsSender()

    def send(self, channel: str, address: str, job: Dict[str, Any], url: str) -> None:
        if channel == "email":
            self.email_sender.send(address, EMAIL_SUBJECT, email_text(job, url), email_html(job, url))
        elif channel == "sms":
            self.sms_sender.send(address, sms_body(job, url))
        else:
            raise NotificationDispatchError(f"Unknown contact method {channel!r}")
