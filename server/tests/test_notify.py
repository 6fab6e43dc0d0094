import smtplib
from unittest.mock import MagicMock

import pytest
from twilio.base.exceptions import TwilioRestException

from proofly.errors import NotificationDispatchError
from proofly.services import notify
from proofly.services.notify import (
    EMAIL_SUBJECT,
    NotificationDispatcher,
    SmtpEmailSender,
    TwilioSmsSender,
    email_html,
    sms_body,
)

JOB = {"id": "j1", "clientName": "Jane Doe", "serviceType": "Gutter cleaning",
       "address": "12 Elm St", "photos": [{"id": "p1"}, {"id": "p2"}]}
URL = "http://localhost:8000/review/abc123"


def test_sms_body_mentions_client_service_and_link():
    body = sms_body(JOB, URL)
    assert body == "Hi Jane Doe! We completed your Gutter cleaning. Please review our work: " + URL


def test_twilio_sender_normalizes_number():
    client = MagicMock()
    client.messages.create.return_value.sid = "SM123"
    sender = TwilioSmsSender(client=client, from_number="+15550000000")

    assert sender.send("(555) 010-9999", "hello") == "SM123"
    client.messages.create.assert_called_once_with(from_="+15550000000", to="+5550109999", body="hello")


def test_twilio_sender_unconfigured(monkeypatch):
    monkeypatch.setattr(notify.utils, "twilio_client", None)
    with pytest.raises(NotificationDispatchError):
        TwilioSmsSender(from_number="+15550000000").send("5550109999", "hello")


def test_twilio_errors_become_dispatch_errors():
    client = MagicMock()
    client.messages.create.side_effect = TwilioRestException(400, "/Messages", "invalid number")
    with pytest.raises(NotificationDispatchError):
        TwilioSmsSender(client=client, from_number="+15550000000").send("5550109999", "hello")


class FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout=None):
        self.host, self.port = host, port
        self.calls = []
        self.sent = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        self.calls.append("starttls")

    def login(self, user, password):
        self.calls.append(("login", user))

    def send_message(self, msg):
        self.sent.append(msg)


def test_smtp_sender_builds_multipart_message(monkeypatch):
    FakeSMTP.instances = []
    monkeypatch.setattr(notify.smtplib, "SMTP", FakeSMTP)
    sender = SmtpEmailSender(host="smtp.test", port=2525, username="bot", password="pw",
                             sender="crew@proofly.app", use_tls=True)

    sender.send("client@example.com", EMAIL_SUBJECT, "plain", "<p>html</p>")

    [smtp] = FakeSMTP.instances
    assert (smtp.host, smtp.port) == ("smtp.test", 2525)
    assert smtp.calls == ["starttls", ("login", "bot")]
    [msg] = smtp.sent
    assert msg["To"] == "client@example.com"
    assert msg["Subject"] == "Work Complete - Please Review"
    assert msg.is_multipart()


def test_smtp_failure_becomes_dispatch_error(monkeypatch):
    def refuse(*args, **kwargs):
        raise smtplib.SMTPConnectError(421, "busy")

    monkeypatch.setattr(notify.smtplib, "SMTP", refuse)
    with pytest.raises(NotificationDispatchError):
        SmtpEmailSender(host="smtp.test").send("client@example.com", "s", "t")


def test_smtp_unconfigured(monkeypatch):
    monkeypatch.setattr(notify.utils, "SMTP_HOST", None)
    with pytest.raises(NotificationDispatchError):
        SmtpEmailSender().send("client@example.com", "s", "t")


def test_dispatcher_routes_by_channel():
    email, sms = MagicMock(), MagicMock()
    dispatcher = NotificationDispatcher(email_sender=email, sms_sender=sms)

    dispatcher.send("email", "client@example.com", JOB, URL)
    dispatcher.send("sms", "5550109999", JOB, URL)

    to, subject, text, html = email.send.call_args.args
    assert to == "client@example.com"
    assert subject == EMAIL_SUBJECT
    assert URL in text and URL in html
    assert "Photos taken: 2" in text
    sms.send.assert_called_once_with("5550109999", sms_body(JOB, URL))

    with pytest.raises(NotificationDispatchError):
        dispatcher.send("fax", "x", JOB, URL)


def test_email_html_escapes_job_fields():
    job = dict(JOB, clientName="<script>alert(1)</script>", serviceType="Roof & gutters")
    html = email_html(job, URL + '"><b>')

    assert "<script>" not in html
    assert "&lt;script&gt;" in html
    assert "Roof &amp; gutters" in html
    assert '"><b>' not in html
