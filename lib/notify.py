"""
Pipeline notifications

Slack incoming webhooks (via requests) and plain SMTP email. Delivery
problems raise NotificationError; the pipeline reports them as warnings and
never fails a run because a message could not be sent.
"""

import smtplib
from email.message import EmailMessage
from typing import Callable, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from lib.settings import PipelineSettings

HTTP_TIMEOUT = 10
SMTP_TIMEOUT = 10


class NotificationError(Exception):
    """A notification could not be delivered"""


def create_http_session(max_retries: int = 3) -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=max_retries,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(["POST"])
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def build_message(success: bool, project: str, action: str, summary: str):
    """Subject line and body for a pipeline result"""
    state = "succeeded" if success else "FAILED"
    icon = "✅" if success else "❌"
    subject = f"{icon} EKS pipeline {state}: {project} ({action})"
    return subject, f"{subject}\n\n{summary}"


def send_slack(session: requests.Session, webhook_url: str, text: str):
    try:
        response = session.post(webhook_url, json={'text': text}, timeout=HTTP_TIMEOUT)
        response.raise_for_status()
    except requests.RequestException as e:
        raise NotificationError(f"Slack notification failed: {e}") from e


def send_email(host: str, port: int, sender: str, recipient: str, subject: str, body: str,
               smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP):
    message = EmailMessage()
    message['From'] = sender
    message['To'] = recipient
    message['Subject'] = subject
    message.set_content(body)
    try:
        with smtp_factory(host, port, timeout=SMTP_TIMEOUT) as server:
            server.send_message(message)
    except (smtplib.SMTPException, OSError) as e:
        raise NotificationError(f"Email notification to {recipient} failed: {e}") from e


class Notifier:
    """Sends the pipeline result to every configured channel"""

    def __init__(self, settings: PipelineSettings, session: Optional[requests.Session] = None,
                 smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP):
        self.settings = settings
        self.session = session
        self.smtp_factory = smtp_factory

    @property
    def channels(self) -> List[str]:
        channels = []
        if self.settings.slack_webhook_url:
            channels.append('slack')
        if self.settings.email_to and self.settings.smtp_host:
            channels.append('email')
        return channels

    def notify(self, success: bool, summary: str) -> List[str]:
        """
        Deliver the result to all channels.

        Returns:
            Error messages for channels that could not be reached
        """
        subject, body = build_message(success, self.settings.deploy.project_name,
                                      self.settings.action, summary)
        errors = []

        if 'slack' in self.channels:
            if self.session is None:
                self.session = create_http_session()
            try:
                send_slack(self.session, self.settings.slack_webhook_url, body)
            except NotificationError as e:
                errors.append(str(e))

        if 'email' in self.channels:
            try:
                send_email(self.settings.smtp_host, self.settings.smtp_port,
                           self.settings.email_from, self.settings.email_to,
                           subject, body, smtp_factory=self.smtp_factory)
            except NotificationError as e:
                errors.append(str(e))

        return errors
