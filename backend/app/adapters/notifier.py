"""
SMTP Notification Adapter
Sends the "new audit assigned" email with the auditor's direct access link
"""
import html
import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr
from typing import Optional

from app.core.config import settings
from app.core.errors import NotificationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditLinkNotification:
    """Payload for an audit assignment email"""
    to: str
    auditor_name: str
    template_name: str
    access_link: str

    def as_dict(self) -> dict:
        return {
            "to": self.to,
            "auditor_name": self.auditor_name,
            "template_name": self.template_name,
            "access_link": self.access_link,
        }


def build_access_link(session_id) -> str:
    """Direct link to the auditor execution page for a session"""
    return f"{settings.PUBLIC_APP_URL.rstrip('/')}/execute/{session_id}"


def render_audit_link_html(notification: AuditLinkNotification) -> str:
    auditor = html.escape(notification.auditor_name)
    template = html.escape(notification.template_name)
    link = html.escape(notification.access_link, quote=True)
    return f"""
<div style="font-family: sans-serif; max-width: 600px; margin: 0 auto; padding: 20px; border: 1px solid #e2e8f0; border-radius: 12px;">
  <h2 style="color: #1e293b; margin-bottom: 16px;">New Audit Assigned</h2>
  <p style="color: #475569; font-size: 16px; line-height: 24px;">Hello <strong>{auditor}</strong>,</p>
  <p style="color: #475569; font-size: 16px; line-height: 24px;">
    You have been assigned to conduct a new audit: <strong>{template}</strong>.
  </p>
  <div style="margin: 32px 0;">
    <a href="{link}" style="background-color: #2563eb; color: white; padding: 12px 24px; border-radius: 8px; text-decoration: none; font-weight: bold; display: inline-block;">
      Access Audit Questions
    </a>
  </div>
  <p style="color: #94a3b8; font-size: 14px; margin-top: 32px; border-top: 1px solid #f1f5f9; padding-top: 16px;">
    If the button above doesn't work, copy and paste this link into your browser:<br/>
    <span style="color: #2563eb;">{link}</span>
  </p>
</div>
"""


class EmailNotifier:
    """Adapter for SMTP delivery of auditor notifications"""

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_ssl: Optional[bool] = None,
        from_name: Optional[str] = None,
        timeout_sec: Optional[int] = None,
    ):
        self.host = host if host is not None else settings.SMTP_HOST
        self.port = port or settings.SMTP_PORT
        self.username = username if username is not None else settings.SMTP_USER
        self.password = password if password is not None else settings.SMTP_PASSWORD
        self.use_ssl = settings.SMTP_USE_SSL if use_ssl is None else use_ssl
        self.from_name = from_name or settings.MAIL_FROM_NAME
        self.timeout_sec = timeout_sec or settings.SMTP_TIMEOUT_SEC

    @property
    def configured(self) -> bool:
        return bool(self.host)

    def build_message(self, notification: AuditLinkNotification) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = f"New Audit Assigned: {notification.template_name}"
        msg["From"] = formataddr((self.from_name, self.username or f"no-reply@{self.host}"))
        msg["To"] = notification.to
        msg.set_content(
            f"Hello {notification.auditor_name},\n\n"
            f"You have been assigned to conduct a new audit: {notification.template_name}.\n\n"
            f"Access the audit questions here: {notification.access_link}\n"
        )
        msg.add_alternative(render_audit_link_html(notification), subtype="html")
        return msg

    def send_audit_link(self, notification: AuditLinkNotification) -> None:
        """
        Deliver the assignment email (blocking).

        Raises:
            NotificationError: SMTP not configured or delivery failed
        """
        if not self.configured:
            raise NotificationError("SMTP not configured; set SMTP_HOST to email auditors")
        if not notification.to:
            raise NotificationError("Auditor has no email address")

        try:
            msg = self.build_message(notification)
        except (ValueError, TypeError) as e:
            # Header values reject line breaks and malformed addresses
            logger.warning(f"Could not build audit link email for {notification.to}: {e}")
            raise NotificationError(f"Invalid email content: {e}") from e

        try:
            if self.use_ssl:
                with smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout_sec) as server:
                    self._deliver(server, msg)
            else:
                with smtplib.SMTP(self.host, self.port, timeout=self.timeout_sec) as server:
                    server.starttls()
                    self._deliver(server, msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning(f"Failed to send audit link to {notification.to}: {e}")
            raise NotificationError(f"Email dispatch failed: {e}") from e

        logger.info(f"Audit link for '{notification.template_name}' sent to {notification.to}")

    def _deliver(self, server: smtplib.SMTP, msg: EmailMessage) -> None:
        if self.username:
            server.login(self.username, self.password)
        server.send_message(msg)


# Singleton instance
email_notifier = EmailNotifier()
