import html
import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, Field

from authcore.core.config import Settings

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """The mail transport could not deliver a message"""


class Notification(BaseModel):
    to: str
    subject: str
    template: str
    context: Dict[str, Any] = Field(default_factory=dict)


# template name -> (title, text body, call-to-action label, link context key)
TEMPLATES: Dict[str, Tuple[str, str, Optional[str], Optional[str]]] = {
    "verification": (
        "Confirm your email",
        "Hi {name},\n\n"
        "Thanks for signing up. Confirm your email address by opening this link:\n"
        "{verification_url}\n\n"
        "The link expires in {expires_in_hours} hours. "
        "If you did not create this account you can ignore this email.",
        "Verify email",
        "verification_url",
    ),
    "password_reset": (
        "Reset your password",
        "Hi {name},\n\n"
        "We received a request to reset your password. Continue here:\n"
        "{reset_url}\n\n"
        "The link expires in {expires_in_minutes} minutes. "
        "If you did not request this you can ignore this email.",
        "Reset password",
        "reset_url",
    ),
    "password_changed": (
        "Your password was changed",
        "Hi {name},\n\n"
        "The password for your account was changed on {changed_at} "
        "from IP address {ip_address}.\n\n"
        "If this was not you, reset your password immediately.",
        None,
        None,
    ),
    "team_invite": (
        "You have been invited to a team",
        "Hi,\n\n"
        "{inviter_name} invited you to join the team {team_name}. "
        "Accept the invitation here:\n{invite_url}",
        "Accept invitation",
        "invite_url",
    ),
}


class EmailService:
    """Outbound email, selected by ``settings.email_backend`` (smtp, console or disabled)"""

    def __init__(self, settings: Settings):
        self.settings = settings

    def _from_header(self) -> Optional[str]:
        if self.settings.smtp_from_email and self.settings.smtp_from_name:
            return f"{self.settings.smtp_from_name} <{self.settings.smtp_from_email}>"
        return self.settings.smtp_from_email

    @staticmethod
    def render(notification: Notification) -> Tuple[str, str]:
        """Return the (text, html) bodies for a notification"""
        try:
            title, text_template, cta_text, link_key = TEMPLATES[notification.template]
        except KeyError:
            raise ValueError(f"Unknown email template: {notification.template}")

        text_body = text_template.format_map(notification.context)
        paragraphs = "".join(
            f"<p style=\"margin:0 0 10px 0;\">{html.escape(block)}</p>"
            for block in text_body.split("\n\n")
        )
        cta_html = ""
        if cta_text and link_key:
            link = html.escape(str(notification.context[link_key]), quote=True)
            cta_html = (
                f"<p style=\"margin:18px 0 0 0;\"><a href=\"{link}\" "
                "style=\"display:inline-block; padding:12px 18px; background:#2563eb; "
                "color:#ffffff; border-radius:8px; text-decoration:none;\">"
                f"{html.escape(cta_text)}</a></p>"
            )
        html_body = (
            "<!doctype html><html lang=\"en\"><head><meta charset=\"utf-8\" />"
            f"<title>{html.escape(title)}</title></head>"
            "<body style=\"font-family:Arial, Helvetica, sans-serif; font-size:14px;\">"
            f"<h2>{html.escape(title)}</h2>{paragraphs}{cta_html}</body></html>"
        )
        return text_body, html_body

    def send(self, notification: Notification) -> None:
        text_body, html_body = self.render(notification)
        backend = self.settings.email_backend

        if backend == "disabled":
            logger.debug("Email backend disabled, dropping %s email", notification.template)
            return
        if backend == "console":
            logger.info(
                "Email to %s | %s\n%s",
                notification.to,
                notification.subject,
                text_body,
            )
            return
        if backend != "smtp":
            raise NotificationError(f"Unsupported email backend: {backend}")

        from_header = self._from_header()
        if not self.settings.smtp_host or not from_header:
            logger.error("SMTP is not configured (host/from). Email to %s not sent", notification.to)
            raise NotificationError("SMTP is not configured")

        msg = EmailMessage()
        msg["From"] = from_header
        msg["To"] = notification.to
        msg["Subject"] = notification.subject
        msg.set_content(text_body)
        msg.add_alternative(html_body, subtype="html")

        try:
            self._deliver(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.exception("Could not send %s email to %s", notification.template, notification.to)
            raise NotificationError(str(exc)) from exc

    def _deliver(self, msg: EmailMessage) -> None:
        settings = self.settings
        if settings.smtp_use_ssl:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, context=context, timeout=10) as server:
                if settings.smtp_username and settings.smtp_password:
                    server.login(settings.smtp_username, settings.smtp_password)
                server.send_message(msg)
            return

        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=10) as server:
            server.ehlo()
            if settings.smtp_use_tls:
                server.starttls(context=ssl.create_default_context())
                server.ehlo()
            if settings.smtp_username and settings.smtp_password:
                server.login(settings.smtp_username, settings.smtp_password)
            server.send_message(msg)
