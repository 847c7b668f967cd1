import logging
import smtplib
from collections.abc import Mapping
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr
from enum import StrEnum
from typing import Protocol

from jinja2 import Environment

from docportal.core.config import Settings, get_smtp_ctx

logger = logging.getLogger(__name__)

_TEXT_ENV = Environment(autoescape=False, keep_trailing_newline=True)
_HTML_ENV = Environment(autoescape=True, keep_trailing_newline=True)


class TemplateKind(StrEnum):
    PASSWORD_RESET = "password-reset"
    INSTALLER_INVITATION = "installer-invitation"
    USER_INVITATION = "user-invitation"
    DISTRIBUTOR_INVITATION = "distributor-invitation"
    SHARE_NOTIFICATION = "share-notification"
    WELCOME = "welcome"


@dataclass(frozen=True, slots=True)
class EmailTemplate:
    subject: str
    text: str
    html: str


@dataclass(slots=True)
class SendResult:
    success: bool
    error: str | None = None


@dataclass(slots=True)
class OutgoingNotification:
    kind: TemplateKind
    to_address: str
    variables: dict[str, str]


TEMPLATES: dict[TemplateKind, EmailTemplate] = {
    TemplateKind.PASSWORD_RESET: EmailTemplate(
        subject="Reset your password",
        text=(
            "Hi {{userName}},\n\n"
            "Someone asked to reset the password of your account. "
            "Choose a new password here: {{resetLink}}\n\n"
            "If you did not ask for this, you can ignore this email.\n"
        ),
        html=(
            "<p>Hi {{userName}},</p>"
            "<p>Someone asked to reset the password of your account.</p>"
            '<p><a href="{{resetLink}}">Choose a new password</a></p>'
            "<p>If you did not ask for this, you can ignore this email.</p>"
        ),
    ),
    TemplateKind.INSTALLER_INVITATION: EmailTemplate(
        subject="{{inviterName}} invited you as an installer",
        text=(
            "Hi {{installerName}},\n\n"
            "{{inviterName}} invited {{companyName}} to the documentation portal "
            "as an installer. Create your account here: {{invitationLink}}\n\n"
            "This invitation expires on {{expiresAt}}.\n"
        ),
        html=(
            "<p>Hi {{installerName}},</p>"
            "<p><b>{{inviterName}}</b> invited <b>{{companyName}}</b> to the "
            "documentation portal as an installer.</p>"
            '<p><a href="{{invitationLink}}">Create your account</a></p>'
            "<p>This invitation expires on {{expiresAt}}.</p>"
        ),
    ),
    TemplateKind.USER_INVITATION: EmailTemplate(
        subject="{{inviterName}} invited you to the documentation portal",
        text=(
            "Hi {{userName}},\n\n"
            "{{inviterName}} invited you to the documentation portal. "
            "Create your account here: {{invitationLink}}\n\n"
            "This invitation expires on {{expiresAt}}.\n"
        ),
        html=(
            "<p>Hi {{userName}},</p>"
            "<p><b>{{inviterName}}</b> invited you to the documentation portal.</p>"
            '<p><a href="{{invitationLink}}">Create your account</a></p>'
            "<p>This invitation expires on {{expiresAt}}.</p>"
        ),
    ),
    TemplateKind.DISTRIBUTOR_INVITATION: EmailTemplate(
        subject="Join {{inviterCompany}} on the documentation portal",
        text=(
            "Hi {{userName}},\n\n"
            "{{inviterName}} invited you to join the {{inviterCompany}} team. "
            "Create your account here: {{invitationLink}}\n\n"
            "This invitation expires on {{expiresAt}}.\n"
        ),
        html=(
            "<p>Hi {{userName}},</p>"
            "<p><b>{{inviterName}}</b> invited you to join the "
            "<b>{{inviterCompany}}</b> team.</p>"
            '<p><a href="{{invitationLink}}">Create your account</a></p>'
            "<p>This invitation expires on {{expiresAt}}.</p>"
        ),
    ),
    TemplateKind.SHARE_NOTIFICATION: EmailTemplate(
        subject="{{senderName}} shared {{documentName}} with you",
        text=(
            "Hi,\n\n{{senderName}} shared {{documentName}} with you: "
            "{{documentLink}}\n\n{{message}}\n"
        ),
        html=(
            "<p>Hi,</p>"
            "<p><b>{{senderName}}</b> shared <b>{{documentName}}</b> with you.</p>"
            '<p><a href="{{documentLink}}">Open the document</a></p>'
            "<p>{{message}}</p>"
        ),
    ),
    TemplateKind.WELCOME: EmailTemplate(
        subject="Welcome to the documentation portal",
        text=(
            "Hi {{userName}},\n\n"
            "An account was created for you ({{email}}). "
            "Sign in here: {{loginLink}}\n"
        ),
        html=(
            "<p>Hi {{userName}},</p>"
            "<p>An account was created for you (<b>{{email}}</b>).</p>"
            '<p><a href="{{loginLink}}">Sign in</a></p>'
        ),
    ),
}


def render(template: str, variables: Mapping[str, str], *, escape: bool = False) -> str:
    """Render a template; unknown variables render as empty strings."""
    env = _HTML_ENV if escape else _TEXT_ENV
    return env.from_string(template).render(dict(variables))


class NotificationSender(Protocol):
    def send(
        self,
        kind: TemplateKind,
        to_address: str,
        variables: Mapping[str, str],
    ) -> SendResult: ...


class SmtpNotificationSender:
    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def _build_message(
        self, kind: TemplateKind, to_address: str, variables: Mapping[str, str]
    ) -> EmailMessage:
        template = TEMPLATES[kind]
        msg = EmailMessage()
        msg["Subject"] = render(template.subject, variables)
        msg["From"] = formataddr(
            (self._settings.mail_from_name, self._settings.mail_from or "")
        )
        msg["To"] = to_address
        msg.set_content(render(template.text, variables))
        msg.add_alternative(render(template.html, variables, escape=True), subtype="html")
        return msg

    def send(
        self,
        kind: TemplateKind,
        to_address: str,
        variables: Mapping[str, str],
    ) -> SendResult:
        settings = self._settings
        if not settings.mail_from:
            return SendResult(success=False, error="Email sender is not configured")

        msg = self._build_message(kind, to_address, variables)
        try:
            with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=20) as smtp:
                smtp.ehlo()
                smtp.starttls(context=get_smtp_ctx())
                smtp.ehlo()
                if settings.smtp_username and settings.smtp_password:
                    smtp.login(settings.smtp_username, settings.smtp_password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("Sending %s email to %s failed: %s", kind, to_address, exc)
            return SendResult(success=False, error=str(exc))

        logger.info("Sent %s email to %s", kind, to_address)
        return SendResult(success=True)


class LogNotificationSender:
    """Development sender: renders the message and writes it to the log."""

    def send(
        self,
        kind: TemplateKind,
        to_address: str,
        variables: Mapping[str, str],
    ) -> SendResult:
        template = TEMPLATES[kind]
        logger.info(
            "Email %s to %s: %s\n%s",
            kind,
            to_address,
            render(template.subject, variables),
            render(template.text, variables),
        )
        return SendResult(success=True)


def build_notification_sender(settings: Settings) -> NotificationSender:
    backend = settings.notification_backend.strip().lower()
    if backend == "smtp":
        return SmtpNotificationSender(settings)
    if backend == "log":
        return LogNotificationSender()
    raise ValueError(f"Unsupported notification backend: {settings.notification_backend}")


def deliver(sender: NotificationSender, notification: OutgoingNotification) -> SendResult:
    result = sender.send(notification.kind, notification.to_address, notification.variables)
    if not result.success:
        logger.warning(
            "Notification %s to %s was not delivered: %s",
            notification.kind,
            notification.to_address,
            result.error,
        )
    return result
