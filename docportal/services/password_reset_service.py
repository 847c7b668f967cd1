import logging
from urllib.parse import urlencode

from docportal.core.errors import AccountNotFound
from docportal.services.context import ServiceContext
from docportal.services.notification_service import OutgoingNotification, TemplateKind
from docportal.services.records import load_account

logger = logging.getLogger(__name__)


def reset_link(base_url: str, raw_token: str) -> str:
    return f"{base_url.rstrip('/')}/reset-password?{urlencode({'token': raw_token})}"


def request_password_reset(ctx: ServiceContext, email: str) -> OutgoingNotification | None:
    """Create a reset token when ``email`` has an identity.

    Returns the notification to deliver, or None for unknown emails; callers
    answer the same way in both cases.
    """
    identity = ctx.identity.find_by_email(email)
    if identity is None:
        return None

    try:
        user_name = load_account(ctx.store, identity.id).display_name
    except AccountNotFound:
        user_name = identity.email.split("@")[0]

    raw_token = ctx.identity.create_password_reset(identity.id)
    logger.info("Password reset requested for %s", identity.id)
    return OutgoingNotification(
        kind=TemplateKind.PASSWORD_RESET,
        to_address=identity.email,
        variables={
            "userName": user_name,
            "resetLink": reset_link(ctx.settings.app_base_url, raw_token),
        },
    )


def reset_password(ctx: ServiceContext, raw_token: str, new_password: str) -> None:
    ctx.identity.reset_password(raw_token, new_password)
