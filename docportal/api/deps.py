from fastapi import Depends, Request
from sqlalchemy.orm import Session

from docportal.core.config import Settings, get_settings
from docportal.core.database import get_db
from docportal.core.errors import (
    AccountNotFound,
    AuthenticationError,
    PortalError,
)
from docportal.core.identity_provider import SqlIdentityProvider
from docportal.core.record_store import SqlRecordStore
from docportal.schemas.accounts import Account
from docportal.services.context import ServiceContext
from docportal.services.notification_service import NotificationSender
from docportal.services.records import load_account


def _extract_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None

    scheme, _, param = auth_header.strip().partition(" ")
    if scheme.lower() != "bearer" or not param:
        raise AuthenticationError("Invalid authorization header")
    return param.strip()


def get_notification_sender(request: Request) -> NotificationSender:
    sender = getattr(request.app.state, "notifier", None)
    if sender is None:
        raise RuntimeError("Notification sender is not configured on application state")
    return sender


def get_context(
    db: Session = Depends(get_db),
    notifier: NotificationSender = Depends(get_notification_sender),
    settings: Settings = Depends(get_settings),
) -> ServiceContext:
    return ServiceContext(
        store=SqlRecordStore(db),
        identity=SqlIdentityProvider(db, settings),
        notifier=notifier,
        settings=settings,
    )


def _authenticate_token(raw_token: str, ctx: ServiceContext) -> Account:
    account_id = ctx.identity.verify_identity(raw_token)
    try:
        account = load_account(ctx.store, account_id)
    except AccountNotFound as exc:
        raise AuthenticationError("Account not found") from exc
    if not account.active:
        raise AuthenticationError("Account disabled")
    return account


def get_current_account(
    request: Request,
    ctx: ServiceContext = Depends(get_context),
) -> Account:
    last_error: PortalError | None = None

    for raw_token in (_extract_bearer_token(request), request.cookies.get("access_token")):
        if not raw_token:
            continue
        try:
            return _authenticate_token(raw_token, ctx)
        except AuthenticationError as exc:
            last_error = exc

    if last_error:
        raise last_error
    raise AuthenticationError()
