"""Invitation issuing, delivery and redemption.

A pending invitation is redeemable until ``expires_at``. Expiry is derived on
read; the stored status is moved to ``expired`` when an expired invitation is
observed, but redemption is refused past ``expires_at`` whatever the stored
status says.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from urllib.parse import urlencode

from pydantic import SecretStr

from docportal.core.errors import (
    AccountNotFound,
    AuthorizationError,
    ConflictError,
    InvitationAlreadyUsed,
    InvitationExpired,
    InvitationNotFound,
    NotFoundError,
    NotificationFailed,
    PortalError,
    ValidationError,
)
from docportal.core.record_store import INVITATIONS, RecordStore
from docportal.core.security import generate_raw_token
from docportal.schemas.accounts import Account, AccountCreate, Role
from docportal.schemas.invitations import (
    Invitation,
    InvitationCreate,
    InvitationStatus,
)
from docportal.services import account_service, authorization
from docportal.services.authorization import Operation, Target, TargetKind
from docportal.services.context import ServiceContext, new_id, utcnow
from docportal.services.notification_service import SendResult, TemplateKind
from docportal.services.records import (
    find_invitation_by_token,
    load_account,
    load_distributor,
    load_invitation,
    save_invitation,
)

logger = logging.getLogger(__name__)

INVITATION_TEMPLATES: dict[Role, TemplateKind] = {
    Role.INSTALLER: TemplateKind.INSTALLER_INVITATION,
    Role.USER: TemplateKind.USER_INVITATION,
    Role.DISTRIBUTOR: TemplateKind.DISTRIBUTOR_INVITATION,
}


@dataclass(slots=True)
class InvitationResult:
    invitation: Invitation
    email_sent: bool
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class AcceptanceResult:
    account: Account
    invitation: Invitation
    warnings: list[str] = field(default_factory=list)


def effective_status(invitation: Invitation, now: datetime) -> InvitationStatus:
    if invitation.status is InvitationStatus.PENDING and now > invitation.expires_at:
        return InvitationStatus.EXPIRED
    return invitation.status


def acceptance_link(base_url: str, token: str, role: Role) -> str:
    query = urlencode({"token": token, "role": role.value})
    return f"{base_url.rstrip('/')}/accept-invitation?{query}"


def invitation_target(invitation: Invitation) -> Target:
    return Target(
        kind=TargetKind.INVITATION,
        id=invitation.id,
        role=invitation.role,
        distributor_id=invitation.distributor_id,
        owner_id=invitation.inviter_id,
    )


def _unique_token(store: RecordStore) -> str:
    raw_token = generate_raw_token(32)
    if store.query(INVITATIONS, [("token", "==", raw_token)]):
        return _unique_token(store)
    return raw_token


def _send(ctx: ServiceContext, invitation: Invitation) -> SendResult:
    link = acceptance_link(ctx.settings.app_base_url, invitation.token, invitation.role)
    variables = {
        "userName": invitation.name,
        "installerName": invitation.name,
        "companyName": invitation.company_name or "",
        "inviterName": invitation.inviter_name,
        "inviterCompany": invitation.inviter_company,
        "invitationLink": link,
        "expiresAt": invitation.expires_at.strftime("%Y-%m-%d %H:%M UTC"),
    }
    return ctx.notifier.send(
        INVITATION_TEMPLATES[invitation.role], invitation.email, variables
    )


def _mark_sent(ctx: ServiceContext, invitation: Invitation) -> None:
    invitation.last_sent_at = utcnow()
    ctx.store.set(
        INVITATIONS,
        invitation.id,
        {"last_sent_at": invitation.last_sent_at.isoformat()},
        merge=True,
    )


def _ensure_redeemable(ctx: ServiceContext, invitation: Invitation) -> None:
    if invitation.status is InvitationStatus.ACCEPTED:
        raise InvitationAlreadyUsed()
    if effective_status(invitation, utcnow()) is not InvitationStatus.EXPIRED:
        return
    if invitation.status is InvitationStatus.PENDING:
        try:
            ctx.store.set(
                INVITATIONS,
                invitation.id,
                {"status": InvitationStatus.EXPIRED.value},
                merge=True,
            )
        except PortalError:
            logger.warning("Could not record expiry of invitation %s", invitation.id)
    raise InvitationExpired()


def create_invitation(
    ctx: ServiceContext, inviter: Account, payload: InvitationCreate
) -> InvitationResult:
    if inviter.role is not Role.DISTRIBUTOR:
        raise AuthorizationError("only distributors send invitations")
    name = payload.name.strip()
    if not name:
        raise ValidationError("The invitee's name is required")
    company_name = (payload.company_name or "").strip() or None
    if payload.role is Role.INSTALLER and not company_name:
        raise ValidationError("Installer invitations need a company name")
    if payload.role is not Role.INSTALLER:
        company_name = None

    authorization.require(
        inviter,
        Operation.INVITE,
        Target(
            kind=TargetKind.INVITATION,
            role=payload.role,
            distributor_id=inviter.distributor_id,
            owner_id=inviter.id,
        ),
    )
    organization = load_distributor(ctx.store, inviter.distributor_id)

    now = utcnow()
    invitation = Invitation(
        id=new_id(),
        email=str(payload.email).strip().lower(),
        name=name,
        role=payload.role,
        company_name=company_name,
        inviter_id=inviter.id,
        inviter_name=inviter.display_name or inviter.email,
        inviter_company=organization.company_name,
        distributor_id=organization.id,
        token=_unique_token(ctx.store),
        status=InvitationStatus.PENDING,
        created_at=now,
        expires_at=now + timedelta(days=ctx.settings.invitation_ttl_days),
    )
    save_invitation(ctx.store, invitation)
    logger.info(
        "Invitation %s (%s) created by %s", invitation.id, invitation.role, inviter.id
    )

    # The invitation stays even if delivery fails; it can be resent.
    result = _send(ctx, invitation)
    warnings: list[str] = []
    if result.success:
        try:
            _mark_sent(ctx, invitation)
        except PortalError:
            logger.warning("Could not record delivery of invitation %s", invitation.id)
    else:
        logger.warning(
            "Invitation %s saved but not delivered: %s", invitation.id, result.error
        )
        warnings.append(
            NotificationFailed(
                f"The invitation was saved but the email could not be sent: {result.error}"
            ).message
        )
    return InvitationResult(
        invitation=invitation, email_sent=result.success, warnings=warnings
    )


def resend_invitation(
    ctx: ServiceContext, actor: Account, invitation_id: str
) -> Invitation:
    invitation = load_invitation(ctx.store, invitation_id)
    authorization.require(actor, Operation.UPDATE, invitation_target(invitation))
    _ensure_redeemable(ctx, invitation)

    result = _send(ctx, invitation)
    if not result.success:
        raise NotificationFailed(f"The invitation email could not be sent: {result.error}")
    _mark_sent(ctx, invitation)
    return invitation


def verify_invitation(ctx: ServiceContext, token: str) -> Invitation:
    invitation = find_invitation_by_token(ctx.store, token)
    _ensure_redeemable(ctx, invitation)
    return invitation


def accept_invitation(
    ctx: ServiceContext,
    token: str,
    password: SecretStr,
    display_name: str | None = None,
) -> AcceptanceResult:
    invitation = find_invitation_by_token(ctx.store, token)
    _ensure_redeemable(ctx, invitation)

    try:
        inviter = load_account(ctx.store, invitation.inviter_id)
    except AccountNotFound as exc:
        raise InvitationNotFound("The inviting distributor no longer exists") from exc
    if inviter.role is not Role.DISTRIBUTOR or not inviter.distributor_id:
        raise ConflictError("The inviting account can no longer provision accounts")

    # The invitation stays pending unless the account is actually created.
    created = account_service.create_account(
        ctx,
        inviter,
        AccountCreate(
            email=invitation.email,
            password=password,
            display_name=display_name or invitation.name,
            role=invitation.role,
            distributor_id=inviter.distributor_id,
        ),
        send_welcome=False,
    )

    warnings = list(created.warnings)
    invitation.status = InvitationStatus.ACCEPTED
    invitation.accepted_at = utcnow()
    invitation.account_id = created.account.id
    try:
        ctx.store.set(
            INVITATIONS,
            invitation.id,
            {
                "status": invitation.status.value,
                "accepted_at": invitation.accepted_at.isoformat(),
                "account_id": invitation.account_id,
            },
            merge=True,
        )
    except PortalError as exc:
        logger.error("Invitation %s could not be marked accepted", invitation.id)
        warnings.append(f"The invitation could not be marked as used: {exc.message}")

    logger.info(
        "Invitation %s accepted, account %s created", invitation.id, created.account.id
    )
    return AcceptanceResult(account=created.account, invitation=invitation, warnings=warnings)


def delete_invitation(ctx: ServiceContext, actor: Account, invitation_id: str) -> None:
    invitation = load_invitation(ctx.store, invitation_id)
    authorization.require(actor, Operation.DELETE, invitation_target(invitation))
    try:
        ctx.store.delete(INVITATIONS, invitation.id)
    except NotFoundError as exc:
        raise InvitationNotFound() from exc
    logger.info("Invitation %s deleted by %s", invitation.id, actor.id)


def list_invitations(
    ctx: ServiceContext,
    actor: Account,
    role: Role | None = None,
    status: InvitationStatus | None = None,
) -> list[Invitation]:
    if actor.role is Role.ADMIN:
        where = []
    elif actor.role is Role.DISTRIBUTOR and actor.distributor_id:
        where = [("distributor_id", "==", actor.distributor_id)]
    else:
        raise AuthorizationError("installers and users have no invitations")
    if role is not None:
        where.append(("role", "==", role.value))

    now = utcnow()
    invitations = []
    for document in ctx.store.query(INVITATIONS, where):
        invitation = Invitation.model_validate(document)
        if not authorization.can_perform(actor, Operation.READ, invitation_target(invitation)):
            continue
        invitation.status = effective_status(invitation, now)
        if status is None or invitation.status is status:
            invitations.append(invitation)
    return invitations
