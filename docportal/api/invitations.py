from fastapi import APIRouter, Depends, Query, Response, status

from docportal.api.deps import get_context, get_current_account
from docportal.schemas.accounts import Account, AccountOut, AccountResultOut, Role
from docportal.schemas.invitations import (
    InvitationAcceptIn,
    InvitationCreate,
    InvitationCreatedOut,
    InvitationOut,
    InvitationStatus,
    InvitationVerifyIn,
    InvitationVerifyOut,
)
from docportal.services import invitation_service
from docportal.services.context import ServiceContext

router = APIRouter(prefix="/invitations", tags=["invitations"])


@router.get("", response_model=list[InvitationOut])
def list_invitations(
    role: Role | None = None,
    invitation_status: InvitationStatus | None = Query(default=None, alias="status"),
    ctx: ServiceContext = Depends(get_context),
    actor: Account = Depends(get_current_account),
):
    return invitation_service.list_invitations(ctx, actor, role, invitation_status)


@router.post("", response_model=InvitationCreatedOut, status_code=status.HTTP_201_CREATED)
def create_invitation(
    payload: InvitationCreate,
    ctx: ServiceContext = Depends(get_context),
    inviter: Account = Depends(get_current_account),
):
    result = invitation_service.create_invitation(ctx, inviter, payload)
    return InvitationCreatedOut(
        invitation=InvitationOut.model_validate(result.invitation),
        email_sent=result.email_sent,
        warnings=result.warnings,
    )


@router.post("/verify", response_model=InvitationVerifyOut)
def verify_invitation(
    payload: InvitationVerifyIn,
    ctx: ServiceContext = Depends(get_context),
):
    invitation = invitation_service.verify_invitation(ctx, payload.token.get_secret_value())
    return InvitationVerifyOut(
        email=invitation.email,
        name=invitation.name,
        role=invitation.role,
        company_name=invitation.company_name,
        inviter_name=invitation.inviter_name,
        inviter_company=invitation.inviter_company,
        expires_at=invitation.expires_at,
    )


@router.post("/accept", response_model=AccountResultOut, status_code=status.HTTP_201_CREATED)
def accept_invitation(
    payload: InvitationAcceptIn,
    ctx: ServiceContext = Depends(get_context),
):
    result = invitation_service.accept_invitation(
        ctx,
        payload.token.get_secret_value(),
        payload.password,
        payload.display_name,
    )
    return AccountResultOut(
        account=AccountOut.model_validate(result.account),
        warnings=result.warnings,
    )


@router.post("/{invitation_id}/resend", response_model=InvitationOut)
def resend_invitation(
    invitation_id: str,
    ctx: ServiceContext = Depends(get_context),
    actor: Account = Depends(get_current_account),
):
    return invitation_service.resend_invitation(ctx, actor, invitation_id)


@router.delete("/{invitation_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_invitation(
    invitation_id: str,
    ctx: ServiceContext = Depends(get_context),
    actor: Account = Depends(get_current_account),
):
    invitation_service.delete_invitation(ctx, actor, invitation_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
