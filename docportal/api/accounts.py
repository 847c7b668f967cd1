from fastapi import APIRouter, Depends, status

from docportal.api.deps import get_context, get_current_account
from docportal.core.errors import AuthorizationError, ValidationError
from docportal.schemas.accounts import (
    Account,
    AccountCreate,
    AccountOut,
    AccountResultOut,
    AccountUpdate,
    DeleteUserIn,
    DeletionOut,
    DistributorAdminIn,
    Role,
)
from docportal.services import account_service
from docportal.services.context import ServiceContext

router = APIRouter(tags=["accounts"])


@router.get("/accounts", response_model=list[AccountOut])
def list_accounts(
    role: Role | None = None,
    ctx: ServiceContext = Depends(get_context),
    actor: Account = Depends(get_current_account),
):
    return account_service.list_accounts(ctx, actor, role)


@router.post(
    "/accounts",
    response_model=AccountResultOut,
    status_code=status.HTTP_201_CREATED,
)
def create_account(
    payload: AccountCreate,
    ctx: ServiceContext = Depends(get_context),
    actor: Account = Depends(get_current_account),
):
    result = account_service.create_account(ctx, actor, payload)
    return AccountResultOut(
        account=AccountOut.model_validate(result.account),
        warnings=result.warnings,
    )


@router.get("/accounts/{account_id}", response_model=AccountOut)
def get_account(
    account_id: str,
    ctx: ServiceContext = Depends(get_context),
    actor: Account = Depends(get_current_account),
):
    return account_service.get_account(ctx, actor, account_id)


@router.patch("/accounts/{account_id}", response_model=AccountResultOut)
def update_account(
    account_id: str,
    payload: AccountUpdate,
    ctx: ServiceContext = Depends(get_context),
    actor: Account = Depends(get_current_account),
):
    result = account_service.update_account(ctx, actor, account_id, payload)
    return AccountResultOut(
        account=AccountOut.model_validate(result.account),
        warnings=result.warnings,
    )


@router.put("/accounts/{account_id}/distributor-admin", response_model=AccountOut)
def set_distributor_admin(
    account_id: str,
    payload: DistributorAdminIn,
    ctx: ServiceContext = Depends(get_context),
    actor: Account = Depends(get_current_account),
):
    return account_service.set_distributor_admin(ctx, actor, account_id, payload.enabled)


@router.delete("/accounts/{account_id}", response_model=DeletionOut)
def delete_account(
    account_id: str,
    ctx: ServiceContext = Depends(get_context),
    actor: Account = Depends(get_current_account),
):
    result = account_service.delete_account(ctx, actor, account_id)
    return DeletionOut(message="Account deleted", warnings=result.warnings)


@router.post("/delete-user", response_model=DeletionOut)
def delete_user(
    payload: DeleteUserIn,
    ctx: ServiceContext = Depends(get_context),
    actor: Account = Depends(get_current_account),
):
    if not payload.user_id:
        raise ValidationError("userId is required")
    if not payload.admin_user_id:
        raise ValidationError("adminUserId is required")
    if payload.admin_user_id != actor.id:
        raise AuthorizationError("adminUserId does not match the session")

    result = account_service.delete_account(ctx, actor, payload.user_id)
    return DeletionOut(message="Account deleted", warnings=result.warnings)
