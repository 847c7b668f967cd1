from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from docportal.api.deps import get_context, get_current_account
from docportal.core.errors import AccountNotFound, AuthenticationError
from docportal.schemas.accounts import (
    Account,
    AccountOut,
    DisplayNameIn,
    LoginIn,
    PasswordChangeIn,
)
from docportal.services import account_service
from docportal.services.context import ServiceContext
from docportal.services.records import load_account

router = APIRouter(tags=["auth"])


@router.post("/login")
def login(payload: LoginIn, ctx: ServiceContext = Depends(get_context)):
    identity = ctx.identity.authenticate(payload.email, payload.password)
    try:
        account = load_account(ctx.store, identity.id)
    except AccountNotFound as exc:
        raise AuthenticationError("Invalid credentials") from exc
    if not account.active:
        raise AuthenticationError("Account disabled")

    account = account_service.record_login(ctx, account)
    access = ctx.identity.issue_session(account.id, account.role.value)

    resp = JSONResponse({"message": "ok", "role": account.role.value})
    resp.headers["Cache-Control"] = "no-store"
    resp.set_cookie(
        key="access_token",
        value=access,
        httponly=True,
        secure=ctx.settings.app_env != "development",
        samesite="lax",
        max_age=ctx.settings.access_min * 60,
        path="/",
    )
    return resp


@router.post("/logout")
def logout():
    resp = JSONResponse({"message": "ok"})
    resp.headers["Cache-Control"] = "no-store"
    resp.delete_cookie(key="access_token", path="/")
    return resp


@router.get("/me", response_model=AccountOut)
def me(account: Account = Depends(get_current_account)):
    return account


@router.patch("/me", response_model=AccountOut)
def update_my_name(
    payload: DisplayNameIn,
    ctx: ServiceContext = Depends(get_context),
    account: Account = Depends(get_current_account),
):
    return account_service.update_own_name(ctx, account, payload.display_name)


@router.post("/me/password", status_code=status.HTTP_200_OK)
def change_my_password(
    payload: PasswordChangeIn,
    ctx: ServiceContext = Depends(get_context),
    account: Account = Depends(get_current_account),
):
    account_service.update_own_password(
        ctx,
        account,
        payload.current_password.get_secret_value(),
        payload.new_password.get_secret_value(),
    )
    return {"message": "Password updated"}
