from fastapi import APIRouter, BackgroundTasks, Depends, status

from docportal.api.deps import get_context
from docportal.schemas.password_reset import PasswordForgotIn, PasswordResetIn
from docportal.services import password_reset_service
from docportal.services.context import ServiceContext
from docportal.services.notification_service import deliver

router = APIRouter(prefix="/password", tags=["password"])

_FORGOT_MESSAGE = "If the email address is valid, instructions will be sent."


@router.post("/forgot", status_code=status.HTTP_200_OK)
def forgot_password(
    payload: PasswordForgotIn,
    background_tasks: BackgroundTasks,
    ctx: ServiceContext = Depends(get_context),
):
    notification = password_reset_service.request_password_reset(ctx, str(payload.email))
    if notification is not None:
        background_tasks.add_task(deliver, ctx.notifier, notification)
    return {"message": _FORGOT_MESSAGE}


@router.post("/reset", status_code=status.HTTP_200_OK)
def reset_password(
    payload: PasswordResetIn,
    ctx: ServiceContext = Depends(get_context),
):
    password_reset_service.reset_password(
        ctx,
        payload.token.get_secret_value(),
        payload.password.get_secret_value(),
    )
    return {"message": "Password updated"}
