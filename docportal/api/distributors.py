from fastapi import APIRouter, Depends

from docportal.api.deps import get_context, get_current_account
from docportal.schemas.accounts import Account
from docportal.schemas.distributors import DistributorOut, DistributorUpdate, TeamMemberOut
from docportal.services import distributor_service
from docportal.services.context import ServiceContext

router = APIRouter(prefix="/distributors", tags=["distributors"])


@router.get("", response_model=list[DistributorOut])
def list_distributors(
    ctx: ServiceContext = Depends(get_context),
    actor: Account = Depends(get_current_account),
):
    return distributor_service.list_distributors(ctx, actor)


@router.get("/{distributor_id}", response_model=DistributorOut)
def get_distributor(
    distributor_id: str,
    ctx: ServiceContext = Depends(get_context),
    actor: Account = Depends(get_current_account),
):
    return distributor_service.get_distributor(ctx, actor, distributor_id)


@router.patch("/{distributor_id}", response_model=DistributorOut)
def update_distributor(
    distributor_id: str,
    payload: DistributorUpdate,
    ctx: ServiceContext = Depends(get_context),
    actor: Account = Depends(get_current_account),
):
    return distributor_service.update_distributor(ctx, actor, distributor_id, payload)


@router.get("/{distributor_id}/team", response_model=list[TeamMemberOut])
def list_team(
    distributor_id: str,
    ctx: ServiceContext = Depends(get_context),
    actor: Account = Depends(get_current_account),
):
    return distributor_service.list_team(ctx, actor, distributor_id)
