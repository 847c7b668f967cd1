import logging

from docportal.core.errors import AccountNotFound, AuthorizationError, ValidationError
from docportal.core.record_store import DISTRIBUTORS
from docportal.schemas.accounts import Account, Role
from docportal.schemas.distributors import Distributor, DistributorUpdate
from docportal.services import authorization
from docportal.services.authorization import Operation, Target, TargetKind
from docportal.services.context import ServiceContext
from docportal.services.records import load_account, load_distributor, save_distributor

logger = logging.getLogger(__name__)


def _target(distributor: Distributor, fields: frozenset[str] = frozenset()) -> Target:
    return Target(kind=TargetKind.DISTRIBUTOR, id=distributor.id, fields=fields)


def list_distributors(ctx: ServiceContext, actor: Account) -> list[Distributor]:
    if actor.role is Role.ADMIN:
        return [
            Distributor.model_validate(document)
            for document in ctx.store.query(DISTRIBUTORS)
        ]
    if actor.role is Role.DISTRIBUTOR and actor.distributor_id:
        return [get_distributor(ctx, actor, actor.distributor_id)]
    raise AuthorizationError("installers and users cannot list distributors")


def get_distributor(ctx: ServiceContext, actor: Account, distributor_id: str) -> Distributor:
    distributor = load_distributor(ctx.store, distributor_id)
    authorization.require(actor, Operation.READ, _target(distributor))
    return distributor


def update_distributor(
    ctx: ServiceContext,
    actor: Account,
    distributor_id: str,
    patch: DistributorUpdate,
) -> Distributor:
    changes = patch.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise ValidationError("Nothing to update")
    if "company_name" in changes:
        changes["company_name"] = changes["company_name"].strip()
        if not changes["company_name"]:
            raise ValidationError("Company name is required")
    if "contact_email" in changes:
        changes["contact_email"] = str(changes["contact_email"]).strip().lower()

    distributor = load_distributor(ctx.store, distributor_id)
    authorization.require(actor, Operation.UPDATE, _target(distributor, frozenset(changes)))

    updated = distributor.model_copy(update=changes)
    save_distributor(ctx.store, updated)
    logger.info("Distributor %s updated by %s: %s", distributor.id, actor.id, sorted(changes))
    return updated


def list_team(ctx: ServiceContext, actor: Account, distributor_id: str) -> list[Account]:
    distributor = get_distributor(ctx, actor, distributor_id)
    members = []
    for account_id in distributor.team_members:
        try:
            members.append(load_account(ctx.store, account_id))
        except AccountNotFound:
            logger.warning(
                "Distributor %s lists missing team member %s", distributor.id, account_id
            )
    return members
