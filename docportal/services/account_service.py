import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import partial

from docportal.core.errors import (
    AccountNotFound,
    CascadeError,
    NotFoundError,
    PortalError,
    UpstreamError,
    ValidationError,
)
from docportal.core.identity_provider import normalize_email
from docportal.core.record_store import ACCOUNTS, DISTRIBUTORS
from docportal.schemas.accounts import (
    TENANT_ROLES,
    Account,
    AccountCreate,
    AccountUpdate,
    Role,
)
from docportal.schemas.distributors import Distributor
from docportal.services import authorization
from docportal.services.authorization import Operation, Target, TargetKind
from docportal.services.context import ServiceContext, new_id, utcnow
from docportal.services.notification_service import TemplateKind
from docportal.services.records import (
    find_distributor,
    load_account,
    load_distributor,
    save_account,
    save_distributor,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AccountResult:
    account: Account
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class DeletionResult:
    account_id: str
    warnings: list[str] = field(default_factory=list)


@dataclass(slots=True)
class _Tenancy:
    distributor_id: str | None = None
    new_organization_name: str | None = None


def account_target(
    account: Account,
    organization: Distributor | None,
    **overrides,
) -> Target:
    values = {
        "kind": TargetKind.ACCOUNT,
        "id": account.id,
        "role": account.role,
        "distributor_id": account.distributor_id,
        "admin_members": (
            frozenset(organization.admin_members) if organization else frozenset()
        ),
        "organization_active": organization.active if organization else True,
    }
    values.update(overrides)
    return Target(**values)


def _clean_name(value: str) -> str:
    name = value.strip()
    if not name:
        raise ValidationError("Display name is required")
    return name


def _cascade(warnings: list[str], description: str, step: Callable[[], object]) -> None:
    """Run one post-commit cleanup step; failures become warnings."""
    try:
        step()
    except PortalError as exc:
        error = CascadeError(f"{description}: {exc.message}")
        logger.warning("Cascade step failed: %s", error.message)
        warnings.append(error.message)


def _plan_tenancy(creator: Account, payload: AccountCreate) -> _Tenancy:
    new_name = (payload.new_distributor_name or "").strip() or None
    creator_org = (
        creator.distributor_id if creator.role is Role.DISTRIBUTOR else None
    )

    if payload.role is Role.ADMIN:
        if payload.distributor_id or new_name:
            raise ValidationError("Administrators do not belong to a distributor")
        return _Tenancy()

    if payload.role is Role.DISTRIBUTOR and new_name:
        if payload.distributor_id:
            raise ValidationError(
                "Choose either an existing distributor or a new organization"
            )
        return _Tenancy(new_organization_name=new_name)

    if new_name:
        raise ValidationError("Only distributor accounts can create an organization")

    distributor_id = payload.distributor_id or creator_org
    if not distributor_id:
        raise ValidationError(f"A {payload.role} account needs a distributor")
    return _Tenancy(distributor_id=distributor_id)


def _manager_for(creator: Account, organization: Distributor) -> str:
    """Account whose managed_users list receives a newly provisioned user."""
    if creator.role is Role.DISTRIBUTOR and creator.distributor_id == organization.id:
        return creator.id
    if not organization.admin_members:
        raise ValidationError("The distributor has no administrator to manage this account")
    return organization.admin_members[0]


def _rollback_identity(ctx: ServiceContext, identity_id: str) -> None:
    try:
        ctx.identity.delete_identity(identity_id)
    except PortalError:
        logger.exception("Could not remove identity %s after a failed create", identity_id)


def _discard_organization(ctx: ServiceContext, distributor_id: str) -> None:
    try:
        ctx.store.delete(DISTRIBUTORS, distributor_id)
    except PortalError:
        logger.exception("Orphaned distributor %s could not be removed", distributor_id)


def _send_welcome(ctx: ServiceContext, account: Account, warnings: list[str]) -> None:
    base_url = ctx.settings.app_base_url.rstrip("/")
    result = ctx.notifier.send(
        TemplateKind.WELCOME,
        account.email,
        {
            "userName": account.display_name,
            "email": account.email,
            "loginLink": f"{base_url}/login",
        },
    )
    if not result.success:
        logger.warning("Welcome email to %s failed: %s", account.email, result.error)
        warnings.append(f"The welcome email could not be sent: {result.error}")


def create_account(
    ctx: ServiceContext,
    creator: Account,
    payload: AccountCreate,
    *,
    send_welcome: bool = True,
) -> AccountResult:
    display_name = _clean_name(payload.display_name)
    password = payload.password.get_secret_value()
    if not password:
        raise ValidationError("Password is required")
    tenancy = _plan_tenancy(creator, payload)
    authorization.require(
        creator,
        Operation.CREATE,
        Target(
            kind=TargetKind.ACCOUNT,
            role=payload.role,
            distributor_id=tenancy.distributor_id,
        ),
    )

    organization = None
    manager_id = None
    if tenancy.distributor_id:
        organization = load_distributor(ctx.store, tenancy.distributor_id)
        if not organization.active:
            raise ValidationError("This distributor is inactive")
        if payload.role in TENANT_ROLES:
            manager_id = _manager_for(creator, organization)

    # Commit point: from here on the identity exists.
    identity = ctx.identity.create_identity(normalize_email(payload.email), password)

    now = utcnow()
    account = Account(
        id=identity.id,
        email=identity.email,
        display_name=display_name,
        role=payload.role,
        active=True,
        created_at=now,
        created_by=creator.id,
        distributor_id=tenancy.distributor_id,
    )

    created_organization = None
    if tenancy.new_organization_name:
        created_organization = Distributor(
            id=new_id(),
            company_name=tenancy.new_organization_name,
            contact_email=identity.email,
            created_at=now,
            team_members=[account.id],
            admin_members=[account.id],
        )
        try:
            save_distributor(ctx.store, created_organization)
        except PortalError:
            _rollback_identity(ctx, identity.id)
            raise
        account.distributor_id = created_organization.id
        account.is_distributor_admin = True

    try:
        save_account(ctx.store, account)
    except PortalError as exc:
        logger.error("Account record for %s could not be written", identity.email)
        if created_organization is not None:
            _discard_organization(ctx, created_organization.id)
        _rollback_identity(ctx, identity.id)
        raise UpstreamError("The account could not be saved") from exc

    warnings: list[str] = []
    if payload.role is Role.DISTRIBUTOR and created_organization is None:
        _cascade(
            warnings,
            "adding the account to its team",
            lambda: ctx.store.add_to_list(
                DISTRIBUTORS, account.distributor_id, "team_members", account.id
            ),
        )
    if manager_id is not None:
        _cascade(
            warnings,
            "adding the account to its distributor's managed users",
            lambda: ctx.store.add_to_list(ACCOUNTS, manager_id, "managed_users", account.id),
        )
    if send_welcome:
        _send_welcome(ctx, account, warnings)

    logger.info(
        "Account %s (%s) created by %s", account.id, account.role, creator.id
    )
    return AccountResult(account=account, warnings=warnings)


def get_account(ctx: ServiceContext, actor: Account, account_id: str) -> Account:
    account = load_account(ctx.store, account_id)
    organization = find_distributor(ctx.store, account.distributor_id)
    authorization.require(actor, Operation.READ, account_target(account, organization))
    return account


def list_accounts(
    ctx: ServiceContext, actor: Account, role: Role | None = None
) -> list[Account]:
    if actor.role is Role.ADMIN:
        where = []
    elif actor.role is Role.DISTRIBUTOR and actor.distributor_id:
        where = [("distributor_id", "==", actor.distributor_id)]
    else:
        return [actor] if role in (None, actor.role) else []

    if role is not None:
        where.append(("role", "==", role.value))
    accounts = [
        Account.model_validate(document)
        for document in ctx.store.query(ACCOUNTS, where)
    ]
    return [
        account
        for account in accounts
        if authorization.can_perform(
            actor, Operation.READ, account_target(account, None)
        )
    ]


def _check_role_change(current: Role, requested: Role) -> None:
    if requested is current or requested is Role.ADMIN:
        return
    if current in TENANT_ROLES and requested in TENANT_ROLES:
        return
    raise ValidationError(
        f"Changing a {current} account into a {requested} requires re-provisioning it"
    )


def _release_memberships(
    ctx: ServiceContext,
    account: Account,
    organization: Distributor | None,
    warnings: list[str],
) -> None:
    """Remove ``account`` from every id list and rehome the users it managed."""
    store = ctx.store

    def _organizations() -> list[dict]:
        found = {}
        for list_name in ("team_members", "admin_members"):
            for document in store.query(
                DISTRIBUTORS, [(list_name, "array-contains", account.id)]
            ):
                found[document["id"]] = document
        return list(found.values())

    organizations: list[dict] = []
    _cascade(warnings, "finding organizations", lambda: organizations.extend(_organizations()))
    for document in organizations:
        for list_name in ("admin_members", "team_members"):
            _cascade(
                warnings,
                f"removing the account from {document['id']} {list_name}",
                partial(
                    store.remove_from_list,
                    DISTRIBUTORS,
                    document["id"],
                    list_name,
                    account.id,
                ),
            )

    managers: list[dict] = []
    _cascade(
        warnings,
        "finding managing distributors",
        lambda: managers.extend(
            store.query(ACCOUNTS, [("managed_users", "array-contains", account.id)])
        ),
    )
    for document in managers:
        _cascade(
            warnings,
            f"removing the account from {document['id']} managed users",
            lambda manager_id=document["id"]: store.remove_from_list(
                ACCOUNTS, manager_id, "managed_users", account.id
            ),
        )

    if not account.managed_users:
        return
    heirs = [
        admin_id
        for admin_id in (organization.admin_members if organization else [])
        if admin_id != account.id
    ]
    if not heirs:
        message = CascadeError(
            f"{len(account.managed_users)} managed account(s) have no distributor admin left"
        ).message
        logger.warning(message)
        warnings.append(message)
        return
    for user_id in account.managed_users:
        _cascade(
            warnings,
            f"handing {user_id} over to {heirs[0]}",
            lambda user_id=user_id: store.add_to_list(
                ACCOUNTS, heirs[0], "managed_users", user_id
            ),
        )


def update_account(
    ctx: ServiceContext, actor: Account, account_id: str, patch: AccountUpdate
) -> AccountResult:
    changes = {
        name: value
        for name, value in patch.model_dump(exclude_unset=True).items()
        if value is not None
    }
    if not changes:
        raise ValidationError("Nothing to update")

    account = load_account(ctx.store, account_id)
    new_role = patch.role or account.role
    organization = find_distributor(ctx.store, account.distributor_id)
    authorization.require(
        actor,
        Operation.UPDATE,
        account_target(account, organization, role=new_role, fields=frozenset(changes)),
    )
    if "role" in changes:
        _check_role_change(account.role, new_role)

    warnings: list[str] = []
    if patch.display_name is not None:
        account.display_name = _clean_name(patch.display_name)
    if new_role is not account.role:
        if new_role is Role.ADMIN:
            _release_memberships(ctx, account, organization, warnings)
            account.distributor_id = None
            account.is_distributor_admin = False
            account.managed_users = []
        account.role = new_role

    save_account(ctx.store, account)
    logger.info("Account %s updated by %s: %s", account.id, actor.id, sorted(changes))
    return AccountResult(account=account, warnings=warnings)


def set_distributor_admin(
    ctx: ServiceContext, actor: Account, account_id: str, enabled: bool
) -> Account:
    account = load_account(ctx.store, account_id)
    organization = find_distributor(ctx.store, account.distributor_id)
    authorization.require(
        actor,
        Operation.GRANT_ORG_ADMIN,
        account_target(account, organization, revokes_org_admin=not enabled),
    )
    if account.role is not Role.DISTRIBUTOR or organization is None:
        raise ValidationError("Only distributor team members can be organization admins")

    if enabled:
        # admin_members must stay a subset of team_members.
        ctx.store.add_to_list(DISTRIBUTORS, organization.id, "team_members", account.id)
        ctx.store.add_to_list(DISTRIBUTORS, organization.id, "admin_members", account.id)
        account.is_distributor_admin = True
        save_account(ctx.store, account)
    else:
        account.is_distributor_admin = False
        save_account(ctx.store, account)
        ctx.store.remove_from_list(
            DISTRIBUTORS, organization.id, "admin_members", account.id
        )
    logger.info(
        "Organization admin rights of %s set to %s by %s", account.id, enabled, actor.id
    )
    return account


def delete_account(ctx: ServiceContext, actor: Account, account_id: str) -> DeletionResult:
    account = load_account(ctx.store, account_id)
    organization = find_distributor(ctx.store, account.distributor_id)
    authorization.require(actor, Operation.DELETE, account_target(account, organization))

    # The identity goes first: a failure here must leave the record untouched.
    try:
        ctx.identity.delete_identity(account.id)
    except NotFoundError:
        logger.warning("Identity of %s was already removed", account.id)

    try:
        ctx.store.delete(ACCOUNTS, account.id)
    except NotFoundError as exc:
        raise AccountNotFound() from exc

    warnings: list[str] = []
    _release_memberships(ctx, account, organization, warnings)
    logger.info(
        "Account %s deleted by %s (%d cleanup warnings)",
        account.id,
        actor.id,
        len(warnings),
    )
    return DeletionResult(account_id=account.id, warnings=warnings)


def update_own_name(ctx: ServiceContext, actor: Account, display_name: str) -> Account:
    authorization.require(
        actor,
        Operation.UPDATE,
        account_target(actor, None, fields=frozenset({"display_name"})),
    )
    name = _clean_name(display_name)
    account = load_account(ctx.store, actor.id)
    account.display_name = name
    save_account(ctx.store, account)
    return account


def update_own_password(
    ctx: ServiceContext, actor: Account, current_password: str, new_password: str
) -> None:
    authorization.require(
        actor,
        Operation.UPDATE,
        account_target(actor, None, fields=frozenset({"password"})),
    )
    if not new_password:
        raise ValidationError("Password is required")
    ctx.identity.change_password(actor.id, current_password, new_password)
    logger.info("Password of %s changed", actor.id)


def record_login(ctx: ServiceContext, account: Account) -> Account:
    account.last_login = utcnow()
    save_account(ctx.store, account)
    return account
