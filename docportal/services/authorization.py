"""Authorization decisions for accounts, organizations, invitations and documents.

``can_perform`` is pure: the actor and everything it needs to know about the
target are passed in, nothing is read from storage or ambient state. Each
role maps to exactly one policy function in ``ROLE_POLICIES``; a role with no
entry is denied everything.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

from docportal.core.errors import AuthorizationError, LastOrganizationAdmin
from docportal.schemas.accounts import TENANT_ROLES, Account, Role

logger = logging.getLogger(__name__)


class Operation(StrEnum):
    READ = "read"
    CREATE = "create"
    INVITE = "invite"
    UPDATE = "update"
    DELETE = "delete"
    GRANT_ORG_ADMIN = "grant_org_admin"


class TargetKind(StrEnum):
    ACCOUNT = "account"
    DISTRIBUTOR = "distributor"
    INVITATION = "invitation"
    DOCUMENT = "document"


SELF_SERVICE_FIELDS = frozenset({"display_name", "password"})
DISTRIBUTOR_MANAGED_ROLES = frozenset({Role.DISTRIBUTOR, *TENANT_ROLES})
ORGANIZATION_SETTINGS_FIELDS = frozenset(
    {"company_name", "contact_email", "contact_phone", "address", "logo"}
)
_ELEVATING_OPERATIONS = frozenset(
    {Operation.CREATE, Operation.INVITE, Operation.UPDATE, Operation.GRANT_ORG_ADMIN}
)

LAST_ADMIN = "last_admin"


@dataclass(frozen=True, slots=True)
class Target:
    """What an operation acts on.

    ``role`` is the role the target has after the operation (the requested
    role for creates, invites and role changes). ``admin_members`` and
    ``organization_active`` describe the organization the target belongs to.
    ``owner_id`` is the inviter of an invitation.
    """

    kind: TargetKind
    id: str | None = None
    role: Role | None = None
    distributor_id: str | None = None
    owner_id: str | None = None
    fields: frozenset[str] = frozenset()
    admin_members: frozenset[str] = frozenset()
    organization_active: bool = True
    access_roles: frozenset[Role] = frozenset()
    revokes_org_admin: bool = False


@dataclass(frozen=True, slots=True)
class Decision:
    allowed: bool
    reason: str | None = None
    code: str | None = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(allowed=True)


def deny(reason: str, code: str | None = None) -> Decision:
    return Decision(allowed=False, reason=reason, code=code)


Policy = Callable[[Account, Operation, Target], Decision]


def _removes_org_admin(operation: Operation, target: Target) -> bool:
    if target.kind is not TargetKind.ACCOUNT or target.id not in target.admin_members:
        return False
    if operation is Operation.DELETE:
        return True
    if operation is Operation.GRANT_ORG_ADMIN:
        return target.revokes_org_admin
    if operation is Operation.UPDATE:
        return "role" in target.fields and target.role is not Role.DISTRIBUTOR
    return False


def _is_self_service(actor: Account, operation: Operation, target: Target) -> bool:
    if target.kind is not TargetKind.ACCOUNT or target.id != actor.id:
        return False
    if operation is Operation.READ:
        return True
    return operation is Operation.UPDATE and target.fields <= SELF_SERVICE_FIELDS


def _admin_policy(actor: Account, operation: Operation, target: Target) -> Decision:
    return ALLOW


def _distributor_policy(
    actor: Account, operation: Operation, target: Target
) -> Decision:
    if _is_self_service(actor, operation, target):
        return ALLOW

    organization = actor.distributor_id
    if organization is None:
        return deny("distributor account without organization")
    manages = actor.is_distributor_admin

    if target.kind is TargetKind.DISTRIBUTOR:
        if target.id != organization:
            return deny("other organization")
        if operation is Operation.READ:
            return ALLOW
        if (
            operation is Operation.UPDATE
            and manages
            and target.fields <= ORGANIZATION_SETTINGS_FIELDS
        ):
            return ALLOW
        return deny("organization settings are managed by organization admins")

    if target.kind is TargetKind.INVITATION:
        if operation is Operation.INVITE:
            if not manages:
                return deny("read-only team member")
            if target.distributor_id != organization:
                return deny("other organization")
            if target.role not in DISTRIBUTOR_MANAGED_ROLES:
                return deny(f"cannot invite role {target.role}")
            return ALLOW
        if operation is Operation.READ:
            if target.owner_id == actor.id or target.distributor_id == organization:
                return ALLOW
            return deny("other organization")
        if operation in (Operation.UPDATE, Operation.DELETE):
            if target.owner_id == actor.id:
                return ALLOW
            return deny("only the inviter may change an invitation")
        return deny(f"{operation} is not an invitation operation")

    if target.kind is TargetKind.ACCOUNT:
        if target.distributor_id != organization:
            return deny("other organization")
        if operation is Operation.READ:
            return ALLOW
        if not manages:
            return deny("read-only team member")
        if target.role not in DISTRIBUTOR_MANAGED_ROLES:
            return deny(f"cannot manage role {target.role}")
        if operation is Operation.GRANT_ORG_ADMIN:
            if target.role is Role.DISTRIBUTOR:
                return ALLOW
            return deny("only team members can be organization admins")
        if operation in (Operation.CREATE, Operation.UPDATE, Operation.DELETE):
            return ALLOW
        return deny(f"{operation} is not an account operation")

    return deny(f"no distributor rule for {target.kind}")


def _network_policy(actor: Account, operation: Operation, target: Target) -> Decision:
    if _is_self_service(actor, operation, target):
        return ALLOW
    return deny("installers and users only manage their own profile")


ROLE_POLICIES: dict[Role, Policy] = {
    Role.ADMIN: _admin_policy,
    Role.DISTRIBUTOR: _distributor_policy,
    Role.INSTALLER: _network_policy,
    Role.USER: _network_policy,
}


def can_perform(actor: Account, operation: Operation, target: Target) -> Decision:
    if not actor.active:
        return deny("inactive account")

    if target.kind is TargetKind.DOCUMENT:
        if actor.role is Role.ADMIN:
            return ALLOW
        if operation is Operation.READ and actor.role in target.access_roles:
            return ALLOW
        return deny("role not in document access roles")

    if (
        operation in _ELEVATING_OPERATIONS
        and target.role is Role.ADMIN
        and actor.role is not Role.ADMIN
    ):
        return deny("only administrators grant the admin role")

    if (
        _removes_org_admin(operation, target)
        and target.organization_active
        and target.admin_members == {target.id}
    ):
        return deny("organization would be left without admins", code=LAST_ADMIN)

    policy = ROLE_POLICIES.get(actor.role)
    if policy is None:
        return deny(f"unknown role {actor.role}")
    return policy(actor, operation, target)


def require(actor: Account, operation: Operation, target: Target) -> None:
    decision = can_perform(actor, operation, target)
    if decision:
        return
    logger.info(
        "Denied %s on %s %s for account %s: %s",
        operation,
        target.kind,
        target.id or "-",
        actor.id,
        decision.reason,
    )
    if decision.code == LAST_ADMIN:
        raise LastOrganizationAdmin()
    raise AuthorizationError(decision.reason)
