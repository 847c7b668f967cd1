"""Typed access to the documents kept in the record store."""

from docportal.core.errors import (
    AccountNotFound,
    DistributorNotFound,
    InvitationNotFound,
    NotFoundError,
)
from docportal.core.record_store import ACCOUNTS, DISTRIBUTORS, INVITATIONS, RecordStore
from docportal.schemas.accounts import Account
from docportal.schemas.distributors import Distributor
from docportal.schemas.invitations import Invitation


def load_account(store: RecordStore, account_id: str) -> Account:
    try:
        return Account.model_validate(store.get(ACCOUNTS, account_id))
    except NotFoundError as exc:
        raise AccountNotFound() from exc


def save_account(store: RecordStore, account: Account) -> None:
    store.set(ACCOUNTS, account.id, account.model_dump(mode="json"))


def load_distributor(store: RecordStore, distributor_id: str) -> Distributor:
    try:
        return Distributor.model_validate(store.get(DISTRIBUTORS, distributor_id))
    except NotFoundError as exc:
        raise DistributorNotFound() from exc


def find_distributor(store: RecordStore, distributor_id: str | None) -> Distributor | None:
    if distributor_id is None:
        return None
    try:
        return load_distributor(store, distributor_id)
    except DistributorNotFound:
        return None


def save_distributor(store: RecordStore, distributor: Distributor) -> None:
    store.set(DISTRIBUTORS, distributor.id, distributor.model_dump(mode="json"))


def load_invitation(store: RecordStore, invitation_id: str) -> Invitation:
    try:
        return Invitation.model_validate(store.get(INVITATIONS, invitation_id))
    except NotFoundError as exc:
        raise InvitationNotFound() from exc


def find_invitation_by_token(store: RecordStore, token: str) -> Invitation:
    matches = store.query(INVITATIONS, [("token", "==", token)])
    if not matches:
        raise InvitationNotFound()
    return Invitation.model_validate(matches[0])


def save_invitation(store: RecordStore, invitation: Invitation) -> None:
    store.set(INVITATIONS, invitation.id, invitation.model_dump(mode="json"))
