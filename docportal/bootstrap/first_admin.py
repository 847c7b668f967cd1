import logging

from sqlalchemy.orm import Session

from docportal.core.config import Settings
from docportal.core.database import SessionLocal
from docportal.core.errors import PortalError
from docportal.core.identity_provider import SqlIdentityProvider, normalize_email
from docportal.core.record_store import ACCOUNTS, SqlRecordStore
from docportal.schemas.accounts import Account, Role
from docportal.services.context import utcnow
from docportal.services.records import save_account

logger = logging.getLogger(__name__)


def _has_any_accounts(store: SqlRecordStore) -> bool:
    return bool(store.query(ACCOUNTS))


def create_first_admin(db: Session, settings: Settings) -> bool:
    email = normalize_email(settings.bootstrap_admin_email or "")
    password = settings.bootstrap_admin_password or ""
    if not email or not password:
        return False

    store = SqlRecordStore(db)
    if _has_any_accounts(store):
        return False

    identity_provider = SqlIdentityProvider(db, settings)
    identity = identity_provider.create_identity(email, password)
    account = Account(
        id=identity.id,
        email=identity.email,
        display_name=identity.email.split("@")[0],
        role=Role.ADMIN,
        active=True,
        created_at=utcnow(),
        created_by="system-bootstrap",
    )
    try:
        save_account(store, account)
    except PortalError:
        logger.error("Bootstrap account record could not be written, removing identity")
        identity_provider.delete_identity(identity.id)
        raise
    logger.info("Bootstrapped first administrator %s", account.id)
    return True


def run_first_admin_bootstrap(settings: Settings) -> bool:
    db = SessionLocal()
    try:
        return create_first_admin(db, settings)
    except PortalError as exc:
        db.rollback()
        logger.error("First administrator bootstrap failed: %s", exc.message)
        return False
    finally:
        db.close()
