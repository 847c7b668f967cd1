import os
from collections.abc import Generator, Mapping

os.environ.setdefault("APP_ENV", "development")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret-with-enough-bytes-for-hs256")
os.environ.setdefault("APP_BASE_URL", "https://portal.example.com")
os.environ.setdefault("NOTIFICATION_BACKEND", "log")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import StaticPool, create_engine
from sqlalchemy.orm import Session, sessionmaker

from docportal.api.deps import get_notification_sender
from docportal.core.config import get_settings
from docportal.core.database import Base, get_db
from docportal.core.identity_provider import SqlIdentityProvider
from docportal.core.record_store import DISTRIBUTORS, SqlRecordStore
from docportal.core.security import create_access
from docportal.main import app
from docportal.schemas.accounts import Account, Role
from docportal.schemas.distributors import Distributor
from docportal.services.context import ServiceContext, new_id, utcnow
from docportal.services.notification_service import (
    OutgoingNotification,
    SendResult,
    TemplateKind,
)
from docportal.services.records import load_distributor, save_account, save_distributor

PASSWORD = "correct-horse-battery"


class FakeSender:
    def __init__(self) -> None:
        self.sent: list[OutgoingNotification] = []
        self.fail_with: str | None = None

    def send(
        self, kind: TemplateKind, to_address: str, variables: Mapping[str, str]
    ) -> SendResult:
        self.sent.append(OutgoingNotification(kind, to_address, dict(variables)))
        if self.fail_with:
            return SendResult(success=False, error=self.fail_with)
        return SendResult(success=True)

    def of_kind(self, kind: TemplateKind) -> list[OutgoingNotification]:
        return [notification for notification in self.sent if notification.kind is kind]


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine) -> Generator[Session]:
    connection = engine.connect()
    trans = connection.begin()

    TestingSessionLocal = sessionmaker(
        bind=connection, autoflush=False, expire_on_commit=False, future=True
    )
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        trans.rollback()
        connection.close()


@pytest.fixture
def sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def ctx(db_session, sender) -> ServiceContext:
    settings = get_settings()
    return ServiceContext(
        store=SqlRecordStore(db_session),
        identity=SqlIdentityProvider(db_session, settings),
        notifier=sender,
        settings=settings,
    )


@pytest.fixture
def client(db_session, sender) -> Generator[TestClient]:
    def _override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_notification_sender] = lambda: sender
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def add_account(
    ctx: ServiceContext,
    email: str,
    role: Role,
    *,
    distributor_id: str | None = None,
    org_admin: bool = False,
    active: bool = True,
) -> Account:
    identity = ctx.identity.create_identity(email, PASSWORD)
    account = Account(
        id=identity.id,
        email=identity.email,
        display_name=email.split("@")[0].title(),
        role=role,
        active=active,
        created_at=utcnow(),
        distributor_id=distributor_id,
        is_distributor_admin=org_admin,
    )
    save_account(ctx.store, account)
    if role is Role.DISTRIBUTOR and distributor_id:
        ctx.store.add_to_list(DISTRIBUTORS, distributor_id, "team_members", account.id)
        if org_admin:
            ctx.store.add_to_list(DISTRIBUTORS, distributor_id, "admin_members", account.id)
    return account


def add_distributor(ctx: ServiceContext, company_name: str = "Acme Solar") -> Distributor:
    distributor = Distributor(
        id=new_id(),
        company_name=company_name,
        contact_email="office@example.com",
        created_at=utcnow(),
    )
    save_distributor(ctx.store, distributor)
    return distributor


def bearer(account: Account) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access(account.id, account.role.value)}"}


@pytest.fixture
def admin(ctx) -> Account:
    return add_account(ctx, "admin@example.com", Role.ADMIN)


@pytest.fixture
def organization(ctx) -> tuple[Distributor, Account]:
    """An active distributor with a single organization admin."""
    distributor = add_distributor(ctx)
    lead = add_account(
        ctx,
        "lead@example.com",
        Role.DISTRIBUTOR,
        distributor_id=distributor.id,
        org_admin=True,
    )
    return load_distributor(ctx.store, distributor.id), lead


@pytest.fixture
def auth_client(client, admin) -> tuple[TestClient, Account]:
    token = create_access(admin.id, admin.role.value)
    client.cookies.set("access_token", token, path="/")
    return client, admin
