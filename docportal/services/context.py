from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import uuid4

from docportal.core.config import Settings
from docportal.core.identity_provider import IdentityProvider
from docportal.core.record_store import RecordStore
from docportal.services.notification_service import NotificationSender


@dataclass(slots=True)
class ServiceContext:
    """Collaborators a provisioning operation runs against."""

    store: RecordStore
    identity: IdentityProvider
    notifier: NotificationSender
    settings: Settings


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return uuid4().hex
