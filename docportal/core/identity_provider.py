"""Credential store and session issuer.

Owns password verification and the stable account identifier handed to the
record store. Provisioning happens server-side with the service's own
database access, so creating an identity never touches the caller's session.
"""

import logging
import re
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Protocol
from uuid import uuid4

import jwt
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from docportal.core.config import Settings, get_settings
from docportal.core.errors import (
    AuthenticationError,
    DuplicateEmail,
    IdentityDeletionFailed,
    InvalidEmail,
    InvalidOrExpiredToken,
    NotFoundError,
    UpstreamError,
    WeakPassword,
    WrongCurrentPassword,
)
from docportal.core.security import (
    create_access,
    decode_access,
    generate_raw_token,
    hash_password,
    hash_token,
    verify_password,
)
from docportal.models.identities import Identity, PasswordResetToken

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(value: str) -> str:
    return value.strip().lower()


def _as_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        return value.replace(tzinfo=UTC)
    return value


@dataclass(slots=True)
class IdentityRecord:
    id: str
    email: str


class IdentityProvider(Protocol):
    def create_identity(self, email: str, password: str) -> IdentityRecord: ...

    def find_by_email(self, email: str) -> IdentityRecord | None: ...

    def authenticate(self, email: str, password: str) -> IdentityRecord: ...

    def issue_session(self, identity_id: str, role: str) -> str: ...

    def verify_identity(self, token: str) -> str: ...

    def delete_identity(self, identity_id: str) -> None: ...

    def change_password(
        self, identity_id: str, current_password: str, new_password: str
    ) -> None: ...

    def create_password_reset(self, identity_id: str) -> str: ...

    def reset_password(self, raw_token: str, new_password: str) -> None: ...


class SqlIdentityProvider:
    def __init__(self, db: Session, settings: Settings | None = None) -> None:
        self._db = db
        self._settings = settings or get_settings()

    def _check_password_policy(self, password: str) -> None:
        minimum = self._settings.password_min_length
        if len(password) < minimum:
            raise WeakPassword(
                f"The password must contain at least {minimum} characters"
            )

    def _get(self, identity_id: str) -> Identity | None:
        return self._db.get(Identity, identity_id)

    def _commit(self, failure: str) -> None:
        try:
            self._db.commit()
        except SQLAlchemyError as exc:
            self._db.rollback()
            logger.exception(failure)
            raise UpstreamError(failure) from exc

    def create_identity(self, email: str, password: str) -> IdentityRecord:
        email = normalize_email(email)
        if not _EMAIL_RE.match(email):
            raise InvalidEmail()
        self._check_password_policy(password)

        existing = self._db.execute(
            select(Identity.id).where(Identity.email == email)
        ).first()
        if existing:
            raise DuplicateEmail()

        identity = Identity(
            id=uuid4().hex,
            email=email,
            password_hash=hash_password(password),
        )
        self._db.add(identity)
        try:
            self._db.commit()
        except IntegrityError as exc:
            # Lost a race against a concurrent registration of the same email.
            self._db.rollback()
            raise DuplicateEmail() from exc
        except SQLAlchemyError as exc:
            self._db.rollback()
            logger.exception("Identity creation failed for %s", email)
            raise UpstreamError("The identity could not be created") from exc
        return IdentityRecord(id=identity.id, email=identity.email)

    def find_by_email(self, email: str) -> IdentityRecord | None:
        identity = self._db.execute(
            select(Identity).where(Identity.email == normalize_email(email))
        ).scalar_one_or_none()
        if identity is None:
            return None
        return IdentityRecord(id=identity.id, email=identity.email)

    def authenticate(self, email: str, password: str) -> IdentityRecord:
        identity = self._db.execute(
            select(Identity).where(Identity.email == normalize_email(email))
        ).scalar_one_or_none()
        if identity is None or not verify_password(password, identity.password_hash):
            raise AuthenticationError("Invalid credentials")
        return IdentityRecord(id=identity.id, email=identity.email)

    def issue_session(self, identity_id: str, role: str) -> str:
        return create_access(identity_id, role)

    def verify_identity(self, token: str) -> str:
        try:
            payload = decode_access(token)
        except jwt.ExpiredSignatureError as exc:
            raise InvalidOrExpiredToken("Session expired") from exc
        except jwt.InvalidTokenError as exc:
            raise InvalidOrExpiredToken() from exc

        sub = payload.get("sub")
        if not isinstance(sub, str) or self._get(sub) is None:
            raise InvalidOrExpiredToken("Invalid token payload")
        return sub

    def delete_identity(self, identity_id: str) -> None:
        identity = self._get(identity_id)
        if identity is None:
            raise NotFoundError("Identity not found")
        self._db.delete(identity)
        try:
            self._db.commit()
        except SQLAlchemyError as exc:
            self._db.rollback()
            logger.exception("Identity deletion failed for %s", identity_id)
            raise IdentityDeletionFailed() from exc

    def change_password(
        self, identity_id: str, current_password: str, new_password: str
    ) -> None:
        identity = self._get(identity_id)
        if identity is None:
            raise NotFoundError("Identity not found")
        if not verify_password(current_password, identity.password_hash):
            raise WrongCurrentPassword()
        self._check_password_policy(new_password)
        identity.password_hash = hash_password(new_password)
        self._commit("The password could not be changed")

    def _ensure_unique_token_hash(self, raw_token: str) -> tuple[str, str]:
        token_hash = hash_token(raw_token)
        existing = self._db.execute(
            select(PasswordResetToken.id).where(
                PasswordResetToken.token_hash == token_hash
            )
        ).first()
        if existing:
            return self._ensure_unique_token_hash(generate_raw_token(32))
        return raw_token, token_hash

    def create_password_reset(self, identity_id: str) -> str:
        now = datetime.now(UTC)
        self._db.execute(
            update(PasswordResetToken)
            .where(
                PasswordResetToken.identity_id == identity_id,
                PasswordResetToken.used_at.is_(None),
            )
            .values(used_at=now)
        )

        raw_token, token_hash = self._ensure_unique_token_hash(generate_raw_token(32))
        ttl = timedelta(minutes=self._settings.password_reset_ttl_minutes)
        self._db.add(
            PasswordResetToken(
                identity_id=identity_id,
                token_hash=token_hash,
                expires_at=(now + ttl).replace(microsecond=0),
            )
        )
        self._commit("The password reset could not be recorded")
        return raw_token

    def reset_password(self, raw_token: str, new_password: str) -> None:
        token = self._db.execute(
            select(PasswordResetToken).where(
                PasswordResetToken.token_hash == hash_token(raw_token)
            )
        ).scalar_one_or_none()
        now = datetime.now(UTC)
        if (
            token is None
            or token.used_at is not None
            or _as_aware(token.expires_at) < now
        ):
            raise InvalidOrExpiredToken("Invalid or expired reset token")

        self._check_password_policy(new_password)
        token.identity.password_hash = hash_password(new_password)
        token.used_at = now
        self._commit("The password could not be reset")
