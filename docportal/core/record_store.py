"""Keyed JSON document store backed by the ``records`` table.

Collections mirror the documents the portal keeps: ``accounts``,
``distributors`` and ``invitations``. Writes to different documents are
independent; there is no cross-document transaction.
"""

import logging
from collections.abc import Sequence
from typing import Any, Literal, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from docportal.core.errors import NotFoundError, UpstreamError
from docportal.models.records import Record

logger = logging.getLogger(__name__)

ACCOUNTS = "accounts"
DISTRIBUTORS = "distributors"
INVITATIONS = "invitations"

Operator = Literal["==", "array-contains"]
Filter = tuple[str, Operator, Any]


class RecordStore(Protocol):
    def get(self, collection: str, record_id: str) -> dict[str, Any]: ...

    def query(
        self, collection: str, where: Sequence[Filter] = ()
    ) -> list[dict[str, Any]]: ...

    def set(
        self,
        collection: str,
        record_id: str,
        data: dict[str, Any],
        *,
        merge: bool = False,
    ) -> None: ...

    def delete(self, collection: str, record_id: str) -> None: ...

    def add_to_list(
        self, collection: str, record_id: str, field: str, value: str
    ) -> bool: ...

    def remove_from_list(
        self, collection: str, record_id: str, field: str, value: str
    ) -> bool: ...


def _matches(document: dict[str, Any], where: Sequence[Filter]) -> bool:
    for field, op, value in where:
        current = document.get(field)
        if op == "==":
            if current != value:
                return False
        elif op == "array-contains":
            if not isinstance(current, list) or value not in current:
                return False
        else:
            raise ValueError(f"Unsupported query operator: {op}")
    return True


class SqlRecordStore:
    def __init__(self, db: Session) -> None:
        self._db = db

    def _load(
        self, collection: str, record_id: str, *, for_update: bool = False
    ) -> Record | None:
        stmt = select(Record).where(
            Record.collection == collection,
            Record.id == record_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        try:
            return self._db.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as exc:
            self._db.rollback()
            raise UpstreamError("Record store is unavailable") from exc

    def _commit(self) -> None:
        try:
            self._db.commit()
        except SQLAlchemyError as exc:
            self._db.rollback()
            logger.exception("Record store write failed")
            raise UpstreamError("Record store write failed") from exc

    def get(self, collection: str, record_id: str) -> dict[str, Any]:
        record = self._load(collection, record_id)
        if record is None:
            raise NotFoundError(f"{collection}/{record_id} not found")
        return {**record.data, "id": record.id}

    def query(
        self, collection: str, where: Sequence[Filter] = ()
    ) -> list[dict[str, Any]]:
        stmt = (
            select(Record)
            .where(Record.collection == collection)
            .order_by(Record.created_at, Record.id)
        )
        # String equality runs in SQL; the rest is checked on the loaded documents.
        for field, op, value in where:
            if op == "==" and isinstance(value, str):
                stmt = stmt.where(Record.data[field].as_string() == value)
        try:
            records = self._db.execute(stmt).scalars().all()
        except SQLAlchemyError as exc:
            self._db.rollback()
            raise UpstreamError("Record store is unavailable") from exc
        documents = [{**record.data, "id": record.id} for record in records]
        return [document for document in documents if _matches(document, where)]

    def set(
        self,
        collection: str,
        record_id: str,
        data: dict[str, Any],
        *,
        merge: bool = False,
    ) -> None:
        payload = {key: value for key, value in data.items() if key != "id"}
        record = self._load(collection, record_id, for_update=merge)
        if record is None:
            self._db.add(Record(collection=collection, id=record_id, data=payload))
        elif merge:
            # JSON columns are not mutation-tracked; assign a fresh dict.
            record.data = {**record.data, **payload}
        else:
            record.data = payload
        self._commit()

    def delete(self, collection: str, record_id: str) -> None:
        record = self._load(collection, record_id, for_update=True)
        if record is None:
            raise NotFoundError(f"{collection}/{record_id} not found")
        self._db.delete(record)
        self._commit()

    def add_to_list(
        self, collection: str, record_id: str, field: str, value: str
    ) -> bool:
        """Add ``value`` to the id list ``field`` unless it is already there."""
        record = self._load(collection, record_id, for_update=True)
        if record is None:
            raise NotFoundError(f"{collection}/{record_id} not found")
        values = list(record.data.get(field) or [])
        if value in values:
            self._commit()
            return False
        record.data = {**record.data, field: [*values, value]}
        self._commit()
        return True

    def remove_from_list(
        self, collection: str, record_id: str, field: str, value: str
    ) -> bool:
        """Drop every occurrence of ``value`` from the id list ``field``."""
        record = self._load(collection, record_id, for_update=True)
        if record is None:
            raise NotFoundError(f"{collection}/{record_id} not found")
        values = list(record.data.get(field) or [])
        if value not in values:
            self._commit()
            return False
        record.data = {**record.data, field: [v for v in values if v != value]}
        self._commit()
        return True
