"""
Durable JSON document storage.

Stands in for browser-local storage: each user gets a namespace, and each
document is a JSON value stored under a fixed key. Callers treat storage as
a best-effort mirror and must survive a StorageError.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from fooddash import db
from fooddash.models.stored_document import StoredDocument

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a document cannot be read or written."""


def namespace_for_user(user_id) -> str:
    return f"user:{user_id}"


class DocumentStorage:
    def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    def remove(self, key: str) -> None:
        raise NotImplementedError


class MemoryDocumentStorage(DocumentStorage):
    """Keeps serialized documents in a dict; used for tests and scratch carts."""

    def __init__(self):
        self._documents: Dict[str, str] = {}

    def get(self, key):
        raw = self._documents.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise StorageError(f"Corrupt document {key!r}") from exc

    def set(self, key, value):
        try:
            self._documents[key] = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Document {key!r} is not serializable") from exc

    def remove(self, key):
        self._documents.pop(key, None)

    def keys(self):
        return list(self._documents)


class SQLDocumentStorage(DocumentStorage):
    """Documents stored as rows of the stored_documents table."""

    def __init__(self, namespace: str):
        self.namespace = namespace

    def _row(self, key):
        return StoredDocument.query.filter_by(namespace=self.namespace, key=key).first()

    def get(self, key):
        try:
            row = self._row(key)
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StorageError(f"Failed to read {self.namespace}/{key}") from exc
        if row is None:
            return None
        try:
            return json.loads(row.value)
        except ValueError as exc:
            raise StorageError(f"Corrupt document {self.namespace}/{key}") from exc

    def set(self, key, value):
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Document {key!r} is not serializable") from exc
        try:
            row = self._row(key)
            if row is None:
                row = StoredDocument(namespace=self.namespace, key=key, value=payload)
                db.session.add(row)
            else:
                row.value = payload
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StorageError(f"Failed to write {self.namespace}/{key}") from exc

    def remove(self, key):
        try:
            StoredDocument.query.filter_by(namespace=self.namespace, key=key).delete()
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise StorageError(f"Failed to remove {self.namespace}/{key}") from exc
