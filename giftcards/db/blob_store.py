"""
Blob Stores - Key-value load/save adapters for the state document.

The card store treats persistence as opaque: load a payload by key, save
a payload by key. Writes replace the whole payload.
"""

import threading
from typing import Protocol

from sqlalchemy.orm import Session, sessionmaker
from structlog import get_logger

from giftcards.db.models import StateBlob

logger = get_logger(__name__)


class BlobStore(Protocol):
    """Whole-document persistence interface. Adapter errors surface as StorageFailureError."""

    def load(self, key: str) -> str | None: ...

    def save(self, key: str, payload: str) -> None: ...


class MemoryBlobStore:
    """Process-local blob store, for tests and ephemeral runs."""

    def __init__(self) -> None:
        self._blobs: dict[str, str] = {}
        self._lock = threading.Lock()

    def load(self, key: str) -> str | None:
        with self._lock:
            return self._blobs.get(key)

    def save(self, key: str, payload: str) -> None:
        with self._lock:
            self._blobs[key] = payload


class SqlBlobStore:
    """
    Blob store backed by the state_blobs table.

    Each save is one transaction; a failed commit leaves the previous
    payload in place.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def load(self, key: str) -> str | None:
        with self._session_factory() as session:
            blob = session.get(StateBlob, key)
            return blob.payload if blob is not None else None

    def save(self, key: str, payload: str) -> None:
        with self._session_factory() as session:
            session.merge(StateBlob(key=key, payload=payload))
            session.commit()
        logger.debug("state_blob_saved", key=key, size=len(payload))
