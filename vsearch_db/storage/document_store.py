"""
DocumentStore Workflow
======================

    put(key, fields)                         delete(key)
          │                                       │
          ▼                                       ▼
    ┌──────────────────────────────────────────────────────┐
    │              per-key lock (KeyLockManager)           │
    │                                                      │
    │  1. old = current document (or NONEXISTENT)          │
    │  2. new = replace / merge / NONEXISTENT              │
    │  3. listener.prepare(old, new)   ── fails ─▶ raise   │
    │  4. swap in memory + persistence ── fails ─▶ abort,  │
    │                                              raise   │
    │  5. listener.commit(prepared)    ── fails ─▶ restore │
    │                                              old,    │
    │                                              raise   │
    └──────────────────────────────────────────────────────┘
          │
          ▼
      acknowledged: every covering index reflects the write

Writes to the same key are strictly ordered; writes to different keys run
in parallel.
"""
import copy
import logging
import threading
from typing import Any, Dict, Iterable, List, Optional

from vsearch_data_model.document import Document
from vsearch_db.core.interface.document_store_interface import (
    DocumentStoreInterface, DocumentWriteListener, DocumentPersistence
)
from vsearch_db.core.lock.key_lock_manager import KeyLockManager
from vsearch_db.metrics import DOCUMENTS_WRITTEN
from vsearch_exception_model.exception import StorageFailureException

logger = logging.getLogger(__name__)


class DocumentStore(DocumentStoreInterface):
    """Keyed in-memory document store with a synchronous indexing hook."""

    def __init__(self, listener: Optional[DocumentWriteListener] = None,
                 persistence: Optional[DocumentPersistence] = None,
                 key_locks: Optional[KeyLockManager] = None,
                 checksum_algorithm: str = 'sha256'):
        self._docs: Dict[str, Document] = {}
        self._lock = threading.RLock()
        self._key_locks = key_locks or KeyLockManager()
        self._listener = listener
        self._persistence = persistence
        self._checksum_algorithm = checksum_algorithm

    @property
    def key_locks(self) -> KeyLockManager:
        return self._key_locks

    def put(self, key: str, fields: Dict[str, Any], partial: bool = False) -> int:
        """
        Store a document, replacing any previous one (or merging into it when
        ``partial``), and return its new version.

        The call returns only after every index covering ``key`` reflects the
        new document. If indexing fails nothing changes and the error is
        re-raised.
        """
        if not isinstance(key, str) or not key:
            raise ValueError("Document key must be a non-empty string")
        if not isinstance(fields, dict):
            raise TypeError(f"Document fields must be a dict, got {type(fields).__name__}")

        with self._key_locks.locked(key):
            old = self._current(key)
            if partial and old.is_record():
                merged = old.copy_fields()
                merged.update(copy.deepcopy(fields))
            else:
                merged = copy.deepcopy(fields)
            new = Document.create_record(key, merged, version=old.version + 1,
                                         checksum_algorithm=self._checksum_algorithm)
            self._apply(old, new)
            DOCUMENTS_WRITTEN.labels(operation="put").inc()
            logger.debug(f"Stored document {key} at version {new.version}")
            return new.version

    def get(self, key: str) -> Document:
        """The document stored under ``key``, or a NONEXISTENT document."""
        with self._lock:
            doc = self._docs.get(key)
        if doc is None:
            return Document.create_nonexistent(key, checksum_algorithm=self._checksum_algorithm)
        doc.validate_checksum()
        return Document.create_record(key, doc.copy_fields(), version=doc.version,
                                      checksum_algorithm=doc.checksum_algorithm)

    def delete(self, key: str) -> bool:
        """Remove ``key`` from the store and every index. False if it did not exist."""
        with self._key_locks.locked(key):
            old = self._current(key)
            if old.is_nonexistent():
                logger.debug(f"Delete of missing document {key} ignored")
                return False
            self._apply(old, Document.create_nonexistent(key, checksum_algorithm=self._checksum_algorithm))
            DOCUMENTS_WRITTEN.labels(operation="delete").inc()
            logger.debug(f"Deleted document {key}")
            return True

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._docs

    def keys(self, prefixes: Optional[Iterable[str]] = None) -> List[str]:
        """Sorted keys, optionally restricted to those starting with one of ``prefixes``."""
        with self._lock:
            keys = list(self._docs)
        if prefixes:
            prefixes = tuple(prefixes)
            keys = [k for k in keys if k.startswith(prefixes)]
        return sorted(keys)

    def current(self, key: str) -> Document:
        """The stored document object without copying. Callers must not mutate it."""
        return self._current(key)

    def load(self, documents: Iterable[Document]) -> int:
        """Bulk-load documents during recovery, bypassing the listener and persistence."""
        count = 0
        with self._lock:
            for doc in documents:
                doc.validate_checksum()
                self._docs[doc.key] = doc
                count += 1
        return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._docs)

    def _current(self, key: str) -> Document:
        with self._lock:
            doc = self._docs.get(key)
        return doc if doc is not None else Document.create_nonexistent(key, checksum_algorithm=self._checksum_algorithm)

    def _apply(self, old: Document, new: Document) -> None:
        prepared = self._listener.prepare(old, new) if self._listener else None
        try:
            self._swap(new)
        except Exception:
            logger.error(f"Store write failed for {new.key}, aborting index update", exc_info=True)
            if self._listener:
                self._listener.abort(prepared)
            raise
        if self._listener is None:
            return
        try:
            self._listener.commit(prepared)
        except Exception:
            logger.error(f"Indexing failed for {new.key}, restoring previous document", exc_info=True)
            self._restore(old)
            raise

    def _swap(self, doc: Document) -> None:
        with self._lock:
            previous = self._docs.get(doc.key)
            if doc.is_record():
                self._docs[doc.key] = doc
            else:
                self._docs.pop(doc.key, None)
        if self._persistence is None:
            return
        try:
            if doc.is_record():
                self._persistence.save_document(doc)
            else:
                self._persistence.delete_document(doc.key)
        except Exception as e:
            with self._lock:
                if previous is not None:
                    self._docs[doc.key] = previous
                else:
                    self._docs.pop(doc.key, None)
            raise StorageFailureException(f"Persisting document {doc.key} failed", record_id=doc.key, cause=e)

    def _restore(self, old: Document) -> None:
        try:
            self._swap(old)
        except Exception:
            logger.error(f"Failed to restore previous version of {old.key}", exc_info=True)
