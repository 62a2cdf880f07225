"""
SQLite write-through copy of documents and index definitions.

    ┌──────────────── documents ────────────────┐   ┌───────── index_definitions ─────────┐
    │ key TEXT PK                               │   │ name TEXT PK                        │
    │ version INTEGER                           │   │ definition TEXT  (pydantic JSON)    │
    │ fields BLOB      (pickled raw fields)     │   │ checksum TEXT                       │
    │ checksum TEXT                             │   └─────────────────────────────────────┘
    └───────────────────────────────────────────┘

Only source data is persisted. Every derived structure (postings, range
lists, vector graphs) is rebuilt from it when an engine is opened. Each
thread gets its own connection; the database runs in WAL mode so readers do
not block the writer.
"""
import logging
import pickle
import sqlite3
import threading
from pathlib import Path
from typing import Iterator, List, Union

from vsearch_data_model.data_models import IndexDefinitionModel
from vsearch_data_model.document import Document
from vsearch_data_model.index_definition import IndexDefinition
from vsearch_db.core.interface.document_store_interface import DocumentPersistence
from vsearch_exception_model.exception import ChecksumValidationFailureError, StorageFailureException

logger = logging.getLogger(__name__)


class SqlitePersistence(DocumentPersistence):
    """
    SQLite-backed persistence with WAL mode and per-thread connections.
    """

    def __init__(self, db_path: Union[str, Path]):
        self._db_path = str(db_path)
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        self._initialize()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a thread-local connection with proper settings"""
        if not hasattr(self._local, 'conn'):
            conn = sqlite3.connect(self._db_path, check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            self._local.conn = conn
            with self._connections_lock:
                self._connections.append(conn)
        return self._local.conn

    def _initialize(self):
        conn = self._get_connection()
        with conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    key TEXT PRIMARY KEY,
                    version INTEGER NOT NULL,
                    fields BLOB NOT NULL,
                    checksum TEXT NOT NULL,
                    checksum_algorithm TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS index_definitions (
                    name TEXT PRIMARY KEY,
                    definition TEXT NOT NULL,
                    checksum TEXT NOT NULL
                )
            """)

    def save_document(self, document: Document) -> None:
        document.validate_checksum()
        try:
            conn = self._get_connection()
            with conn:
                conn.execute(
                    "INSERT OR REPLACE INTO documents(key, version, fields, checksum, checksum_algorithm) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (document.key, document.version, pickle.dumps(document.fields),
                     document.checksum, document.checksum_algorithm)
                )
        except sqlite3.Error as e:
            raise StorageFailureException(f"Failed to persist document {document.key}",
                                          record_id=document.key, cause=e)

    def delete_document(self, key: str) -> None:
        try:
            conn = self._get_connection()
            with conn:
                conn.execute("DELETE FROM documents WHERE key = ?", (key,))
        except sqlite3.Error as e:
            raise StorageFailureException(f"Failed to delete document {key}", record_id=key, cause=e)

    def load_documents(self) -> Iterator[Document]:
        """Yield every stored document; rows failing their checksum are skipped and logged."""
        cur = self._get_connection().cursor()
        cur.execute("SELECT key, version, fields, checksum, checksum_algorithm FROM documents ORDER BY key")
        for key, version, blob, checksum, algorithm in cur.fetchall():
            document = Document.create_record(key, pickle.loads(blob), version=version,
                                              checksum_algorithm=algorithm)
            if document.checksum != checksum:
                logger.error(f"Checksum mismatch for persisted document {key}, skipping it")
                continue
            yield document

    def save_definition(self, definition: IndexDefinition) -> None:
        definition.validate_checksum()
        model = IndexDefinitionModel.from_definition(definition)
        try:
            conn = self._get_connection()
            with conn:
                conn.execute(
                    "INSERT OR REPLACE INTO index_definitions(name, definition, checksum) VALUES (?, ?, ?)",
                    (definition.name, model.model_dump_json(), definition.checksum)
                )
        except sqlite3.Error as e:
            raise StorageFailureException(f"Failed to persist index definition {definition.name}", cause=e)

    def delete_definition(self, name: str) -> None:
        try:
            conn = self._get_connection()
            with conn:
                conn.execute("DELETE FROM index_definitions WHERE name = ?", (name,))
        except sqlite3.Error as e:
            raise StorageFailureException(f"Failed to delete index definition {name}", cause=e)

    def load_definitions(self) -> List[IndexDefinition]:
        cur = self._get_connection().cursor()
        cur.execute("SELECT name, definition, checksum FROM index_definitions ORDER BY name")
        definitions = []
        for name, raw, checksum in cur.fetchall():
            definition = IndexDefinitionModel.model_validate_json(raw).to_definition()
            if definition.checksum != checksum:
                raise ChecksumValidationFailureError(f"Checksum mismatch for index definition {name}")
            definitions.append(definition)
        return definitions

    def close(self) -> None:
        with self._connections_lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
        self._local = threading.local()
