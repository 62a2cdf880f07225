import logging
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from vsearch_data_model.document import Document
from vsearch_data_model.index_definition import IndexDefinition
from vsearch_data_model.search_result import SearchOptions, SearchResult
from vsearch_db import config
from vsearch_db.config import EngineSettings
from vsearch_db.core.cancellation import CancellationToken, resolve_token
from vsearch_db.core.interface.document_store_interface import DocumentPersistence
from vsearch_db.engine.search_index import SearchIndex
from vsearch_db.engine.search_manager import SearchManager
from vsearch_db.engine.write_manager import WriteManager
from vsearch_db.persistence.sqlite_persistence import SqlitePersistence
from vsearch_db.query.query_ast import ParsedQuery
from vsearch_db.schema.schema_registry import SchemaRegistry
from vsearch_db.storage.document_store import DocumentStore
from vsearch_exception_model.exception import (
    InvalidDocumentException, VectorDimensionMismatchException, NullOrZeroVectorException
)

# Set up logger for this module
logger = logging.getLogger(__name__)

_DB_FILE_NAME = "vsearch.db"


class SearchEngine:
    """
    Document store plus secondary indexes (full-text, tag, numeric, geo and
    vector) kept in step with every write.

    A ``put`` or ``delete`` returns only after every index covering the key
    reflects it; a failed index update leaves neither the store nor any
    index changed.
    """

    def __init__(self, settings: Optional[EngineSettings] = None,
                 persistence: Optional[DocumentPersistence] = None):
        self._settings = settings or config.settings
        self._persistence = persistence
        self._registry = SchemaRegistry(self._build_index)
        self._write_manager = WriteManager(logger, self._registry)
        self._store = DocumentStore(listener=self._write_manager, persistence=persistence,
                                    checksum_algorithm=self._settings.checksum_algorithm)
        self._search_manager = SearchManager(logger, self._settings.query_timeout_seconds)
        # define / drop / rebuild of the same engine are serialized
        self._lifecycle_lock = threading.RLock()
        self._closed = False
        logger.info("SearchEngine initialized")

    @classmethod
    def open(cls, data_path: Optional[Union[str, Path]] = None,
             settings: Optional[EngineSettings] = None) -> "SearchEngine":
        """
        Open an engine backed by a SQLite file under ``data_path`` (or
        ``settings.data_path``), reloading documents and index definitions and
        rebuilding every index from them. Without a path the engine is purely
        in memory.
        """
        settings = settings or config.settings
        path = data_path if data_path is not None else settings.data_path
        if path is None:
            return cls(settings)
        directory = Path(path)
        directory.mkdir(parents=True, exist_ok=True)
        engine = cls(settings, SqlitePersistence(directory / _DB_FILE_NAME))
        engine._recover()
        return engine

    def _build_index(self, definition: IndexDefinition) -> SearchIndex:
        return SearchIndex(definition, self._settings)

    def _recover(self) -> None:
        started = time.perf_counter()
        loaded = self._store.load(self._persistence.load_documents())
        definitions = self._persistence.load_definitions()
        for definition in definitions:
            index = self._registry.define_index(definition)
            self._backfill(index, resolve_token(None))
        logger.info(f"Recovered {loaded} documents and {len(definitions)} indexes "
                    f"in {time.perf_counter() - started:.3f}s")

    # ------------------------
    # SCHEMA
    # ------------------------

    def define_index(self, definition: IndexDefinition,
                     cancellation: Optional[CancellationToken] = None) -> IndexDefinition:
        """
        Register a new index and index every existing document it covers.

        Raises:
            DuplicateIndexException: The name is taken.
            InvalidFieldSpecException: The definition is invalid; nothing is created.
            OperationCancelledException: Backfill was cancelled; the index is removed again.
        """
        token = resolve_token(cancellation, operation=f"define_index {definition.name}")
        with self._lifecycle_lock:
            index = self._registry.define_index(definition)
            try:
                self._backfill(index, token)
                if self._persistence is not None:
                    self._persistence.save_definition(definition)
            except Exception:
                logger.error(f"Defining index {definition.name} failed, removing it", exc_info=True)
                self._registry.drop_index(definition.name, if_exists=True)
                index.clear()
                raise
        return definition

    def drop_index(self, name: str, delete_documents: bool = False, if_exists: bool = False) -> bool:
        """
        Remove an index. With ``delete_documents`` every stored document the
        index covered is deleted too (through the normal delete path, so other
        indexes stay consistent).

        Returns:
            True if an index was dropped, False for a missing index with ``if_exists``.

        Raises:
            IndexNotFoundException: Missing index without ``if_exists``.
        """
        with self._lifecycle_lock:
            index = self._registry.drop_index(name, if_exists=if_exists)
            if index is None:
                return False
            index.clear()
            if self._persistence is not None:
                self._persistence.delete_definition(name)

        if delete_documents:
            deleted = 0
            for key in self._store.keys(index.definition.prefixes):
                if self._store.delete(key):
                    deleted += 1
            logger.info(f"Deleted {deleted} documents of dropped index {name}")
        return True

    def list_indexes(self) -> List[str]:
        return self._registry.list_indexes()

    def info(self, name: str) -> Dict[str, Any]:
        return self._registry.get(name).info()

    def rebuild_index(self, name: str, cancellation: Optional[CancellationToken] = None) -> int:
        """
        Re-index every covered document into fresh structures and swap them in.
        The old structures keep answering queries until the swap.

        Returns:
            Number of documents in the rebuilt index.
        """
        token = resolve_token(cancellation, operation=f"rebuild_index {name}")
        with self._lifecycle_lock:
            shadow = self._registry.begin_rebuild(name)
            try:
                self._backfill(shadow, token)
            except Exception:
                logger.error(f"Rebuild of index {name} failed, keeping current structures", exc_info=True)
                self._registry.abandon_rebuild(name, shadow)
                shadow.clear()
                raise
            previous = self._registry.finish_rebuild(name, shadow)
            if previous is not None:
                previous.clear()
        logger.info(f"Rebuilt index {name} with {len(shadow)} documents")
        return len(shadow)

    def compact_index(self, name: str, cancellation: Optional[CancellationToken] = None) -> int:
        """Rebuild the vector graphs of an index without their tombstones."""
        token = resolve_token(cancellation, operation=f"compact_index {name}")
        return self._registry.get(name).compact_vectors(token, force=True)

    def wait_for_compactions(self) -> None:
        """Block until vector compactions queued by writes have finished."""
        self._write_manager.wait_for_compactions()

    def _backfill(self, index: SearchIndex, token: CancellationToken) -> int:
        indexed = 0
        for key in self._store.keys(index.definition.prefixes):
            token.check()
            with self._store.key_locks.locked(key):
                document = self._store.current(key)
                if not document.is_record():
                    continue
                try:
                    prepared = index.prepare(key, document)
                except (InvalidDocumentException, VectorDimensionMismatchException, NullOrZeroVectorException) as e:
                    index.indexing_failures += 1
                    logger.warning(f"Document {key} cannot be indexed by {index.name}: {e}")
                    continue
                index.commit(prepared)
                indexed += 1
        logger.info(f"Indexed {indexed} existing documents into {index.name}")
        return indexed

    # ------------------------
    # DOCUMENTS
    # ------------------------

    def put(self, key: str, fields: Dict[str, Any], partial: bool = False) -> int:
        """
        Store a document (full replace, or field merge with ``partial``) and
        update every covering index before returning its version.

        Raises:
            InvalidDocumentException: A field cannot be coerced to its indexed type.
            VectorDimensionMismatchException: A vector has the wrong dimension.
        """
        return self._store.put(key, fields, partial=partial)

    def get(self, key: str) -> Document:
        """The stored document, or a document for which ``is_nonexistent()`` is True."""
        return self._store.get(key)

    def delete(self, key: str) -> bool:
        return self._store.delete(key)

    def count(self) -> int:
        return len(self._store)

    # ------------------------
    # QUERIES
    # ------------------------

    def search(self, index_name: str, query: Union[str, ParsedQuery],
               options: Optional[SearchOptions] = None) -> SearchResult:
        index = self._registry.get(index_name)
        logger.debug(f"Searching index {index_name}: {query}")
        return self._search_manager.search(index, query, options)

    # ------------------------
    # LIFECYCLE
    # ------------------------

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._write_manager.close()
        if self._persistence is not None:
            self._persistence.close()
        logger.info("SearchEngine closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
