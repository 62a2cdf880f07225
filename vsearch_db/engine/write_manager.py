"""
WriteManager Workflow
=====================

Cross-index atomic document writes.

    DocumentStore._apply(old, new)
          │
          ▼
    ┌──────────────────────── PHASE 1: PREPARE ───────────────────────┐
    │  for each index covering the key (name order):                  │
    │     SearchIndex.prepare(key, new)                               │
    │       ├─ coerce field values     ── InvalidDocumentException    │
    │       └─ stage vectors           ── VectorDimensionMismatch     │
    │  any failure: discard every staged delta, re-raise              │
    └─────────────────────────────────────────────────────────────────┘
          │   store swaps the document in
          ▼
    ┌──────────────────────── PHASE 2: COMMIT ────────────────────────┐
    │  for each prepared delta:                                       │
    │     SearchIndex.commit(delta)      (index commit lock, write)   │
    │     executed.append(delta)                                      │
    │  failure at index i:                                            │
    │     index i undoes its own partial steps                        │
    │     executed[i-1..0].revert()      (reverse order)              │
    │     deltas after i discarded                                    │
    │     store restores the old document, error re-raised            │
    └─────────────────────────────────────────────────────────────────┘
          │
          ▼
    vector graphs with too many tombstones are queued for compaction,
    which a background thread runs off the write path
"""
import queue
import threading
from dataclasses import dataclass, field
from typing import List, Optional, Set, Tuple

from vsearch_data_model.document import Document
from vsearch_db.core.cancellation import CancellationToken
from vsearch_db.core.interface.document_store_interface import DocumentWriteListener
from vsearch_db.engine.search_index import SearchIndex, PreparedIndexWrite
from vsearch_db.metrics import DOCUMENTS_INDEXED, INDEXING_FAILURES
from vsearch_db.schema.schema_registry import SchemaRegistry
from vsearch_exception_model.exception import (
    InvalidDocumentException, VectorDimensionMismatchException, NullOrZeroVectorException,
    OperationCancelledException
)


@dataclass
class PreparedWrite:
    key: str
    document: Document
    deltas: List[Tuple[SearchIndex, PreparedIndexWrite]] = field(default_factory=list)


class WriteManager(DocumentWriteListener):
    """Keeps every index covering a key in step with the document store.

    Attributes:
        _logger: Logger instance for recording diagnostic information.
        _registry: Schema registry resolving which indexes cover a key.
    """

    def __init__(self, logger, registry: SchemaRegistry, auto_compact: bool = True):
        self._logger = logger
        self._registry = registry
        self._auto_compact = auto_compact

        # indexes waiting for vector compaction; None stops the worker
        self._compaction_queue: "queue.Queue[Optional[SearchIndex]]" = queue.Queue()
        self._queued: Set[int] = set()
        self._queued_lock = threading.Lock()
        self._stop_token = CancellationToken(operation="vector compaction")
        self._compaction_thread: Optional[threading.Thread] = None
        if auto_compact:
            self._compaction_thread = threading.Thread(
                target=self._process_compaction_queue, name="vsearch-compaction", daemon=True
            )
            self._compaction_thread.start()

    def prepare(self, old: Document, new: Document) -> PreparedWrite:
        """Compute every covering index's delta; nothing is visible yet.

        Raises:
            InvalidDocumentException: If a field value cannot be coerced.
            VectorDimensionMismatchException: If a vector has the wrong length.
        """
        key = new.key
        prepared = PreparedWrite(key=key, document=new)
        try:
            for index in self._registry.indexes_for_key(key):
                prepared.deltas.append((index, index.prepare(key, new)))
        except Exception:
            self._logger.debug(f"Preparing index update for {key} failed, discarding staged deltas")
            self.abort(prepared)
            raise
        return prepared

    def commit(self, prepared: PreparedWrite) -> None:
        self._prepare_late_indexes(prepared)
        executed: List[Tuple[SearchIndex, PreparedIndexWrite]] = []
        for i, (index, delta) in enumerate(prepared.deltas):
            try:
                index.commit(delta)
            except Exception:
                INDEXING_FAILURES.labels(index=index.name).inc()
                self._logger.error(f"Index {index.name} rejected update for {prepared.key}, "
                                   f"reverting {len(executed)} committed index(es)", exc_info=True)
                for done_index, done_delta in reversed(executed):
                    done_index.revert(done_delta)
                for pending_index, pending_delta in prepared.deltas[i + 1:]:
                    pending_index.discard(pending_delta)
                raise
            executed.append((index, delta))
            DOCUMENTS_INDEXED.labels(index=index.name).inc()

        if self._auto_compact:
            for index, _ in executed:
                if index.needs_compaction():
                    self._schedule_compaction(index)

    def abort(self, prepared: PreparedWrite) -> None:
        for index, delta in prepared.deltas:
            index.discard(delta)

    def _prepare_late_indexes(self, prepared: PreparedWrite) -> None:
        """Add deltas for indexes defined (or rebuilt) between prepare and commit.

        Such an index may have taken its backfill snapshot before the document
        was swapped in, so this write is the only chance to index it. A
        document the index cannot read is skipped and counted, as in a backfill.
        """
        known = {id(index) for index, _ in prepared.deltas}
        for index in self._registry.indexes_for_key(prepared.key):
            if id(index) in known:
                continue
            try:
                delta = index.prepare(prepared.key, prepared.document)
            except (InvalidDocumentException, VectorDimensionMismatchException, NullOrZeroVectorException) as e:
                index.indexing_failures += 1
                INDEXING_FAILURES.labels(index=index.name).inc()
                self._logger.warning(f"Document {prepared.key} cannot be indexed by {index.name}: {e}")
                continue
            prepared.deltas.append((index, delta))

    # ------------------------
    # BACKGROUND COMPACTION
    # ------------------------

    def _schedule_compaction(self, index: SearchIndex) -> None:
        with self._queued_lock:
            if self._stop_token.cancelled or id(index) in self._queued:
                return
            self._queued.add(id(index))
        self._compaction_queue.put(index)

    def _process_compaction_queue(self) -> None:
        while True:
            index = self._compaction_queue.get()
            try:
                if index is None:
                    return
                with self._queued_lock:
                    self._queued.discard(id(index))
                if index.dropped:
                    continue
                if index.compact_vectors(self._stop_token):
                    self._logger.info(f"Compacted vector graphs of index {index.name}")
            except OperationCancelledException:
                self._logger.info(f"Vector compaction of index {index.name} cancelled by shutdown")
            except Exception:
                self._logger.error(f"Vector compaction of index {index.name} failed", exc_info=True)
            finally:
                self._compaction_queue.task_done()

    def wait_for_compactions(self) -> None:
        """Block until every queued compaction has finished."""
        self._compaction_queue.join()

    def close(self, timeout: Optional[float] = 5.0) -> None:
        """Cancel a running compaction and stop the background worker."""
        self._stop_token.cancel()
        if self._compaction_thread is not None and self._compaction_thread.is_alive():
            self._compaction_queue.put(None)
            self._compaction_thread.join(timeout)
