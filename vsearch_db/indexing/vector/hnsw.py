"""
HNSW (Hierarchical Navigable Small World) vector index.

    layer 2   [e]───────────────────[x]
               │                     │
    layer 1   [e]──────[b]──────────[x]──────[k]
               │        │            │        │
    layer 0   [e]─[a]─[b]─[c]─[d]───[x]─[j]─[k]─[m]

Every node draws a top layer from a geometric distribution
(``floor(-ln(U) * mL)`` with ``mL = 1 / ln(M)``) and appears on all layers
below it. Insertion greedily descends from the entry point to the node's top
layer, then on each remaining layer runs a beam search of width
``ef_construction`` and links the node to its ``M`` nearest results (``2M`` on
layer 0), pruning neighbour lists that overflow.

Queries descend greedily to layer 0 and run a beam of ``max(ef_runtime, K)``.
With a pre-filter, only allowed live nodes enter the result beam while
traversal still crosses every node, so connectivity is kept. Small candidate
sets skip the graph and are scanned exactly.

Writes are two-phase. ``stage`` links a new node into the graph in STAGED
state (invisible to queries); ``commit`` flips it LIVE and turns the key's
previous node into a TOMBSTONE. Tombstones keep routing traffic until
``compact`` rebuilds the graph from live nodes. Neighbour lists are guarded by
per-node locks so different documents can be linked concurrently; the node
table, id mapping and entry point sit behind one structure lock.
"""
import heapq
import logging
import math
import random
import threading
from enum import Enum
from typing import List, Tuple, Optional, Any, Set, Iterable

import numpy as np

from vsearch_data_model.index_definition import DistanceMetric
from vsearch_db.core.cancellation import CancellationToken, NEVER_CANCELLED
from vsearch_db.core.interface.vector_index_interface import VectorIndex, StagedVector
from vsearch_db.core.lock.locks import ReentrantRWLock
from vsearch_db.indexing.vector.distance import prepare_vector, batch_distance
from vsearch_db.indexing.vector.id_mapper import IdMapper
from vsearch_exception_model.exception import UnsupportedMetricException, InvalidFieldSpecException

# Set up logger for this module
logger = logging.getLogger(__name__)

_CANCEL_CHECK_INTERVAL = 64
_EXACT_SCAN_CHUNK = 4096
_MIN_TOMBSTONES_FOR_COMPACTION = 64


class _NodeState(Enum):
    STAGED = 1
    LIVE = 2
    TOMBSTONE = 3


class _Node:
    __slots__ = ("node_id", "level", "neighbors", "lock", "state")

    def __init__(self, node_id: int, level: int):
        self.node_id = node_id
        self.level = level
        self.neighbors: List[List[int]] = [[] for _ in range(level + 1)]
        self.lock = threading.Lock()
        self.state = _NodeState.STAGED


class HNSW(VectorIndex):
    """
    Approximate nearest-neighbour index over fixed-dimension float32 vectors.

    Recall is tuned with ``ef_construction`` (graph quality) and ``ef_runtime``
    (query beam width); results are not guaranteed to be the exact top-K.
    """

    def __init__(
            self,
            dim: int,
            metric: DistanceMetric = DistanceMetric.L2,
            max_conn_per_element: int = 16,
            ef_construction: int = 200,
            ef_runtime: int = 10,
            seed: Optional[int] = None,
            flat_filter_threshold: int = 1000,
            tombstone_compaction_ratio: float = 0.5,
            index_name: Optional[str] = None,
    ):
        """
        Args:
            dim: Dimensionality every inserted and query vector must have.
            metric: COSINE, L2 or IP.
            max_conn_per_element: M, neighbours per node on layers above 0.
            ef_construction: Beam width while linking new nodes.
            ef_runtime: Default beam width for queries.
            seed: Seed for level assignment, for reproducible graphs.
            flat_filter_threshold: Pre-filtered searches over at most this many
                candidates are answered by an exact scan.
            tombstone_compaction_ratio: ``needs_compaction`` reports True once
                tombstones exceed this share of live nodes.
            index_name: Owning index, used in error context.
        """
        parsed = DistanceMetric.parse(metric)
        if parsed is None:
            raise UnsupportedMetricException("Metric value not supported.", metric,
                                             {m.value for m in DistanceMetric})
        if dim is None or int(dim) <= 0:
            raise InvalidFieldSpecException(f"Vector dimension must be positive, got {dim}",
                                            index_name=index_name)
        if max_conn_per_element < 2:
            raise InvalidFieldSpecException("HNSW M must be at least 2", index_name=index_name)

        self.dim = int(dim)
        self.metric = parsed
        self._M = max_conn_per_element
        self._M0 = 2 * max_conn_per_element
        self._ef_construction = max(ef_construction, max_conn_per_element)
        self._ef_runtime = ef_runtime
        self._ml = 1.0 / math.log(max_conn_per_element)
        self._seed = seed
        self._rng = random.Random(seed)
        self._flat_filter_threshold = flat_filter_threshold
        self._tombstone_compaction_ratio = tombstone_compaction_ratio
        self._index_name = index_name

        self._structure_lock = threading.RLock()
        # write side held only while a compacted graph is swapped in
        self._compaction_lock = ReentrantRWLock()
        self._compaction_guard = threading.Lock()
        # keys whose binding changed while a compaction is building; None when idle
        self._journal: Optional[Set[str]] = None
        self._generation = 0
        self._reset_graph()

    def _reset_graph(self):
        self._data = np.zeros((16, self.dim), dtype=np.float32)
        self._nodes: List[_Node] = []
        self._id_mapper = IdMapper()
        self._entry_point: Optional[int] = None
        self._max_level = -1
        self._tombstones = 0

    # ------------------------
    # GRAPH PRIMITIVES
    # ------------------------

    def _random_level(self) -> int:
        return int(-math.log(1.0 - self._rng.random()) * self._ml)

    def _allocate(self, key: str, vector: np.ndarray, level: int) -> _Node:
        """Reserve a node id and store the vector. Caller holds the structure lock."""
        node_id = self._id_mapper.allocate(key)
        if node_id >= self._data.shape[0]:
            grown = np.zeros((self._data.shape[0] * 2, self.dim), dtype=np.float32)
            grown[:self._data.shape[0]] = self._data
            self._data = grown
        self._data[node_id] = vector
        node = _Node(node_id, level)
        self._nodes.append(node)
        return node

    def _dist(self, query: np.ndarray, ids: List[int]) -> np.ndarray:
        data = self._data
        return batch_distance(self.metric, query, data[np.asarray(ids, dtype=np.int64)])

    def _neighbors(self, node_id: int, level: int) -> List[int]:
        node = self._nodes[node_id]
        if level > node.level:
            return []
        with node.lock:
            return list(node.neighbors[level])

    def _greedy_closest(self, query: np.ndarray, current: int, level: int) -> Tuple[int, float]:
        current_dist = float(self._dist(query, [current])[0])
        changed = True
        while changed:
            changed = False
            links = self._neighbors(current, level)
            if not links:
                break
            dists = self._dist(query, links)
            best = int(np.argmin(dists))
            if dists[best] < current_dist:
                current_dist = float(dists[best])
                current = links[best]
                changed = True
        return current, current_dist

    def _search_layer(self, query: np.ndarray, entry_ids: List[int], ef: int, level: int,
                      accept=None,
                      cancellation: CancellationToken = NEVER_CANCELLED) -> List[Tuple[float, int]]:
        """
        Beam search on one layer. Every reachable node may be traversed; only
        nodes passing ``accept`` enter the result beam.

        Returns:
            Up to ``ef`` ``(distance, node_id)`` pairs, closest first.
        """
        visited = set(entry_ids)
        candidates: List[Tuple[float, int]] = []
        top: List[Tuple[float, int]] = []

        for d, node_id in zip(self._dist(query, entry_ids).tolist(), entry_ids):
            heapq.heappush(candidates, (d, node_id))
            if accept is None or accept(node_id):
                heapq.heappush(top, (-d, node_id))
        lower_bound = -top[0][0] if top else math.inf

        steps = 0
        while candidates:
            d_c, current = heapq.heappop(candidates)
            if d_c > lower_bound and len(top) >= ef:
                break

            steps += 1
            if steps % _CANCEL_CHECK_INTERVAL == 0:
                cancellation.check()

            links = [n for n in self._neighbors(current, level) if n not in visited]
            if not links:
                continue
            visited.update(links)

            for d_n, neighbor in zip(self._dist(query, links).tolist(), links):
                if len(top) < ef or d_n < lower_bound:
                    heapq.heappush(candidates, (d_n, neighbor))
                    if accept is None or accept(neighbor):
                        heapq.heappush(top, (-d_n, neighbor))
                        if len(top) > ef:
                            heapq.heappop(top)
                    if top:
                        lower_bound = -top[0][0]

        return sorted((-neg_d, node_id) for neg_d, node_id in top)

    def _link(self, neighbor_id: int, new_id: int, level: int) -> None:
        """Add a back-link from ``neighbor_id`` to ``new_id``, pruning to the closest M."""
        neighbor = self._nodes[neighbor_id]
        max_conn = self._M0 if level == 0 else self._M
        with neighbor.lock:
            links = neighbor.neighbors[level]
            if new_id in links:
                return
            links.append(new_id)
            if len(links) > max_conn:
                dists = self._dist(self._data[neighbor_id], links)
                keep = np.argsort(dists, kind='stable')[:max_conn]
                neighbor.neighbors[level] = [links[i] for i in keep]

    def _insert(self, key: str, vector: np.ndarray) -> int:
        """Link a prepared vector into the graph as a STAGED node and return its id."""
        level = self._random_level()
        with self._structure_lock:
            node = self._allocate(key, vector, level)
            entry_point, max_level = self._entry_point, self._max_level
            if entry_point is None:
                self._entry_point = node.node_id
                self._max_level = level
                return node.node_id

        current = entry_point
        for lc in range(max_level, level, -1):
            current, _ = self._greedy_closest(vector, current, lc)

        for lc in range(min(level, max_level), -1, -1):
            found = self._search_layer(vector, [current], self._ef_construction, lc)
            max_conn = self._M0 if lc == 0 else self._M
            selected = [node_id for _, node_id in found[:max_conn]]
            with node.lock:
                node.neighbors[lc] = list(selected)
            for neighbor_id in selected:
                self._link(neighbor_id, node.node_id, lc)
            if found:
                current = found[0][1]

        if level > max_level:
            with self._structure_lock:
                if level > self._max_level:
                    self._entry_point = node.node_id
                    self._max_level = level
        return node.node_id

    # ------------------------
    # TWO-PHASE WRITES
    # ------------------------

    # Node ids are only meaningful within one graph generation. Anything that
    # carries an id across a compaction (a staged vector, a commit to revert, a
    # delete token) falls back to re-linking its vector into the current graph.

    def stage(self, key: str, vector: Any) -> StagedVector:
        np_vec = prepare_vector(vector, self.dim, self.metric, record_id=key, index_name=self._index_name)
        with self._compaction_lock.read_lock():
            node_id = self._insert(key, np_vec)
            generation = self._generation
        return StagedVector(key=key, vector=np_vec, node_id=node_id, generation=generation)

    def commit(self, staged: StagedVector) -> None:
        with self._compaction_lock.read_lock(), self._structure_lock:
            if staged.generation != self._generation:
                staged.node_id = self._insert(staged.key, staged.vector)
                staged.generation = self._generation
            previous = self._id_mapper.bind(staged.key, staged.node_id)
            self._nodes[staged.node_id].state = _NodeState.LIVE
            staged.previous_vector = None
            if previous is not None and previous != staged.node_id:
                self._nodes[previous].state = _NodeState.TOMBSTONE
                self._tombstones += 1
                staged.previous_vector = self._data[previous].copy()
            staged.previous_id = previous
            staged.committed = True
            self._touch(staged.key)

    def revert(self, staged: StagedVector) -> None:
        with self._compaction_lock.read_lock(), self._structure_lock:
            if not staged.committed:
                return
            if staged.generation != self._generation:
                self._relink(staged.key, staged.previous_vector)
            else:
                self._nodes[staged.node_id].state = _NodeState.TOMBSTONE
                self._tombstones += 1
                if staged.previous_id is not None:
                    self._id_mapper.bind(staged.key, staged.previous_id)
                    self._nodes[staged.previous_id].state = _NodeState.LIVE
                    self._tombstones -= 1
                else:
                    self._id_mapper.unbind(staged.key)
            staged.committed = False
            self._touch(staged.key)

    def discard(self, staged: StagedVector) -> None:
        with self._structure_lock:
            if staged.committed or staged.generation != self._generation:
                return
            node = self._nodes[staged.node_id]
            if node.state == _NodeState.STAGED:
                node.state = _NodeState.TOMBSTONE
                self._tombstones += 1

    def delete(self, key: str) -> Optional[Tuple[int, int, np.ndarray]]:
        """Tombstone the live node of ``key``; the returned token undoes it through ``restore``."""
        with self._compaction_lock.read_lock(), self._structure_lock:
            node_id = self._id_mapper.unbind(key)
            if node_id is None:
                logger.debug(f"key {key} not found in vector index")
                return None
            self._nodes[node_id].state = _NodeState.TOMBSTONE
            self._tombstones += 1
            self._touch(key)
            return self._generation, node_id, self._data[node_id].copy()

    def restore(self, key: str, token: Any) -> None:
        if token is None:
            return
        generation, node_id, vector = token
        with self._compaction_lock.read_lock(), self._structure_lock:
            if generation != self._generation:
                self._relink(key, vector)
            else:
                self._id_mapper.bind(key, node_id)
                self._nodes[node_id].state = _NodeState.LIVE
                self._tombstones -= 1
            self._touch(key)

    def _relink(self, key: str, vector: Optional[np.ndarray]) -> None:
        """Make ``vector`` (or nothing) the live vector of ``key``. Caller holds the structure lock."""
        current = self._id_mapper.unbind(key)
        if current is not None:
            self._nodes[current].state = _NodeState.TOMBSTONE
            self._tombstones += 1
        if vector is not None:
            node_id = self._insert(key, vector)
            self._id_mapper.bind(key, node_id)
            self._nodes[node_id].state = _NodeState.LIVE

    def _touch(self, key: str) -> None:
        if self._journal is not None:
            self._journal.add(key)

    # ------------------------
    # SEARCH
    # ------------------------

    def search(self, query: Any, k: int,
               allowed_keys: Optional[Set[str]] = None,
               ef_runtime: Optional[int] = None,
               cancellation: CancellationToken = NEVER_CANCELLED) -> List[Tuple[str, float]]:
        """
        Search for the ``k`` nearest live vectors, optionally restricted to
        ``allowed_keys``.

        Returns:
            List of (key, distance) tuples, closest first, ties by key.
        """
        np_query = prepare_vector(query, self.dim, self.metric, index_name=self._index_name)
        if k <= 0:
            return []

        with self._compaction_lock.read_lock():
            with self._structure_lock:
                entry_point, max_level = self._entry_point, self._max_level
                if entry_point is None or self._id_mapper.live_count() == 0:
                    return []
                allowed_ids = None
                if allowed_keys is not None:
                    allowed_ids = self._id_mapper.convert_to_internal_ids(allowed_keys)

            if allowed_ids is not None:
                if not allowed_ids:
                    return []
                if len(allowed_ids) <= self._flat_filter_threshold:
                    return self._exact_search(np_query, allowed_ids, k, cancellation)
                nodes = self._nodes

                def accept(node_id):
                    return node_id in allowed_ids and nodes[node_id].state == _NodeState.LIVE
            else:
                nodes = self._nodes

                def accept(node_id):
                    return nodes[node_id].state == _NodeState.LIVE

            current = entry_point
            for lc in range(max_level, 0, -1):
                current, _ = self._greedy_closest(np_query, current, lc)

            ef = max(ef_runtime or self._ef_runtime, k)
            found = self._search_layer(np_query, [current], ef, 0, accept, cancellation)
            return self._to_results(found, k)

    def _exact_search(self, query: np.ndarray, node_ids: Iterable[int], k: int,
                      cancellation: CancellationToken) -> List[Tuple[str, float]]:
        ids = sorted(i for i in node_ids if self._nodes[i].state == _NodeState.LIVE)
        found: List[Tuple[float, int]] = []
        for start in range(0, len(ids), _EXACT_SCAN_CHUNK):
            cancellation.check()
            chunk = ids[start:start + _EXACT_SCAN_CHUNK]
            found.extend(zip(self._dist(query, chunk).tolist(), chunk))
        return self._to_results(found, k)

    def _to_results(self, found: List[Tuple[float, int]], k: int) -> List[Tuple[str, float]]:
        results = [(self._id_mapper.get_key(node_id), float(d)) for d, node_id in found]
        results.sort(key=lambda r: (r[1], r[0]))
        return results[:k]

    # ------------------------
    # MAINTENANCE
    # ------------------------

    def needs_compaction(self) -> bool:
        if self._journal is not None:
            return False
        live = self._id_mapper.live_count()
        return (self._tombstones >= _MIN_TOMBSTONES_FOR_COMPACTION
                and self._tombstones > self._tombstone_compaction_ratio * max(live, 1))

    def compact(self, cancellation: CancellationToken = NEVER_CANCELLED) -> None:
        """
        Rebuild the graph from live nodes only, dropping tombstones.

        The fresh graph is built from a snapshot while the old one keeps
        serving queries and writes. Keys written in the meantime are replayed
        into it, and only that replay plus the swap exclude other threads. A
        cancelled rebuild leaves the old graph untouched.
        """
        with self._compaction_guard:
            with self._structure_lock:
                live = sorted((self._id_mapper.get_internal_id(k), k) for k in self._id_mapper.get_all_keys())
                vectors = [(key, self._data[node_id].copy()) for node_id, key in live]
                dropped = self._tombstones
                self._journal = set()

            try:
                fresh = HNSW(self.dim, self.metric, self._M, self._ef_construction, self._ef_runtime,
                             seed=self._seed, flat_filter_threshold=self._flat_filter_threshold,
                             tombstone_compaction_ratio=self._tombstone_compaction_ratio,
                             index_name=self._index_name)
                for i, (key, vector) in enumerate(vectors):
                    if i % _CANCEL_CHECK_INTERVAL == 0:
                        cancellation.check()
                    fresh._relink(key, vector)

                with self._compaction_lock.write_lock(), self._structure_lock:
                    replayed = sorted(self._journal)
                    for key in replayed:
                        node_id = self._id_mapper.get_internal_id(key)
                        fresh._relink(key, self._data[node_id].copy() if node_id is not None else None)
                    self._data = fresh._data
                    self._nodes = fresh._nodes
                    self._id_mapper = fresh._id_mapper
                    self._entry_point = fresh._entry_point
                    self._max_level = fresh._max_level
                    self._tombstones = fresh._tombstones
                    self._generation += 1
            finally:
                with self._structure_lock:
                    self._journal = None

        logger.info(f"Compacted HNSW graph for index {self._index_name}: {len(vectors)} live nodes kept, "
                    f"{dropped} tombstones dropped, {len(replayed)} concurrent writes replayed")

    def get_ids(self) -> Set[str]:
        with self._structure_lock:
            return set(self._id_mapper.get_all_keys())

    def __len__(self) -> int:
        return self._id_mapper.live_count()

    def info(self) -> dict:
        with self._structure_lock:
            return {
                'algorithm': 'HNSW',
                'dim': self.dim,
                'distance_metric': self.metric.value,
                'm': self._M,
                'ef_construction': self._ef_construction,
                'ef_runtime': self._ef_runtime,
                'num_vectors': self._id_mapper.live_count(),
                'num_tombstones': self._tombstones,
                'max_level': self._max_level,
            }
