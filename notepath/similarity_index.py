"""
Vector similarity index keyed by note id.

Vectors are L2-normalised and held in FAISS ``IndexFlatIP`` indexes
(inner product on unit vectors = cosine similarity), one per vector
dimension, wrapped in ``IndexIDMap`` for row → note mapping.  A query
whose dimension matches no stored group, or whose norm is zero, scores
0.0 against everything.

``SimilarityIndex`` is the in-memory store.  ``CachedSimilarityIndex``
reads vectors lazily from a loader callable and reloads once its
snapshot is older than a TTL; the swap to a new snapshot is atomic.
"""

import logging
import threading
import time
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import numpy as np

from notepath.models import SemanticSearchResult

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10
DEFAULT_THRESHOLD = 0.3
_MIN_NORM = 1e-12

# (note_id, note_path, vector)
VectorRecord = Tuple[str, str, np.ndarray]


def cosine_similarity(a, b) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 on dimension mismatch, zero magnitude or non-finite
    input; never raises for numeric input.
    """
    a = np.asarray(a, dtype=np.float64).ravel()
    b = np.asarray(b, dtype=np.float64).ravel()
    if a.shape != b.shape or a.size == 0:
        return 0.0
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    sim = float(np.dot(a, b) / (norm_a * norm_b))
    if not np.isfinite(sim):
        return 0.0
    return max(-1.0, min(1.0, sim))


def _normalise(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    return matrix / np.maximum(norms, _MIN_NORM)


# =========================================================================
# Snapshot (immutable once built)
# =========================================================================


class _Snapshot:
    """Frozen set of vectors with one FAISS index per dimension."""

    def __init__(self, records: Iterable[VectorRecord]):
        import faiss

        self.paths: Dict[str, str] = {}
        self.vectors: Dict[str, np.ndarray] = {}
        for note_id, note_path, vector in records:
            self.paths[note_id] = note_path
            self.vectors[note_id] = np.asarray(vector, dtype=np.float32).ravel()

        by_dim: Dict[int, List[str]] = {}
        for note_id, vec in self.vectors.items():
            by_dim.setdefault(vec.shape[0], []).append(note_id)

        # dim → (index, row id → note id)
        self.groups: Dict[int, Tuple[object, List[str]]] = {}
        for dim, ids in by_dim.items():
            if dim == 0:
                continue
            matrix = _normalise(np.stack([self.vectors[i] for i in ids]))
            index = faiss.IndexIDMap(faiss.IndexFlatIP(dim))
            index.add_with_ids(
                np.ascontiguousarray(matrix, dtype=np.float32),
                np.arange(len(ids), dtype=np.int64),
            )
            self.groups[dim] = (index, ids)

    def __len__(self) -> int:
        return len(self.vectors)

    def search(
        self,
        query,
        limit: int,
        threshold: float,
        exclude_ids: Iterable[str],
    ) -> List[SemanticSearchResult]:
        if limit <= 0:
            return []
        q = np.asarray(query, dtype=np.float32).ravel()
        group = self.groups.get(q.shape[0])
        norm = float(np.linalg.norm(q)) if q.size else 0.0
        excluded = set(exclude_ids)

        scores: Dict[str, float] = {}
        if group is not None and norm > 0.0 and np.isfinite(norm):
            index, ids = group
            k = min(len(ids), index.ntotal)
            sims, rows = index.search(
                np.ascontiguousarray((q / norm).reshape(1, -1), dtype=np.float32),
                k,
            )
            for sim, row in zip(sims[0], rows[0]):
                if row < 0:
                    continue
                scores[ids[row]] = max(-1.0, min(1.0, float(sim)))

        # Vectors outside the query's dimension group score 0.0.
        if threshold <= 0.0:
            for note_id in self.vectors:
                scores.setdefault(note_id, 0.0)

        hits = [
            (note_id, sim) for note_id, sim in scores.items()
            if note_id not in excluded and sim >= threshold
        ]
        hits.sort(key=lambda h: (-h[1], h[0]))
        return [
            SemanticSearchResult(
                note_id=note_id, note_path=self.paths[note_id], similarity=sim,
            )
            for note_id, sim in hits[:limit]
        ]


# =========================================================================
# In-memory index
# =========================================================================


class SimilarityIndex:
    """Mutable in-memory vector store.

    The FAISS snapshot is rebuilt lazily on the first search after a
    change.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._records: Dict[str, Tuple[str, np.ndarray]] = {}
        self._snapshot: Optional[_Snapshot] = None

    def store(self, note_id: str, note_path: str, vector) -> None:
        with self._lock:
            self._records[note_id] = (
                note_path, np.asarray(vector, dtype=np.float32).ravel()
            )
            self._snapshot = None

    def remove(self, note_id: str) -> bool:
        with self._lock:
            removed = self._records.pop(note_id, None) is not None
            if removed:
                self._snapshot = None
            return removed

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            self._snapshot = None

    def size(self) -> int:
        return len(self._records)

    def has(self, note_id: str) -> bool:
        return note_id in self._records

    def search(
        self,
        query,
        limit: int = DEFAULT_LIMIT,
        threshold: float = DEFAULT_THRESHOLD,
        exclude_ids: Iterable[str] = (),
    ) -> List[SemanticSearchResult]:
        with self._lock:
            if self._snapshot is None:
                self._snapshot = _Snapshot(
                    (nid, path, vec) for nid, (path, vec) in self._records.items()
                )
            snapshot = self._snapshot
        return snapshot.search(query, limit, threshold, exclude_ids)


# =========================================================================
# Lazily loaded, TTL-cached index
# =========================================================================


class CachedSimilarityIndex:
    """Read-only index backed by a loader, reloaded after ``ttl_seconds``.

    Args:
        loader: Callable returning an iterable of ``(note_id, note_path,
                vector)`` records, e.g. rows of the embeddings table.
        ttl_seconds: Maximum snapshot age before the next access reloads.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        loader: Callable[[], Iterable[VectorRecord]],
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot: Optional[_Snapshot] = None
        self._loaded_at: Optional[float] = None

    def _is_stale(self) -> bool:
        return (
            self._snapshot is None
            or self._loaded_at is None
            or self._clock() - self._loaded_at >= self._ttl
        )

    def refresh(self) -> None:
        """Reload now.  On loader failure the previous snapshot is kept."""
        try:
            snapshot = _Snapshot(self._loader())
        except Exception as exc:
            if self._snapshot is None:
                raise
            logger.warning("⚠ Vector reload failed, keeping old snapshot: %s", exc)
            return
        with self._lock:
            self._snapshot = snapshot
            self._loaded_at = self._clock()
        logger.info("Similarity cache reloaded: %d vector(s).", len(snapshot))

    def _current(self) -> _Snapshot:
        if self._is_stale():
            self.refresh()
        with self._lock:
            return self._snapshot

    def size(self) -> int:
        return len(self._current())

    def has(self, note_id: str) -> bool:
        return note_id in self._current().vectors

    def search(
        self,
        query,
        limit: int = DEFAULT_LIMIT,
        threshold: float = DEFAULT_THRESHOLD,
        exclude_ids: Iterable[str] = (),
    ) -> List[SemanticSearchResult]:
        return self._current().search(query, limit, threshold, exclude_ids)
