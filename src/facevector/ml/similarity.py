"""Embedding comparison and the similarity-store query contract."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

import numpy as np

from facevector.errors import DimensionMismatchError, InvalidEmbeddingError

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

FaceEmbedding = np.ndarray


@dataclass(frozen=True)
class EmbeddingComparison:
    cosine: float
    euclidean: float


@dataclass(frozen=True)
class SimilarityResult:
    """A ranked store match; ``score`` is cosine similarity in [-1, 1]."""

    id: str
    score: float
    identifier: str | None = None
    name: str | None = None


@dataclass(frozen=True)
class StoredEmbedding:
    """Metadata kept alongside a stored vector."""

    id: str
    identifier: str | None
    name: str | None
    created_at: datetime


def _as_vector(embedding: ArrayLike, label: str) -> NDArray[np.float64]:
    vec = np.asarray(embedding, dtype=np.float64).ravel()
    if vec.size == 0:
        raise InvalidEmbeddingError(f"{label} is empty")
    if not np.all(np.isfinite(vec)):
        raise InvalidEmbeddingError(f"{label} contains NaN or Inf")
    return vec


def _pair(a: ArrayLike, b: ArrayLike) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    va = _as_vector(a, "embedding a")
    vb = _as_vector(b, "embedding b")
    if va.size != vb.size:
        raise DimensionMismatchError(f"Embeddings must have the same dimension ({va.size} != {vb.size})")
    return va, vb


def _norm(vec: NDArray[np.float64], label: str) -> float:
    norm = float(np.linalg.norm(vec))
    if norm == 0.0 or not np.isfinite(norm):
        raise InvalidEmbeddingError(f"{label} has zero or non-finite norm")
    return norm


def cosine_similarity(a: ArrayLike, b: ArrayLike) -> float:
    va, vb = _pair(a, b)
    cosine = float(np.dot(va, vb)) / (_norm(va, "embedding a") * _norm(vb, "embedding b"))
    if not np.isfinite(cosine):
        raise InvalidEmbeddingError("cosine similarity is not finite")
    # rounding can land just outside [-1, 1]
    return min(max(cosine, -1.0), 1.0)


def euclidean_distance(a: ArrayLike, b: ArrayLike) -> float:
    va, vb = _pair(a, b)
    distance = float(np.sqrt(np.sum((va - vb) ** 2)))
    if not np.isfinite(distance):
        raise InvalidEmbeddingError("euclidean distance is not finite")
    return distance


def compare_embeddings(a: ArrayLike, b: ArrayLike) -> EmbeddingComparison:
    """Cosine similarity and Euclidean distance between two embeddings.

    Inputs are not normalized first.

    Raises:
        DimensionMismatchError: If the vectors differ in length.
        InvalidEmbeddingError: If either vector is empty, zero-norm, or non-finite.
    """
    return EmbeddingComparison(cosine=cosine_similarity(a, b), euclidean=euclidean_distance(a, b))


def l2_normalize(embedding: ArrayLike) -> NDArray[np.float32]:
    vec = _as_vector(embedding, "embedding")
    return (vec / _norm(vec, "embedding")).astype(np.float32)


class SimilarityStore(Protocol):
    """Contract for an external vector store.

    ``query`` returns up to ``k`` matches ordered best-first. Results may be
    approximate but must be deterministic for identical data.
    """

    def add(
        self,
        embedding_id: str,
        embedding: ArrayLike,
        identifier: str | None = None,
        name: str | None = None,
    ) -> StoredEmbedding:
        """Insert or replace an embedding, optionally bound to an identity."""
        ...

    def delete(self, embedding_id: str) -> bool:
        """Remove an embedding; return whether it existed."""
        ...

    def query(self, embedding: ArrayLike, k: int) -> list[SimilarityResult]:
        """Return the ``k`` most similar stored embeddings."""
        ...

    def recent(self, limit: int) -> list[StoredEmbedding]:
        """Return up to ``limit`` entries, most recently stored first."""
        ...

    def identities(self) -> set[str]:
        """Distinct identifiers bound to stored embeddings."""
        ...

    def __len__(self) -> int: ...


class InMemorySimilarityStore:
    """Exact cosine-similarity store held in process memory.

    Ranking ties are broken by insertion order. Replacing an id counts as a
    new insertion.
    """

    def __init__(self, dimension: int) -> None:
        self._dimension = dimension
        self._lock = threading.Lock()
        self._embeddings: dict[str, NDArray[np.float32]] = {}
        self._entries: dict[str, StoredEmbedding] = {}

    @property
    def dimension(self) -> int:
        return self._dimension

    def _validate(self, embedding: ArrayLike) -> NDArray[np.float32]:
        vec = _as_vector(embedding, "embedding")
        if vec.size != self._dimension:
            raise DimensionMismatchError(f"Expected {self._dimension}-d embedding, got {vec.size}")
        return l2_normalize(vec)

    def add(
        self,
        embedding_id: str,
        embedding: ArrayLike,
        identifier: str | None = None,
        name: str | None = None,
    ) -> StoredEmbedding:
        vec = self._validate(embedding)
        entry = StoredEmbedding(
            id=embedding_id,
            identifier=identifier,
            name=name,
            created_at=datetime.now(UTC),
        )
        with self._lock:
            self._embeddings.pop(embedding_id, None)
            self._entries.pop(embedding_id, None)
            self._embeddings[embedding_id] = vec
            self._entries[embedding_id] = entry
        return entry

    def delete(self, embedding_id: str) -> bool:
        with self._lock:
            self._entries.pop(embedding_id, None)
            return self._embeddings.pop(embedding_id, None) is not None

    def query(self, embedding: ArrayLike, k: int) -> list[SimilarityResult]:
        if k <= 0:
            raise ValueError(f"k must be positive, got {k}")
        query = self._validate(embedding)

        with self._lock:
            ids = list(self._embeddings)
            if not ids:
                return []
            matrix = np.stack([self._embeddings[i] for i in ids])
            entries = [self._entries[i] for i in ids]

        # float32 storage can push a self-match just past 1.0
        scores = np.clip(matrix.astype(np.float64) @ query.astype(np.float64), -1.0, 1.0)
        # Stable descending sort keeps insertion order among equal scores.
        order = np.argsort(-scores, kind="stable")[:k]
        return [
            SimilarityResult(
                id=ids[i],
                score=float(scores[i]),
                identifier=entries[i].identifier,
                name=entries[i].name,
            )
            for i in order
        ]

    def recent(self, limit: int) -> list[StoredEmbedding]:
        if limit <= 0:
            raise ValueError(f"limit must be positive, got {limit}")
        with self._lock:
            return list(reversed(self._entries.values()))[:limit]

    def identities(self) -> set[str]:
        """Distinct identifiers bound to stored embeddings."""
        with self._lock:
            return {e.identifier for e in self._entries.values() if e.identifier is not None}

    def __len__(self) -> int:
        with self._lock:
            return len(self._embeddings)
