"""
Vector index abstraction with an in-memory backend.

Backends:
- LocalVectorIndex: linear-scan cosine similarity, single process
- PineconeVectorIndex (rag.pinecone_store): Pinecone data-plane REST API
- ChromaVectorIndex (rag.chroma_store): chromadb collection

All backends share the externally observable contract of ``VectorIndex``
so the coordinator is backend-agnostic.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from common.concurrency import ReadWriteLock
from common.config import Settings
from rag.errors import ValidationError
from rag.filters import MetadataFilter, matches
from rag.models import (
    ChunkRecord,
    DeleteResult,
    FileType,
    KnowledgeBaseStats,
    QueryMatch,
    UpsertResult,
    utc_now_iso,
)

logger = logging.getLogger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine of the angle between ``a`` and ``b``, clamped to [-1, 1].

    Defined as 0.0 when either vector has zero norm.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValidationError(f"Vector dimensions differ: {va.shape[0]} vs {vb.shape[0]}")
    na = np.linalg.norm(va)
    nb = np.linalg.norm(vb)
    if na == 0 or nb == 0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / (na * nb), -1.0, 1.0))


class VectorIndex(ABC):
    """
    Abstract interface for chunk storage and similarity search.

    Every embedding stored in one index has the same dimension and comes
    from the same embedding space (``space``).
    """

    backend: str = ""

    def __init__(self, dimension: int, space: str = ""):
        if int(dimension) < 1:
            raise ValueError(f"Index dimension must be positive, got {dimension}")
        self._dimension = int(dimension)
        self._space = space

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def space(self) -> str:
        return self._space

    @abstractmethod
    def upsert(self, records: List[ChunkRecord]) -> UpsertResult:
        """Store records, replacing those with matching ids. Malformed records are rejected and counted."""

    @abstractmethod
    def query(
        self,
        vector: Sequence[float],
        top_k: int = 5,
        filter: Optional[MetadataFilter] = None,
    ) -> List[QueryMatch]:
        """Return up to ``top_k`` matches by descending cosine similarity."""

    @abstractmethod
    def delete_by_document(self, source_doc_id: str) -> DeleteResult:
        """Remove every chunk of a document. Unknown ids delete nothing."""

    @abstractmethod
    def stats(self) -> KnowledgeBaseStats:
        """Aggregate counts, recomputed on every call."""

    def close(self) -> None:
        """Release resources. Override if needed."""
        pass

    def _check_query(self, vector: Sequence[float], top_k: int) -> None:
        if top_k < 1:
            raise ValidationError(f"top_k must be at least 1, got {top_k}")
        if len(vector) != self.dimension:
            raise ValidationError(
                f"Query vector has {len(vector)} dims, index expects {self.dimension}"
            )
        if not all(math.isfinite(float(x)) for x in vector):
            raise ValidationError("Query vector contains non-finite values")

    def _partition(self, records: List[ChunkRecord]) -> Tuple[List[ChunkRecord], int]:
        """Split records into storable ones and a rejected count."""
        valid: List[ChunkRecord] = []
        rejected = 0
        for record in records:
            reason = record.validation_error(self.dimension)
            if reason:
                rejected += 1
                logger.warning(f"[{self.backend}] Rejected chunk {record.id!r}: {reason}")
            else:
                valid.append(record)
        return valid, rejected


class LocalVectorIndex(VectorIndex):
    """
    In-memory index with linear-scan cosine similarity.

    Complexity: O(1) per upserted record, O(n) per document delete,
    O(n * D) per query. Sized for one knowledge base of tens of thousands
    of chunks.

    Mutations take the write side of a ReadWriteLock, so a query sees a
    document either fully before or fully after an upsert/delete.
    """

    backend = "memory"

    def __init__(self, dimension: int, space: str = ""):
        super().__init__(dimension, space)
        self._records: Dict[str, ChunkRecord] = {}
        self._lock = ReadWriteLock()
        self._version = 0
        self._last_updated: Optional[str] = None
        # (version, ids, unit-normalised matrix) rebuilt lazily after writes
        self._matrix_cache: Optional[Tuple[int, List[str], np.ndarray]] = None

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._records)

    def upsert(self, records: List[ChunkRecord]) -> UpsertResult:
        valid, rejected = self._partition(records)
        if valid:
            with self._lock.write():
                for record in valid:
                    # dict keeps the original position when an id is replaced
                    self._records[record.id] = record
                self._touch()
        logger.debug(f"[memory] Upserted {len(valid)} chunks ({rejected} rejected)")
        return UpsertResult(accepted=len(valid), rejected=rejected)

    def query(
        self,
        vector: Sequence[float],
        top_k: int = 5,
        filter: Optional[MetadataFilter] = None,
    ) -> List[QueryMatch]:
        self._check_query(vector, top_k)

        with self._lock.read():
            ids, matrix = self._snapshot_matrix()
            records = [self._records[i] for i in ids]

        if not records:
            return []

        if filter is not None:
            positions = [i for i, r in enumerate(records) if matches(filter, r.metadata_view())]
            if not positions:
                return []
            records = [records[i] for i in positions]
            matrix = matrix[positions]

        q = np.asarray(vector, dtype=np.float64)
        q_norm = np.linalg.norm(q)
        if q_norm == 0:
            scores = np.zeros(len(records))
        else:
            # zero-norm rows were stored as zeros, so they score 0
            scores = np.clip(matrix @ (q / q_norm), -1.0, 1.0)

        # stable sort keeps insertion order among equal scores
        order = np.argsort(-scores, kind="stable")[:top_k]
        return [
            QueryMatch(id=records[i].id, score=float(scores[i]), chunk=records[i])
            for i in order
        ]

    def delete_by_document(self, source_doc_id: str) -> DeleteResult:
        with self._lock.write():
            doomed = [rid for rid, r in self._records.items() if r.source_doc_id == source_doc_id]
            for rid in doomed:
                del self._records[rid]
            if doomed:
                self._touch()
        logger.info(f"[memory] Deleted {len(doomed)} chunks of document {source_doc_id!r}")
        return DeleteResult(deleted_count=len(doomed))

    def stats(self) -> KnowledgeBaseStats:
        with self._lock.read():
            records = list(self._records.values())
            last_updated = self._last_updated

        doc_types: Dict[str, FileType] = {}
        for record in records:
            doc_types.setdefault(record.source_doc_id, record.file_type)

        breakdown = {ft.value: 0 for ft in FileType}
        for file_type in doc_types.values():
            breakdown[file_type.value] += 1

        return KnowledgeBaseStats(
            vector_count=len(records),
            document_count=len(doc_types),
            category_breakdown=breakdown,
            last_updated=last_updated,
        )

    def _touch(self) -> None:
        self._version += 1
        self._last_updated = utc_now_iso()

    def _snapshot_matrix(self) -> Tuple[List[str], np.ndarray]:
        """Return (ids, row-normalised matrix) for the current version. Caller holds the read lock."""
        cache = self._matrix_cache
        if cache is not None and cache[0] == self._version:
            return cache[1], cache[2]

        ids = list(self._records.keys())
        if ids:
            matrix = np.asarray([self._records[i].embedding for i in ids], dtype=np.float64)
            norms = np.linalg.norm(matrix, axis=1, keepdims=True)
            norms = np.where(norms == 0, 1.0, norms)
            matrix = matrix / norms
        else:
            matrix = np.zeros((0, self.dimension))

        self._matrix_cache = (self._version, ids, matrix)
        return ids, matrix


def build_vector_index(
    config: Settings,
    dimension: Optional[int] = None,
    space: str = "",
    **kwargs: Any,
) -> VectorIndex:
    """
    Factory: create a VectorIndex of the configured backend.

    Args:
        config: settings carrying ``vector_backend`` and backend credentials
        dimension: embedding dimension (defaults to ``config.embedding_dim``)
        space: embedding space identifier of the embedder feeding this index
        **kwargs: backend-specific overrides (e.g. ``session`` for Pinecone)

    Raises:
        ValueError: Unknown backend
    """
    backend = (config.vector_backend or "").strip().lower()
    dimension = dimension or config.embedding_dim

    if backend == "memory":
        index: VectorIndex = LocalVectorIndex(dimension, space=space)
    elif backend == "pinecone":
        from rag.pinecone_store import PineconeVectorIndex

        index = PineconeVectorIndex(
            index_url=config.pinecone_index_url,
            api_key=config.pinecone_api_key,
            dimension=dimension,
            space=space,
            namespace=config.pinecone_namespace,
            timeout=config.provider_timeout,
            **kwargs,
        )
    elif backend == "chroma":
        from rag.chroma_store import ChromaVectorIndex

        index = ChromaVectorIndex(
            dimension=dimension,
            space=space,
            collection_name=config.rag_collection_name,
            persist_directory=config.chroma_persist_directory or None,
            chroma_host=config.chroma_host or None,
            chroma_port=config.chroma_port,
            **kwargs,
        )
    else:
        raise ValueError(
            f"Unknown vector store backend: {backend!r}. "
            f"Supported: 'memory', 'pinecone', 'chroma'"
        )

    logger.info(f"Vector index: {index.backend} (dim={dimension}, space={space or 'unset'})")
    return index
