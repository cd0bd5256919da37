"""Data models shared by the chunker, the vector indexes and the coordinator."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from rag.errors import ValidationError

SCALAR_TYPES = (str, int, float, bool)


class FileType(str, Enum):
    """Category of an ingested source file."""
    DOCUMENT = "document"  # specifications, reports, PDFs
    MODEL = "model"        # IFC / BIM models
    DRAWING = "drawing"    # DXF / DWG drawings

    @classmethod
    def parse(cls, value: Any) -> "FileType":
        """Accept an enum member, its value or a common file extension."""
        if isinstance(value, FileType):
            return value
        raw = str(value or "").strip().lower().lstrip(".")
        if raw in _FILE_TYPE_ALIASES:
            return _FILE_TYPE_ALIASES[raw]
        raise ValidationError(f"Unknown file type: {value!r}")


_FILE_TYPE_ALIASES: Dict[str, FileType] = {
    "document": FileType.DOCUMENT,
    "documents": FileType.DOCUMENT,
    "pdf": FileType.DOCUMENT,
    "docx": FileType.DOCUMENT,
    "doc": FileType.DOCUMENT,
    "txt": FileType.DOCUMENT,
    "md": FileType.DOCUMENT,
    "model": FileType.MODEL,
    "models": FileType.MODEL,
    "ifc": FileType.MODEL,
    "drawing": FileType.DRAWING,
    "drawings": FileType.DRAWING,
    "dxf": FileType.DRAWING,
    "dwg": FileType.DRAWING,
}


def make_chunk_id(source_doc_id: str, chunk_index: int) -> str:
    return f"{source_doc_id}_chunk_{chunk_index}"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def is_valid_metadata(metadata: Any) -> bool:
    """Metadata maps string keys to scalars or flat lists of scalars."""
    if not isinstance(metadata, dict):
        return False
    for key, value in metadata.items():
        if not isinstance(key, str) or not key:
            return False
        if isinstance(value, SCALAR_TYPES):
            continue
        if isinstance(value, (list, tuple)) and all(isinstance(v, SCALAR_TYPES) for v in value):
            continue
        return False
    return True


@dataclass(frozen=True)
class ChunkRecord:
    """One embedded chunk of a source document. Immutable once created."""
    id: str
    source_doc_id: str
    file_name: str
    file_type: FileType
    text: str
    embedding: Tuple[float, ...]
    metadata: Dict[str, Any] = field(default_factory=dict)
    chunk_index: int = 0
    created_at: str = field(default_factory=utc_now_iso)

    @classmethod
    def create(
        cls,
        source_doc_id: str,
        chunk_index: int,
        file_name: str,
        file_type: FileType,
        text: str,
        embedding: Sequence[float],
        metadata: Optional[Dict[str, Any]] = None,
        created_at: Optional[str] = None,
    ) -> "ChunkRecord":
        return cls(
            id=make_chunk_id(source_doc_id, chunk_index),
            source_doc_id=source_doc_id,
            file_name=file_name,
            file_type=FileType.parse(file_type),
            text=text,
            embedding=tuple(float(x) for x in embedding),
            metadata=dict(metadata or {}),
            chunk_index=chunk_index,
            created_at=created_at or utc_now_iso(),
        )

    def metadata_view(self) -> Dict[str, Any]:
        """Record metadata plus the built-in fields filters can address."""
        view = dict(self.metadata)
        view.update({
            "sourceDocId": self.source_doc_id,
            "fileName": self.file_name,
            "fileType": self.file_type.value,
            "chunkIndex": self.chunk_index,
        })
        return view

    def validation_error(self, dimension: int) -> Optional[str]:
        """Return why this record cannot be stored in a ``dimension``-wide index, or None."""
        if not self.id or not self.source_doc_id:
            return "missing id or sourceDocId"
        if not self.text or not self.text.strip():
            return "empty text"
        if len(self.embedding) != dimension:
            return f"embedding dimension {len(self.embedding)} != index dimension {dimension}"
        if not all(math.isfinite(x) for x in self.embedding):
            return "embedding contains non-finite values"
        if not is_valid_metadata(self.metadata):
            return "metadata values must be scalars or lists of scalars"
        return None


@dataclass
class QueryMatch:
    """A scored chunk returned by an index query."""
    id: str
    score: float
    chunk: ChunkRecord


@dataclass
class UpsertResult:
    accepted: int = 0
    rejected: int = 0


@dataclass
class DeleteResult:
    deleted_count: int = 0


@dataclass
class KnowledgeBaseStats:
    """Aggregate view over an index; recomputed on every call."""
    vector_count: int = 0
    document_count: int = 0
    category_breakdown: Dict[str, int] = field(
        default_factory=lambda: {ft.value: 0 for ft in FileType}
    )
    last_updated: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vectorCount": self.vector_count,
            "documentCount": self.document_count,
            "categoryBreakdown": dict(self.category_breakdown),
            "lastUpdated": self.last_updated,
        }


@dataclass
class KnowledgeBaseStatus:
    stats: KnowledgeBaseStats
    summary: str

    def to_dict(self) -> Dict[str, Any]:
        return {**self.stats.to_dict(), "summary": self.summary}


@dataclass
class IngestResult:
    source_doc_id: str
    chunks_stored: int = 0
    chunks_failed: int = 0

    @property
    def partial(self) -> bool:
        return self.chunks_failed > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sourceDocId": self.source_doc_id,
            "chunksStored": self.chunks_stored,
            "chunksFailed": self.chunks_failed,
            "partial": self.partial,
        }


@dataclass
class RAGSource:
    """A retrieved chunk as cited in an answer."""
    excerpt: str
    file_name: str
    file_type: str
    relevance_score: float
    source_doc_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.excerpt,
            "fileName": self.file_name,
            "fileType": self.file_type,
            "relevanceScore": self.relevance_score,
            "sourceDocId": self.source_doc_id,
        }


@dataclass
class RAGAnswer:
    answer: str
    provider_id: str
    sources: List[RAGSource] = field(default_factory=list)
    model: str = ""
    grounded: bool = False
    usage: Optional[Dict[str, int]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "answer": self.answer,
            "sources": [s.to_dict() for s in self.sources],
            "provider": self.provider_id,
            "model": self.model,
            "grounded": self.grounded,
            "usage": self.usage,
        }
