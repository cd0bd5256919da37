"""
Chroma-backed vector index.

Operates in three modes:
- Ephemeral in-memory client (default)
- PersistentClient when ``persist_directory`` is set
- HttpClient when ``chroma_host`` is set (docker compose chroma service)

Chroma metadata only holds scalars, so list values are JSON-encoded and
their keys recorded under ``_list_fields``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from rag.errors import ProviderFailure, ValidationError
from rag.filters import Equals, MetadataFilter, combine, to_mongo_filter
from rag.models import (
    ChunkRecord,
    DeleteResult,
    FileType,
    KnowledgeBaseStats,
    QueryMatch,
    UpsertResult,
)
from rag.vector_store import VectorIndex

logger = logging.getLogger(__name__)

# Check for optional dependencies
try:
    import chromadb
    from chromadb.config import Settings as ChromaSettings
    CHROMADB_AVAILABLE = True
except ImportError:
    chromadb = None
    ChromaSettings = None
    CHROMADB_AVAILABLE = False

LIST_FIELDS_KEY = "_list_fields"
RESERVED_KEYS = ("sourceDocId", "fileName", "fileType", "chunkIndex", "createdAt", "embeddingSpace", LIST_FIELDS_KEY)


class ChromaVectorIndex(VectorIndex):
    """Vector index stored in a chromadb collection with cosine distance."""

    backend = "chroma"
    provider_name = "chroma"

    def __init__(
        self,
        dimension: int,
        space: str = "",
        collection_name: str = "bridge_knowledge",
        persist_directory: Optional[str] = None,
        chroma_host: Optional[str] = None,
        chroma_port: int = 8000,
        client: Optional[Any] = None,
    ):
        super().__init__(dimension, space)
        if client is not None:
            self._client = client
        else:
            if not CHROMADB_AVAILABLE:
                raise ImportError(
                    "chromadb is required for the chroma backend. "
                    "Install with: pip install chromadb"
                )
            settings = ChromaSettings(anonymized_telemetry=False)
            if chroma_host:
                self._client = chromadb.HttpClient(host=chroma_host, port=chroma_port, settings=settings)
                logger.info(f"Chroma: connected to {chroma_host}:{chroma_port}")
            elif persist_directory:
                Path(persist_directory).mkdir(parents=True, exist_ok=True)
                self._client = chromadb.PersistentClient(path=persist_directory, settings=settings)
                logger.info(f"Chroma: persistent at {persist_directory}")
            else:
                self._client = chromadb.Client(settings=settings)
                logger.info("Chroma: ephemeral (in-memory)")

        self.collection_name = collection_name
        self._collection = self._client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine"},
        )

    # ── Metadata encoding ───────────────────────────────────────────────────

    def _encode_metadata(self, record: ChunkRecord) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {}
        list_fields: List[str] = []
        for key, value in record.metadata.items():
            if key in RESERVED_KEYS:
                continue
            if isinstance(value, (list, tuple)):
                metadata[key] = json.dumps(list(value), ensure_ascii=False)
                list_fields.append(key)
            else:
                metadata[key] = value
        metadata.update({
            "sourceDocId": record.source_doc_id,
            "fileName": record.file_name,
            "fileType": record.file_type.value,
            "chunkIndex": record.chunk_index,
            "createdAt": record.created_at,
        })
        if list_fields:
            metadata[LIST_FIELDS_KEY] = ",".join(list_fields)
        if self.space:
            metadata["embeddingSpace"] = self.space
        return metadata

    def _decode(self, record_id: str, text: str, metadata: Dict[str, Any],
                embedding: Optional[Sequence[float]] = None) -> ChunkRecord:
        metadata = dict(metadata or {})
        list_fields = [f for f in str(metadata.get(LIST_FIELDS_KEY, "")).split(",") if f]
        extra: Dict[str, Any] = {}
        for key, value in metadata.items():
            if key in RESERVED_KEYS:
                continue
            extra[key] = json.loads(value) if key in list_fields else value
        try:
            file_type = FileType.parse(metadata.get("fileType", FileType.DOCUMENT.value))
        except ValidationError:
            file_type = FileType.DOCUMENT
        return ChunkRecord(
            id=record_id,
            source_doc_id=str(metadata.get("sourceDocId", "")),
            file_name=str(metadata.get("fileName") or "unknown"),
            file_type=file_type,
            text=text or "",
            embedding=tuple(float(x) for x in embedding) if embedding is not None else (),
            metadata=extra,
            chunk_index=int(metadata.get("chunkIndex") or 0),
            created_at=str(metadata.get("createdAt") or ""),
        )

    def _where(self, predicate: Optional[MetadataFilter]) -> Optional[Dict[str, Any]]:
        if self.space:
            predicate = combine(Equals("embeddingSpace", self.space), predicate)
        return to_mongo_filter(predicate)

    # ── Contract ────────────────────────────────────────────────────────────

    def upsert(self, records: List[ChunkRecord]) -> UpsertResult:
        valid, rejected = self._partition(records)
        if valid:
            try:
                self._collection.upsert(
                    ids=[r.id for r in valid],
                    embeddings=[list(r.embedding) for r in valid],
                    documents=[r.text for r in valid],
                    metadatas=[self._encode_metadata(r) for r in valid],
                )
            except Exception as e:
                raise ProviderFailure(self.provider_name, str(e)) from e
        logger.info(f"[chroma] Upserted {len(valid)} chunks ({rejected} rejected)")
        return UpsertResult(accepted=len(valid), rejected=rejected)

    def query(
        self,
        vector: Sequence[float],
        top_k: int = 5,
        filter: Optional[MetadataFilter] = None,
    ) -> List[QueryMatch]:
        self._check_query(vector, top_k)
        n = min(top_k, self._collection.count())
        if n == 0:
            return []

        kwargs: Dict[str, Any] = {
            "query_embeddings": [[float(x) for x in vector]],
            "n_results": n,
            "include": ["documents", "metadatas", "distances"],
        }
        where = self._where(filter)
        if where:
            kwargs["where"] = where

        try:
            results = self._collection.query(**kwargs)
        except Exception as e:
            raise ProviderFailure(self.provider_name, str(e)) from e

        out: List[QueryMatch] = []
        if results and results.get("ids"):
            ids = results["ids"][0]
            documents = (results.get("documents") or [[""] * len(ids)])[0]
            metadatas = (results.get("metadatas") or [[{}] * len(ids)])[0]
            distances = (results.get("distances") or [[1.0] * len(ids)])[0]
            for record_id, text, meta, distance in zip(ids, documents, metadatas, distances):
                # cosine distance -> similarity
                score = max(-1.0, min(1.0, 1.0 - float(distance)))
                chunk = self._decode(record_id, text, meta or {})
                out.append(QueryMatch(id=record_id, score=score, chunk=chunk))
        return out

    def delete_by_document(self, source_doc_id: str) -> DeleteResult:
        where = to_mongo_filter(Equals("sourceDocId", source_doc_id))
        try:
            existing = self._collection.get(where=where, include=[])
            ids = list(existing.get("ids") or [])
            if ids:
                self._collection.delete(ids=ids)
        except Exception as e:
            raise ProviderFailure(self.provider_name, str(e)) from e
        logger.info(f"[chroma] Deleted {len(ids)} chunks of document {source_doc_id!r}")
        return DeleteResult(deleted_count=len(ids))

    def stats(self) -> KnowledgeBaseStats:
        kwargs: Dict[str, Any] = {"include": ["metadatas"]}
        where = self._where(None)
        if where:
            kwargs["where"] = where
        try:
            result = self._collection.get(**kwargs)
        except Exception as e:
            raise ProviderFailure(self.provider_name, str(e)) from e
        metadatas = result.get("metadatas") or []

        doc_types: Dict[str, str] = {}
        last_updated: Optional[str] = None
        for meta in metadatas:
            meta = meta or {}
            doc_types.setdefault(str(meta.get("sourceDocId", "")), str(meta.get("fileType", "")))
            created = meta.get("createdAt")
            if created and (last_updated is None or str(created) > last_updated):
                last_updated = str(created)

        breakdown = {ft.value: 0 for ft in FileType}
        for file_type in doc_types.values():
            if file_type in breakdown:
                breakdown[file_type] += 1

        return KnowledgeBaseStats(
            vector_count=len(metadatas),
            document_count=len(doc_types),
            category_breakdown=breakdown,
            last_updated=last_updated,
        )
