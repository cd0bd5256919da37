"""
Pinecone-backed vector index.

Talks to the Pinecone data-plane REST API with ``requests``:
upsert, query, delete-by-filter and describe_index_stats.
Chunk text and record fields travel in the vector metadata.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import requests

from common.http_utils import (
    extract_error_message,
    is_valid_api_key,
    safe_json,
    sanitize_error_message,
)
from rag.errors import ConfigurationError, MalformedResponse, ProviderFailure, ValidationError
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

PINECONE_API_VERSION = "2024-07"
UPSERT_BATCH_SIZE = 100

# metadata keys owned by the index; user metadata cannot override them
RESERVED_KEYS = ("content", "sourceDocId", "fileName", "fileType", "chunkIndex", "createdAt", "embeddingSpace")


def _to_pinecone_value(value: Any) -> Any:
    # Pinecone lists must be lists of strings
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return value


class PineconeVectorIndex(VectorIndex):
    """
    Vector index delegating storage and similarity search to Pinecone.

    The index must be created with ``metric=cosine`` and the same dimension.
    """

    backend = "pinecone"
    provider_name = "pinecone"

    def __init__(
        self,
        index_url: str,
        api_key: str,
        dimension: int,
        space: str = "",
        namespace: str = "",
        timeout: float = 60.0,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(dimension, space)
        if not is_valid_api_key(api_key) or not (index_url or "").strip():
            raise ConfigurationError("Pinecone API key and index URL must both be configured")

        index_url = index_url.strip().rstrip("/")
        if not index_url.startswith("http"):
            index_url = f"https://{index_url}"
        self.index_url = index_url
        self.namespace = namespace or ""
        self.timeout = timeout
        self.session = session or requests.Session()
        self._headers = {
            "Api-Key": api_key.strip(),
            "Content-Type": "application/json",
            "X-Pinecone-API-Version": PINECONE_API_VERSION,
        }

    # ── HTTP ────────────────────────────────────────────────────────────────

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.index_url}{path}"
        try:
            resp = self.session.post(url, json=payload, headers=self._headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise ProviderFailure(self.provider_name, sanitize_error_message(e)) from e

        data = safe_json(resp)
        if resp.status_code < 200 or resp.status_code >= 300:
            message = extract_error_message(data, fallback=resp.text or "request failed")
            raise ProviderFailure(
                self.provider_name,
                sanitize_error_message(message),
                status_code=resp.status_code,
                quota_exceeded=resp.status_code == 429,
            )
        if data is None:
            # delete answers with an empty body on some API versions
            if not (resp.text or "").strip():
                return {}
            raise MalformedResponse(self.provider_name, f"non-JSON response from {path}")
        if not isinstance(data, dict):
            raise MalformedResponse(self.provider_name, f"unexpected response shape from {path}")
        return data

    def _with_namespace(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self.namespace:
            payload["namespace"] = self.namespace
        return payload

    def _space_filter(self, predicate: Optional[MetadataFilter]) -> Optional[MetadataFilter]:
        if self.space:
            return combine(Equals("embeddingSpace", self.space), predicate)
        return predicate

    # ── Contract ────────────────────────────────────────────────────────────

    def _to_vector(self, record: ChunkRecord) -> Dict[str, Any]:
        metadata = {k: _to_pinecone_value(v) for k, v in record.metadata.items() if k not in RESERVED_KEYS}
        metadata.update({
            "content": record.text,
            "sourceDocId": record.source_doc_id,
            "fileName": record.file_name,
            "fileType": record.file_type.value,
            "chunkIndex": record.chunk_index,
            "createdAt": record.created_at,
        })
        if self.space:
            metadata["embeddingSpace"] = self.space
        return {"id": record.id, "values": list(record.embedding), "metadata": metadata}

    def upsert(self, records: List[ChunkRecord]) -> UpsertResult:
        valid, rejected = self._partition(records)
        accepted = 0
        for start in range(0, len(valid), UPSERT_BATCH_SIZE):
            batch = valid[start:start + UPSERT_BATCH_SIZE]
            payload = {"vectors": [self._to_vector(r) for r in batch]}
            data = self._post("/vectors/upsert", self._with_namespace(payload))
            accepted += int(data.get("upsertedCount", len(batch)))
        logger.info(f"[pinecone] Upserted {accepted} vectors ({rejected} rejected)")
        return UpsertResult(accepted=accepted, rejected=rejected)

    def query(
        self,
        vector: Sequence[float],
        top_k: int = 5,
        filter: Optional[MetadataFilter] = None,
    ) -> List[QueryMatch]:
        self._check_query(vector, top_k)
        payload: Dict[str, Any] = {
            "vector": [float(x) for x in vector],
            "topK": int(top_k),
            "includeMetadata": True,
            "includeValues": False,
        }
        rendered = to_mongo_filter(self._space_filter(filter))
        if rendered:
            payload["filter"] = rendered

        data = self._post("/query", self._with_namespace(payload))
        raw_matches = data.get("matches") or []
        if not isinstance(raw_matches, list):
            raise MalformedResponse(self.provider_name, "'matches' is not a list")

        results: List[QueryMatch] = []
        for item in raw_matches:
            if not isinstance(item, dict) or "id" not in item:
                raise MalformedResponse(self.provider_name, "match without id")
            chunk = self._from_metadata(str(item["id"]), item.get("metadata") or {})
            score = max(-1.0, min(1.0, float(item.get("score") or 0.0)))
            results.append(QueryMatch(id=chunk.id, score=score, chunk=chunk))
        return results

    def delete_by_document(self, source_doc_id: str) -> DeleteResult:
        predicate = Equals("sourceDocId", source_doc_id)
        count = self._count(predicate)
        if count:
            self._post("/vectors/delete", self._with_namespace({"filter": to_mongo_filter(predicate)}))
        logger.info(f"[pinecone] Deleted {count} vectors of document {source_doc_id!r}")
        return DeleteResult(deleted_count=count)

    def stats(self) -> KnowledgeBaseStats:
        breakdown = {ft.value: self._count_documents(ft) for ft in FileType}
        return KnowledgeBaseStats(
            vector_count=self._count(None),
            document_count=self._count(Equals("chunkIndex", 0)),
            category_breakdown=breakdown,
            last_updated=None,
        )

    # ── Helpers ─────────────────────────────────────────────────────────────

    def _count(self, predicate: Optional[MetadataFilter]) -> int:
        payload: Dict[str, Any] = {}
        rendered = to_mongo_filter(self._space_filter(predicate))
        if rendered:
            payload["filter"] = rendered
        data = self._post("/describe_index_stats", payload)
        namespaces = data.get("namespaces") or {}
        if isinstance(namespaces, dict) and self.namespace in namespaces:
            return int((namespaces[self.namespace] or {}).get("vectorCount", 0))
        if self.namespace:
            return 0
        return int(data.get("totalVectorCount", 0))

    def _count_documents(self, file_type: FileType) -> int:
        """Distinct documents of one file type: chunk 0 of each document carries the type."""
        return self._count(combine(Equals("fileType", file_type.value), Equals("chunkIndex", 0)))

    def _from_metadata(self, vector_id: str, metadata: Dict[str, Any]) -> ChunkRecord:
        try:
            file_type = FileType.parse(metadata.get("fileType", FileType.DOCUMENT.value))
        except ValidationError:
            file_type = FileType.DOCUMENT
        source_doc_id = str(metadata.get("sourceDocId") or vector_id.rsplit("_chunk_", 1)[0])
        extra = {k: v for k, v in metadata.items() if k not in RESERVED_KEYS}
        return ChunkRecord(
            id=vector_id,
            source_doc_id=source_doc_id,
            file_name=str(metadata.get("fileName") or "unknown"),
            file_type=file_type,
            text=str(metadata.get("content") or ""),
            embedding=(),
            metadata=extra,
            chunk_index=int(metadata.get("chunkIndex") or 0),
            created_at=str(metadata.get("createdAt") or ""),
        )
