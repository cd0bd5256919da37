"""
RAG coordinator.

Ingestion:  text -> Chunker -> EmbeddingProvider (bounded pool) -> VectorIndex.upsert
Answering:  question -> embed -> VectorIndex.query -> relevance filter
            -> grounded context prompt | fallback -> ChatProvider.chat

The coordinator holds no chunk data; the index is the only shared state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from common.concurrency import ConcurrencyController
from common.config import Settings
from llm.base import ConversationTurn, Role
from llm.registry import ChatProviderRegistry, build_chat_registry
from prompts.assistant import format_context_prompt, format_status_summary
from rag.chunker import Chunker
from rag.embedder import EmbeddingProvider, build_embedder
from rag.enrichment import chunk_metadata, document_metadata
from rag.errors import ConfigurationError, ValidationError
from rag.filters import MetadataFilter, OneOf, combine
from rag.models import (
    ChunkRecord,
    DeleteResult,
    FileType,
    IngestResult,
    KnowledgeBaseStats,
    KnowledgeBaseStatus,
    QueryMatch,
    RAGAnswer,
    RAGSource,
    is_valid_metadata,
    utc_now_iso,
)
from rag.vector_store import VectorIndex, build_vector_index

logger = logging.getLogger(__name__)

HistoryItem = Union[ConversationTurn, Dict[str, Any]]


@dataclass
class AskOptions:
    top_k: int = 5
    min_relevance: float = 0.7
    history_turns: int = 6
    file_types: Optional[Sequence[Union[FileType, str]]] = None
    filter: Optional[MetadataFilter] = None

    @classmethod
    def from_settings(cls, config: Settings) -> "AskOptions":
        return cls(
            top_k=config.rag_top_k,
            min_relevance=config.rag_min_relevance,
            history_turns=config.rag_history_turns,
        )


def file_type_filter(file_types: Optional[Iterable[Union[FileType, str]]]) -> Optional[MetadataFilter]:
    if not file_types:
        return None
    values = []
    for ft in file_types:
        value = FileType.parse(ft).value
        if value not in values:
            values.append(value)
    return OneOf("fileType", values)


def make_excerpt(text: str, limit: int = 300) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class RAGCoordinator:
    """
    Orchestrates ingestion and question answering over one VectorIndex.

    The embedder and the index must share an embedding space: vectors from
    different strategies or models are not comparable, so a mismatch is
    refused at construction.
    """

    def __init__(
        self,
        index: VectorIndex,
        embedder: EmbeddingProvider,
        registry: ChatProviderRegistry,
        chunker: Optional[Chunker] = None,
        default_options: Optional[AskOptions] = None,
        embed_concurrency: int = 4,
        excerpt_chars: int = 300,
        enrich_metadata: bool = True,
    ):
        if embedder.dimension != index.dimension:
            raise ConfigurationError(
                f"Embedder produces {embedder.dimension}-dim vectors, index expects {index.dimension}"
            )
        if index.space and index.space != embedder.space:
            raise ConfigurationError(
                f"Index embedding space {index.space!r} does not match embedder space {embedder.space!r}"
            )
        self.index = index
        self.embedder = embedder
        self.registry = registry
        self.chunker = chunker or Chunker()
        self.default_options = default_options or AskOptions()
        self.excerpt_chars = excerpt_chars
        self.enrich_metadata = enrich_metadata
        self._controller = ConcurrencyController(max_concurrency=embed_concurrency)

    # ── Ingestion ───────────────────────────────────────────────────────────

    def ingest(
        self,
        source_doc_id: str,
        file_name: str,
        file_type: Union[FileType, str],
        text: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> IngestResult:
        """
        Chunk, embed and store one document.

        Chunks are tagged with detected bridge terms, the document's content
        type and an ``addedToKB`` timestamp (see ``rag.enrichment``); keys in
        ``metadata`` take precedence. A chunk whose embedding fails is logged
        and skipped; the survivors are upserted in a single call so readers
        see the document appear at once.
        Ordinals are assigned over the stored chunks, so chunk 0 always exists
        for a stored document.

        Raises:
            ValidationError: empty ``source_doc_id``, unknown file type or bad metadata
        """
        source_doc_id = (source_doc_id or "").strip()
        if not source_doc_id:
            raise ValidationError("source_doc_id must not be empty")
        file_type = FileType.parse(file_type)
        metadata = dict(metadata or {})
        if not is_valid_metadata(metadata):
            raise ValidationError("metadata values must be scalars or lists of scalars")

        chunks = self.chunker.split(text or "")
        if not chunks:
            logger.info(f"[ingest] {source_doc_id}: no text to index")
            return IngestResult(source_doc_id=source_doc_id)

        vectors = self._controller.map_with_limit(self.embedder.embed, chunks)
        added_at = utc_now_iso()
        shared = document_metadata(text, added_at) if self.enrich_metadata else {}

        records: List[ChunkRecord] = []
        failed = 0
        for position, (chunk, vector) in enumerate(zip(chunks, vectors)):
            if isinstance(vector, BaseException):
                failed += 1
                logger.warning(f"[ingest] {source_doc_id}: chunk {position} not embedded: {vector}")
                continue
            records.append(
                ChunkRecord.create(
                    source_doc_id=source_doc_id,
                    chunk_index=len(records),
                    file_name=file_name or "unknown",
                    file_type=file_type,
                    text=chunk,
                    embedding=vector,
                    metadata=self._chunk_metadata(chunk, shared, metadata),
                    created_at=added_at,
                )
            )

        stored = 0
        if records:
            result = self.index.upsert(records)
            stored = result.accepted
            failed += result.rejected

        logger.info(
            f"[ingest] {source_doc_id} ({file_name}): {stored}/{len(chunks)} chunks stored, {failed} failed"
        )
        return IngestResult(source_doc_id=source_doc_id, chunks_stored=stored, chunks_failed=failed)

    def _chunk_metadata(self, chunk: str, shared: Dict[str, Any], metadata: Dict[str, Any]) -> Dict[str, Any]:
        # caller-supplied keys win over detected ones
        if not self.enrich_metadata:
            return metadata
        return {**shared, **chunk_metadata(chunk), **metadata}

    # ── Question answering ──────────────────────────────────────────────────

    def ask(
        self,
        question: str,
        provider_id: Optional[str] = None,
        history: Optional[Sequence[HistoryItem]] = None,
        options: Optional[AskOptions] = None,
    ) -> RAGAnswer:
        """
        Answer ``question`` with retrieved context when any is relevant.

        Retrieval problems (embedding or index errors, nothing above
        ``min_relevance``) degrade to an ungrounded answer with no sources.
        Generation failures are raised to the caller.

        Raises:
            ValidationError: empty question or unknown provider
            ConfigurationError / ProviderFailure / MalformedResponse: from the chat provider
        """
        question = (question or "").strip()
        if not question:
            raise ValidationError("Question must not be empty")
        options = options or self.default_options
        if options.top_k < 1:
            raise ValidationError(f"top_k must be at least 1, got {options.top_k}")
        provider = self.registry.get(provider_id)
        turns = self._history_suffix(history, options.history_turns)
        predicate = combine(file_type_filter(options.file_types), options.filter)

        relevant = self._retrieve(question, options.top_k, options.min_relevance, predicate)

        if relevant:
            logger.debug(f"[ask] state=Grounded sources={len(relevant)}")
            prompt = format_context_prompt(question, relevant)
        else:
            logger.debug("[ask] state=Fallback")
            prompt = question

        logger.debug(f"[ask] state=Generating provider={provider.provider_id}")
        response = provider.chat(turns + [ConversationTurn(Role.USER, prompt)])

        sources = [
            RAGSource(
                excerpt=make_excerpt(m.chunk.text, self.excerpt_chars),
                file_name=m.chunk.file_name,
                file_type=m.chunk.file_type.value,
                relevance_score=round(m.score, 2),
                source_doc_id=m.chunk.source_doc_id,
            )
            for m in relevant
        ]
        logger.debug("[ask] state=Done")
        return RAGAnswer(
            answer=response.text,
            provider_id=response.provider_id or provider.provider_id,
            sources=sources,
            model=response.model,
            grounded=bool(relevant),
            usage=response.usage.to_dict(),
        )

    def _retrieve(
        self,
        question: str,
        top_k: int,
        min_relevance: float,
        predicate: Optional[MetadataFilter],
    ) -> List[QueryMatch]:
        """Embedding and Retrieving states. Any failure means no context."""
        try:
            logger.debug("[ask] state=Embedding")
            vector = self.embedder.embed(question)
            logger.debug(f"[ask] state=Retrieving top_k={top_k}")
            matches = self.index.query(vector, top_k=top_k, filter=predicate)
        except Exception as e:
            logger.warning(f"[ask] Retrieval failed, answering without context: {e}")
            return []

        relevant = [m for m in matches if m.score >= min_relevance]
        logger.info(f"[ask] {len(matches)} candidates, {len(relevant)} above {min_relevance}")
        return relevant

    @staticmethod
    def _history_suffix(history: Optional[Sequence[HistoryItem]], limit: int) -> List[ConversationTurn]:
        if not history or limit <= 0:
            return []
        turns = [h if isinstance(h, ConversationTurn) else ConversationTurn.from_dict(h) for h in history]
        return [t for t in turns[-limit:] if t.content.strip()]

    # ── Search / lifecycle ──────────────────────────────────────────────────

    def search(
        self,
        query: str,
        top_k: int = 10,
        file_types: Optional[Sequence[Union[FileType, str]]] = None,
        min_score: float = 0.6,
        filter: Optional[MetadataFilter] = None,
    ) -> List[QueryMatch]:
        """Ranked chunks for ``query`` scoring at least ``min_score``. Errors propagate."""
        query = (query or "").strip()
        if not query:
            raise ValidationError("Search query must not be empty")
        predicate = combine(file_type_filter(file_types), filter)
        vector = self.embedder.embed(query)
        matches = self.index.query(vector, top_k=top_k, filter=predicate)
        return [m for m in matches if m.score >= min_score]

    def remove(self, source_doc_id: str) -> DeleteResult:
        return self.index.delete_by_document(source_doc_id)

    def stats(self) -> KnowledgeBaseStats:
        return self.index.stats()

    def status(self) -> KnowledgeBaseStatus:
        stats = self.index.stats()
        return KnowledgeBaseStatus(stats=stats, summary=format_status_summary(stats))

    def close(self) -> None:
        self.index.close()


def build_coordinator(config: Settings, **index_kwargs: Any) -> RAGCoordinator:
    """Wire embedder, index, chat registry and chunker from settings."""
    embedder = build_embedder(config)
    index = build_vector_index(config, dimension=embedder.dimension, space=embedder.space, **index_kwargs)
    registry = build_chat_registry(config)
    return RAGCoordinator(
        index=index,
        embedder=embedder,
        registry=registry,
        chunker=Chunker(config.rag_chunk_size),
        default_options=AskOptions.from_settings(config),
        embed_concurrency=config.rag_embed_concurrency,
        excerpt_chars=config.rag_excerpt_chars,
        enrich_metadata=config.rag_enrich_metadata,
    )
