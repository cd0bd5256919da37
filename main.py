from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field
from typing import List, Dict, Any, Optional, Union
import asyncio
import contextvars
import functools
import uuid
from datetime import datetime
import time
from contextlib import asynccontextmanager

from common.config import settings
from common.logger import setup_logging, get_logger, LogContext
from llm.base import ConversationTurn
from rag.coordinator import AskOptions, RAGCoordinator, build_coordinator
from rag.errors import ConfigurationError, MalformedResponse, ProviderFailure, RAGError, ValidationError
from rag.filters import from_mapping
from prometheus_client import (
    Counter,
    Gauge,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY,
)


# Initialize logging
setup_logging()
logger = get_logger(__name__)

APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    if getattr(app.state, "coordinator", None) is None:
        app.state.coordinator = build_coordinator(settings)
    logger.info("BridgeRAG API started")
    try:
        yield
    finally:
        # Shutdown
        coordinator = getattr(app.state, "coordinator", None)
        if coordinator is not None:
            coordinator.close()
        logger.info("BridgeRAG API stopped")


# Initialize FastAPI app
app = FastAPI(
    title="BridgeRAG API",
    description="Retrieval-augmented Q&A over bridge engineering documents",
    version=APP_VERSION,
    lifespan=lifespan,
)


# Prometheus metrics (optional, made idempotent to survive double imports under reload)
def _get_or_create_counter(name: str, *args, **kwargs):
    existing = REGISTRY._names_to_collectors.get(name)  # type: ignore[attr-defined]
    if existing:
        return existing
    return Counter(name, *args, **kwargs)


def _get_or_create_gauge(name: str, *args, **kwargs):
    existing = REGISTRY._names_to_collectors.get(name)  # type: ignore[attr-defined]
    if existing:
        return existing
    return Gauge(name, *args, **kwargs)


http_requests_total = (
    _get_or_create_counter("bridge_rag_http_requests_total", "Total HTTP requests", ["method", "path", "status"])
    if settings.enable_prometheus
    else None
)
http_inprogress = (
    _get_or_create_gauge("bridge_rag_http_inprogress", "In-flight HTTP requests")
    if settings.enable_prometheus
    else None
)
rag_answers_total = (
    _get_or_create_counter("bridge_rag_answers_total", "Answers by retrieval path", ["path", "provider"])
    if settings.enable_prometheus
    else None
)
rag_chunks_ingested_total = (
    _get_or_create_counter("bridge_rag_chunks_ingested_total", "Ingested chunks by outcome", ["outcome"])
    if settings.enable_prometheus
    else None
)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests with timing information."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]
    start_time = time.time()

    if http_inprogress:
        http_inprogress.inc()

    with LogContext(request_id=request_id):
        logger.info(
            f"Request started | {request.method} {request.url.path} | "
            f"ID: {request_id} | Client: {request.client.host if request.client else 'unknown'}"
        )

        try:
            response = await call_next(request)
            duration = time.time() - start_time

            logger.info(
                f"Request completed | {request.method} {request.url.path} | "
                f"ID: {request_id} | Status: {response.status_code} | "
                f"Duration: {duration:.3f}s"
            )
            if http_requests_total:
                http_requests_total.labels(request.method, request.url.path, response.status_code).inc()

            response.headers["X-Request-ID"] = request_id
            return response
        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                f"Request failed | {request.method} {request.url.path} | "
                f"ID: {request_id} | Duration: {duration:.3f}s | Error: {str(e)}",
                exc_info=True
            )
            if http_requests_total:
                http_requests_total.labels(request.method, request.url.path, 500).inc()
            raise
        finally:
            if http_inprogress:
                http_inprogress.dec()

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== Error mapping ====================

def _error_status(error: RAGError) -> int:
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, ConfigurationError):
        return 503
    if isinstance(error, (ProviderFailure, MalformedResponse)):
        return 502
    return 500


def _error_body(error: RAGError) -> Dict[str, Any]:
    return {
        "success": False,
        "error": getattr(error, "message", None) or str(error),
        "provider": getattr(error, "provider", None),
        "quotaExceeded": bool(getattr(error, "quota_exceeded", False)),
    }


@app.exception_handler(RAGError)
async def rag_error_handler(request: Request, exc: RAGError):
    status = _error_status(exc)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc}")
    return JSONResponse(status_code=status, content=_error_body(exc))


def get_coordinator() -> RAGCoordinator:
    """The service context built at startup (built lazily when lifespan did not run)."""
    coordinator = getattr(app.state, "coordinator", None)
    if coordinator is None:
        coordinator = build_coordinator(settings)
        app.state.coordinator = coordinator
    return coordinator


async def _run_blocking(func, *args, **kwargs):
    # Engine calls block on HTTP and locks; keep them off the event loop
    # the copied context carries LogContext fields into the worker thread
    context = contextvars.copy_context()
    call = functools.partial(context.run, func, *args, **kwargs)
    return await asyncio.get_event_loop().run_in_executor(None, call)


# ==================== Request models ====================

class Message(BaseModel):
    role: str
    content: str


class DocumentIngestRequest(BaseModel):
    source_doc_id: str
    file_name: str
    file_type: str = "document"
    text: str
    metadata: Optional[Dict[str, Union[str, int, float, bool, List[Union[str, int, float, bool]]]]] = None


class SearchRequest(BaseModel):
    query: str
    top_k: int = Field(default_factory=lambda: settings.rag_search_top_k)
    file_types: Optional[List[str]] = None
    min_score: float = Field(default_factory=lambda: settings.rag_search_min_score)
    filter: Optional[Dict[str, Any]] = None


class AskRequest(BaseModel):
    question: str
    provider: Optional[str] = None
    history: List[Message] = []
    top_k: Optional[int] = None
    min_relevance: Optional[float] = None
    file_types: Optional[List[str]] = None
    filter: Optional[Dict[str, Any]] = None


# ==================== Routes ====================

@app.get("/")
async def root():
    return {
        "name": "BridgeRAG API",
        "status": "running",
        "version": APP_VERSION
    }


@app.get("/health")
async def health():
    """Detailed health check."""
    coordinator = getattr(app.state, "coordinator", None)
    return {
        "status": "healthy",
        "embedding_strategy": coordinator.embedder.strategy if coordinator else "not initialized",
        "vector_backend": coordinator.index.backend if coordinator else settings.vector_backend,
        "timestamp": datetime.now().isoformat()
    }


@app.post("/api/knowledge/documents")
async def ingest_document(payload: DocumentIngestRequest):
    """Chunk, embed and index one extracted document."""
    coordinator = get_coordinator()
    with LogContext(source_doc_id=payload.source_doc_id):
        result = await _run_blocking(
            coordinator.ingest,
            payload.source_doc_id,
            payload.file_name,
            payload.file_type,
            payload.text,
            payload.metadata,
        )
    if rag_chunks_ingested_total:
        rag_chunks_ingested_total.labels("stored").inc(result.chunks_stored)
        rag_chunks_ingested_total.labels("failed").inc(result.chunks_failed)
    return {"success": True, **result.to_dict()}


@app.delete("/api/knowledge/documents/{source_doc_id}")
async def delete_document(source_doc_id: str):
    coordinator = get_coordinator()
    result = await _run_blocking(coordinator.remove, source_doc_id)
    return {"success": True, "sourceDocId": source_doc_id, "deletedCount": result.deleted_count}


@app.post("/api/knowledge/search")
async def search_knowledge(payload: SearchRequest):
    coordinator = get_coordinator()
    matches = await _run_blocking(
        coordinator.search,
        payload.query,
        top_k=payload.top_k,
        file_types=payload.file_types,
        min_score=payload.min_score,
        filter=from_mapping(payload.filter),
    )
    return {
        "success": True,
        "matches": [
            {
                "id": m.id,
                "score": m.score,
                "content": m.chunk.text,
                "sourceDocId": m.chunk.source_doc_id,
                "fileName": m.chunk.file_name,
                "fileType": m.chunk.file_type.value,
                "chunkIndex": m.chunk.chunk_index,
                "metadata": m.chunk.metadata,
            }
            for m in matches
        ],
    }


@app.get("/api/knowledge/status")
async def knowledge_status():
    coordinator = get_coordinator()
    status = await _run_blocking(coordinator.status)
    return status.to_dict()


@app.post("/api/chat")
async def chat(payload: AskRequest):
    """
    Answer a question over the knowledge base.

    A degraded answer (nothing relevant retrieved) is still a success with
    empty sources; a generation failure returns the structured error body.
    """
    coordinator = get_coordinator()
    defaults = coordinator.default_options
    options = AskOptions(
        top_k=payload.top_k if payload.top_k is not None else defaults.top_k,
        min_relevance=payload.min_relevance if payload.min_relevance is not None else defaults.min_relevance,
        history_turns=defaults.history_turns,
        file_types=payload.file_types,
        filter=from_mapping(payload.filter),
    )
    history = [ConversationTurn.from_dict(m.model_dump()) for m in payload.history]

    try:
        answer = await _run_blocking(
            coordinator.ask,
            payload.question,
            provider_id=payload.provider,
            history=history,
            options=options,
        )
    except (ProviderFailure, MalformedResponse, ConfigurationError):
        if rag_answers_total:
            rag_answers_total.labels("failed", payload.provider or "default").inc()
        raise

    if rag_answers_total:
        rag_answers_total.labels("grounded" if answer.grounded else "fallback", answer.provider_id).inc()
    return answer.to_dict()


@app.get("/api/providers")
async def list_providers():
    coordinator = get_coordinator()
    return {
        "providers": coordinator.registry.describe(),
        "available": coordinator.registry.available(),
        "default": coordinator.registry.default_id,
    }


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint (enable with ENABLE_PROMETHEUS=true)."""
    if not settings.enable_prometheus:
        raise HTTPException(status_code=404, detail="Prometheus not enabled")
    data = generate_latest()
    return StreamingResponse(iter([data]), media_type=CONTENT_TYPE_LATEST)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level="info"
    )
