"""
Text Embedders for the RAG Pipeline.

Two interchangeable strategies behind one interface:
- RemoteEmbedder: OpenAI (or compatible) embeddings API
- HashEmbedder: deterministic local vectors from hashed tokens

One index must only ever see vectors from one strategy; ``space``
identifies the embedding space so mismatches can be refused.
"""

import hashlib
import logging
import re
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Any, List, Optional

import numpy as np
import openai
from openai import OpenAI

from common.config import Settings
from common.http_utils import is_valid_api_key, sanitize_error_message
from rag.errors import ConfigurationError, MalformedResponse, ProviderFailure, ValidationError

logger = logging.getLogger(__name__)

QUOTA_ERROR_CODES = {"insufficient_quota", "quota_exceeded", "billing_hard_limit_reached"}

# latin words and numbers, or single CJK ideographs
TOKEN_PATTERN = re.compile(r"[a-z0-9]+(?:[.\-][a-z0-9]+)*|[\u4e00-\u9fff]")


class EmbeddingProvider(ABC):
    """Abstract interface for text -> embedding vector conversion."""

    strategy: str = ""

    def __init__(self, dimension: int):
        if int(dimension) < 1:
            raise ValueError(f"Embedding dimension must be positive, got {dimension}")
        self._dimension = int(dimension)

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    @abstractmethod
    def space(self) -> str:
        """Identifier of the embedding space (strategy, model and dimension)."""

    @abstractmethod
    def embed(self, text: str) -> List[float]:
        """Embed one text into a ``dimension``-long vector."""


class HashEmbedder(EmbeddingProvider):
    """
    Deterministic, offline embedder based on feature hashing.

    Every word token (lower-cased, crude plural folding, CJK characters taken
    one by one) is hashed with SHA-256; the digest seeds a PCG64 generator
    that draws D standard-normal values. The text vector is the sum of its
    token vectors plus one vector seeded by the whole text, L2-normalised.

    Identical text always yields a bit-identical unit vector, texts sharing
    vocabulary get positive cosine similarity, and reordering words still
    changes the vector. Never fails and needs no network.
    """

    strategy = "local"

    def __init__(self, dimension: int = 1536):
        super().__init__(dimension)

    @property
    def space(self) -> str:
        return f"local-hash:{self.dimension}"

    def embed(self, text: str) -> List[float]:
        text = text or ""
        vector = _seeded_vector(b"text:" + text.encode("utf-8"), self.dimension)
        for token in tokenize(text):
            vector += _token_vector(token, self.dimension)
        norm = np.linalg.norm(vector)
        if norm == 0:
            vector = np.ones(self.dimension)
            norm = np.linalg.norm(vector)
        return (vector / norm).tolist()


def tokenize(text: str) -> List[str]:
    return [_fold_plural(t) for t in TOKEN_PATTERN.findall((text or "").lower())]


def _fold_plural(token: str) -> str:
    if len(token) > 4 and token.endswith("ies"):
        return token[:-3] + "y"
    if len(token) > 3 and token.endswith("s") and not token.endswith("ss"):
        return token[:-1]
    return token


def _seeded_vector(key: bytes, dimension: int) -> np.ndarray:
    seed = int.from_bytes(hashlib.sha256(key).digest(), "big")
    rng = np.random.Generator(np.random.PCG64(seed))
    return rng.standard_normal(dimension)


# float32 keeps the cache near 25 MB at 1536 dims
@lru_cache(maxsize=4096)
def _token_vector(token: str, dimension: int) -> np.ndarray:
    vector = _seeded_vector(b"tok:" + token.encode("utf-8"), dimension).astype(np.float32)
    vector.flags.writeable = False
    return vector


class RemoteEmbedder(EmbeddingProvider):
    """
    Generate text embeddings using the OpenAI embeddings API.

    Supports OpenAI and compatible APIs via ``base_url``.
    """

    strategy = "remote"
    provider_name = "openai-embeddings"

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        dimension: int = 1536,
        timeout: float = 60.0,
        client: Optional[Any] = None,
    ):
        """
        Initialize the embedder.

        Args:
            model: Embedding model name
            api_key: API key; without one every call raises ConfigurationError
            base_url: Custom API base URL
            dimension: Expected (and requested) output dimension
            timeout: Per-request timeout in seconds
            client: Pre-built client exposing ``embeddings.create`` (tests)
        """
        super().__init__(dimension)
        self.model = model
        self.api_key = (api_key or "").strip()
        self.client = client
        if self.client is None and self.api_key:
            client_kwargs = {"api_key": self.api_key, "timeout": timeout}
            if base_url:
                client_kwargs["base_url"] = base_url
            self.client = OpenAI(**client_kwargs)

    @property
    def space(self) -> str:
        return f"remote:{self.model}:{self.dimension}"

    def embed(self, text: str) -> List[float]:
        if self.client is None:
            raise ConfigurationError("OpenAI API key is not configured; cannot create embeddings")

        kwargs = {"model": self.model, "input": text, "encoding_format": "float"}
        # only the text-embedding-3 family accepts a custom dimension
        if self.model.startswith("text-embedding-3"):
            kwargs["dimensions"] = self.dimension

        try:
            response = self.client.embeddings.create(**kwargs)
        except openai.APIStatusError as e:
            code = str(getattr(e, "code", "") or "").lower()
            raise ProviderFailure(
                self.provider_name,
                sanitize_error_message(getattr(e, "message", None) or e),
                status_code=e.status_code,
                quota_exceeded=e.status_code == 429 or code in QUOTA_ERROR_CODES,
            ) from e
        except openai.APIError as e:
            raise ProviderFailure(self.provider_name, sanitize_error_message(e)) from e

        try:
            vector = list(response.data[0].embedding)
        except (AttributeError, IndexError, TypeError) as e:
            raise MalformedResponse(self.provider_name, "embedding missing from response") from e

        if len(vector) != self.dimension:
            raise ValidationError(
                f"Embedding model {self.model} returned {len(vector)} dims, index expects {self.dimension}"
            )
        return vector


def build_embedder(config: Settings) -> EmbeddingProvider:
    """
    Create the embedding strategy for an index from configuration.

    ``auto`` picks the remote strategy when an OpenAI key is configured and
    the local hash strategy otherwise. The choice is logged and exposed via
    ``embedder.strategy`` so it can be asserted on.
    """
    strategy = config.embedding_strategy_normalized
    has_key = is_valid_api_key(config.openai_api_key)

    if strategy == "auto":
        strategy = "remote" if has_key else "local"
        if strategy == "local":
            logger.warning(
                "No OpenAI API key configured; using local hash embeddings "
                "(deterministic, not semantic)"
            )

    if strategy == "remote":
        if not has_key:
            logger.warning("Remote embeddings selected but no valid OpenAI API key is configured")
        embedder: EmbeddingProvider = RemoteEmbedder(
            model=config.embedding_model,
            api_key=config.openai_api_key if has_key else None,
            base_url=config.openai_base_url or None,
            dimension=config.embedding_dim,
            timeout=config.provider_timeout,
        )
    else:
        embedder = HashEmbedder(dimension=config.embedding_dim)

    logger.info(f"Embedding strategy: {embedder.strategy} ({embedder.space})")
    return embedder
