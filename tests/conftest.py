import os
from typing import List, Sequence

import pytest

pytest_plugins = ["pytest_asyncio"]

# Keep tests offline and independent of a local .env
os.environ.setdefault("ENABLE_FILE_LOGGING", "false")
os.environ.setdefault("VECTOR_BACKEND", "memory")
os.environ.setdefault("EMBEDDING_STRATEGY", "local")
os.environ.setdefault("EMBEDDING_DIM", "256")
os.environ.setdefault("OPENAI_API_KEY", "")

from llm.base import ChatProvider, ChatResponse, ConversationTurn, TokenUsage  # noqa: E402
from llm.registry import ChatProviderRegistry  # noqa: E402
from rag.chunker import Chunker  # noqa: E402
from rag.coordinator import AskOptions, RAGCoordinator  # noqa: E402
from rag.embedder import HashEmbedder  # noqa: E402
from rag.vector_store import LocalVectorIndex  # noqa: E402


class RecordingChatProvider(ChatProvider):
    """Chat double that records every conversation it receives."""

    provider_id = "fake"
    display_name = "Recording fake"

    def __init__(self, answer: str = "stub answer", error: Exception = None):
        super().__init__(api_key="fake-key-0123456789", model="fake-model", base_url="")
        self.answer = answer
        self.error = error
        self.calls: List[List[ConversationTurn]] = []

    def chat(self, messages: Sequence[ConversationTurn]) -> ChatResponse:
        self.calls.append(list(messages))
        if self.error is not None:
            raise self.error
        return ChatResponse(
            text=self.answer,
            usage=TokenUsage(prompt=10, completion=5, total=15),
            model=self.model,
            provider_id=self.provider_id,
        )

    def build_request(self, messages):
        raise NotImplementedError

    def parse_response(self, data):
        raise NotImplementedError

    @property
    def last_prompt(self) -> str:
        return self.calls[-1][-1].content


@pytest.fixture
def chat_provider():
    return RecordingChatProvider()


@pytest.fixture
def make_provider():
    return RecordingChatProvider


@pytest.fixture
def make_coordinator():
    def factory(provider=None, dimension: int = 256, **kwargs) -> RAGCoordinator:
        embedder = HashEmbedder(dimension=dimension)
        index = LocalVectorIndex(dimension, space=embedder.space)
        registry = ChatProviderRegistry([provider or RecordingChatProvider()], default_id="fake")
        kwargs.setdefault("default_options", AskOptions())
        return RAGCoordinator(index, embedder, registry, chunker=Chunker(1000), **kwargs)

    return factory
