import pytest


def test_settings_allows_missing_credentials(monkeypatch):
    """Settings should be constructible without any vendor key."""
    # Avoid relying on a local .env file in unit tests.
    for name in ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GEMINI_API_KEY", "QWEN_API_KEY", "PINECONE_API_KEY"):
        monkeypatch.delenv(name, raising=False)

    from common.config import Settings

    s = Settings(_env_file=None)
    assert s.openai_api_key == ""
    assert s.pinecone_api_key == ""


def test_rag_defaults(monkeypatch):
    for name in ("RAG_TOP_K", "RAG_MIN_RELEVANCE", "RAG_HISTORY_TURNS", "RAG_CHUNK_SIZE"):
        monkeypatch.delenv(name, raising=False)

    from common.config import Settings

    s = Settings(_env_file=None)
    assert s.rag_top_k == 5
    assert s.rag_min_relevance == 0.7
    assert s.rag_history_turns == 6
    assert s.rag_chunk_size == 1000
    assert s.rag_excerpt_chars == 300
    assert s.rag_search_top_k == 10
    assert s.rag_search_min_score == 0.6


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("VECTOR_BACKEND", "pinecone")
    monkeypatch.setenv("RAG_TOP_K", "8")

    from common.config import Settings

    s = Settings(_env_file=None)
    assert s.vector_backend == "pinecone"
    assert s.rag_top_k == 8


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("", []),
        ("gpt", ["gpt"]),
        (" GPT, ,claude , gpt", ["gpt", "claude"]),
    ],
)
def test_chat_providers_list_strips_lowercases_and_dedupes(raw, expected):
    from common.config import Settings

    s = Settings(_env_file=None, chat_providers=raw)
    assert s.chat_providers_list == expected


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("", []),
        ("http://localhost:3000", ["http://localhost:3000"]),
        (" http://a.test, ,http://b.test ", ["http://a.test", "http://b.test"]),
    ],
)
def test_cors_origins_list(raw, expected):
    from common.config import Settings

    s = Settings(_env_file=None, cors_origins=raw)
    assert s.cors_origins_list == expected


@pytest.mark.parametrize(
    "raw,expected",
    [("auto", "auto"), ("LOCAL", "local"), (" remote ", "remote"), ("mock", "auto"), ("", "auto")],
)
def test_embedding_strategy_normalized(raw, expected):
    from common.config import Settings

    s = Settings(_env_file=None, embedding_strategy=raw)
    assert s.embedding_strategy_normalized == expected
