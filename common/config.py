from pydantic_settings import BaseSettings
from typing import List


EMBEDDING_STRATEGIES = ("auto", "remote", "local")


class Settings(BaseSettings):
    """Application settings."""

    # API Keys
    openai_api_key: str = ""
    openai_base_url: str = ""
    anthropic_api_key: str = ""
    anthropic_base_url: str = "https://api.anthropic.com"
    anthropic_version: str = "2023-06-01"
    gemini_api_key: str = ""
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    qwen_api_key: str = ""  # DashScope API key
    qwen_base_url: str = "https://dashscope.aliyuncs.com"

    # App Config
    debug: bool = False
    cors_origins: str = "http://localhost:3000"
    enable_prometheus: bool = False

    # Logging Config
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file: str = "logs/bridge_rag.log"  # Log file path
    log_max_bytes: int = 10485760  # 10MB
    log_backup_count: int = 5  # Keep 5 backup files
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
    enable_file_logging: bool = True  # Enable logging to file
    enable_json_logging: bool = False  # Enable structured JSON logging

    # Chat Model Config
    default_chat_provider: str = "gpt"
    chat_providers: str = "gpt,claude,gemini,qwen"  # comma-separated registry ids
    openai_chat_model: str = "gpt-4o-mini"
    anthropic_chat_model: str = "claude-3-5-sonnet-20241022"
    gemini_chat_model: str = "gemini-2.5-flash"
    qwen_chat_model: str = "qwen2.5-72b-instruct"
    chat_temperature: float = 0.7
    chat_max_tokens: int = 2000
    chat_top_p: float = 0.9
    provider_timeout: float = 60.0  # seconds, per outbound HTTP call

    # Embeddings
    embedding_strategy: str = "auto"  # auto | remote | local
    embedding_model: str = "text-embedding-3-small"
    embedding_dim: int = 1536

    # Vector index
    vector_backend: str = "memory"  # memory | pinecone | chroma
    pinecone_api_key: str = ""
    pinecone_index_url: str = ""  # https://<index>-<project>.svc.<env>.pinecone.io
    pinecone_namespace: str = ""
    rag_collection_name: str = "bridge_knowledge"
    chroma_host: str = ""
    chroma_port: int = 8000
    chroma_persist_directory: str = ""

    # RAG
    rag_chunk_size: int = 1000
    rag_top_k: int = 5
    rag_min_relevance: float = 0.7
    rag_history_turns: int = 6
    rag_excerpt_chars: int = 300
    rag_embed_concurrency: int = 4
    rag_enrich_metadata: bool = True  # bridge terms, content type, addedToKB
    rag_search_top_k: int = 10
    rag_search_min_score: float = 0.6

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins string into list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def chat_providers_list(self) -> List[str]:
        """Parse chat_providers into registry ids, lower-cased and de-duplicated."""
        seen: List[str] = []
        for raw in self.chat_providers.split(","):
            name = raw.strip().lower()
            if name and name not in seen:
                seen.append(name)
        return seen

    @property
    def embedding_strategy_normalized(self) -> str:
        value = (self.embedding_strategy or "").strip().lower()
        return value if value in EMBEDDING_STRATEGIES else "auto"


settings = Settings()
