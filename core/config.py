"""Course assistant configuration via Pydantic settings."""

from pydantic import field_validator
from pydantic_settings import BaseSettings

from core.errors import ConfigurationError


class Settings(BaseSettings):
    # OpenAI (embeddings + generation)
    openai_api_key: str = ""
    openai_base_url: str = ""
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1024
    embedding_max_input_chars: int = 8000  # longer inputs are cut at the end
    embedding_batch_size: int = 96
    embedding_document_prefix: str = "search_document: "
    embedding_query_prefix: str = "search_query: "
    llm_model: str = "gpt-4o-mini"
    llm_temperature: float = 0.3
    llm_max_tokens: int = 1024

    # Vector store
    vector_backend: str = "neo4j"  # "neo4j" or "memory"
    neo4j_uri: str = "bolt://localhost:7687"
    neo4j_user: str = "neo4j"
    neo4j_password: str = ""
    collection_name: str = "course_content"
    upsert_batch_size: int = 64

    # Chunking (characters)
    chunk_size: int = 1000
    chunk_overlap_ratio: float = 0.0

    # Retrieval
    top_k: int = 5
    min_score: float = 0.7
    history_turns: int = 6
    context_char_budget: int = 6000

    # Indexing
    corpus_path: str = "data/course_content.json"
    index_concurrency: int = 4

    # Timeouts (seconds) and retry backoff
    embedding_timeout: float = 5.0
    search_timeout: float = 5.0
    generation_timeout: float = 30.0
    retry_backoff: float = 0.5
    request_timeout: float = 45.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @field_validator("chunk_overlap_ratio")
    @classmethod
    def _check_overlap(cls, value: float) -> float:
        if not 0.0 <= value < 0.5:
            raise ValueError("chunk_overlap_ratio must be in [0, 0.5)")
        return value

    @field_validator("index_concurrency")
    @classmethod
    def _check_concurrency(cls, value: int) -> int:
        if not 1 <= value <= 8:
            raise ValueError("index_concurrency must be between 1 and 8")
        return value

    @field_validator("embedding_batch_size")
    @classmethod
    def _check_batch(cls, value: int) -> int:
        if not 1 <= value <= 96:
            raise ValueError("embedding_batch_size must be between 1 and 96")
        return value

    @field_validator("vector_backend")
    @classmethod
    def _check_backend(cls, value: str) -> str:
        if value not in ("neo4j", "memory"):
            raise ValueError("vector_backend must be 'neo4j' or 'memory'")
        return value

    def missing_required(self) -> list[str]:
        """Names of credentials the pipelines cannot run without."""
        missing = []
        if not self.openai_api_key:
            missing.append("OPENAI_API_KEY")
        if self.vector_backend == "neo4j":
            if not self.neo4j_uri:
                missing.append("NEO4J_URI")
            if not self.neo4j_password:
                missing.append("NEO4J_PASSWORD")
        if not self.collection_name:
            missing.append("COLLECTION_NAME")
        return missing

    def require(self) -> None:
        """Fail at startup if any required setting is absent."""
        missing = self.missing_required()
        if missing:
            raise ConfigurationError(
                "Missing required configuration: " + ", ".join(missing)
            )


settings = Settings()
