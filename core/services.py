"""Process-wide clients, created once at startup and closed at shutdown."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from core.config import Settings, settings as default_settings

if TYPE_CHECKING:
    from generation.generator import AnswerGenerator
    from ingestion.embedder import EmbeddingProvider
    from ingestion.pipeline import IndexingPipeline
    from retrieval.retriever import RetrievalPipeline
    from storage.vector_store import VectorStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Shared embedding, store and generation clients plus the pipelines."""

    embedder: EmbeddingProvider
    vector_store: VectorStore
    generator: AnswerGenerator
    indexing: IndexingPipeline
    retrieval: RetrievalPipeline

    @classmethod
    def init(cls, config: Settings | None = None) -> Services:
        """Validate configuration and build every client.

        Raises:
            ConfigurationError: a required credential is missing
        """
        from generation.generator import AnswerGenerator
        from ingestion.embedder import EmbeddingProvider, create_openai_client
        from ingestion.pipeline import IndexingPipeline
        from retrieval.retriever import RetrievalPipeline

        config = config or default_settings
        config.require()

        client = create_openai_client()
        if config.vector_backend == "memory":
            from storage.memory_store import InMemoryVectorStore

            store = InMemoryVectorStore()
        else:
            from storage.vector_store import VectorStore

            store = VectorStore()

        embedder = EmbeddingProvider(client)
        generator = AnswerGenerator(client)
        logger.info(
            "Services ready (backend=%s, collection=%s)",
            config.vector_backend,
            config.collection_name,
        )
        return cls(
            embedder=embedder,
            vector_store=store,
            generator=generator,
            indexing=IndexingPipeline(embedder, store, collection_name=config.collection_name),
            retrieval=RetrievalPipeline(
                embedder, store, generator, collection_name=config.collection_name
            ),
        )

    def close(self) -> None:
        self.vector_store.close()
        self.embedder.openai_client.close()
        logger.info("Services closed")
