"""Indexing pipeline: documents -> chunks -> embeddings -> vector store."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from core.config import settings
from core.errors import IndexingFailed, InvalidInput
from core.models import (
    Chunk,
    ChunkPayload,
    Document,
    DocumentEmbeddingRequest,
    IndexedRecord,
    IndexingReport,
    make_record_id,
)
from ingestion.chunker import Chunker
from storage.vector_store import DEFAULT_METRIC

if TYPE_CHECKING:
    from ingestion.embedder import EmbeddingProvider
    from storage.vector_store import VectorStore

logger = logging.getLogger(__name__)


class IndexingPipeline:
    """Materializes the whole corpus into a freshly created collection.

    Each run drops and recreates the collection, so running it twice on the
    same corpus yields the same records. Document groups (course modules) are
    processed in parallel, bounded by `concurrency`.
    """

    def __init__(
        self,
        embedder: EmbeddingProvider,
        vector_store: VectorStore,
        chunker: Chunker | None = None,
        collection_name: str | None = None,
        concurrency: int | None = None,
    ):
        self.embedder = embedder
        self.vector_store = vector_store
        self.chunker = chunker or Chunker()
        self.collection_name = collection_name or settings.collection_name
        self.concurrency = concurrency or settings.index_concurrency

    def reindex(self, documents: list[Document]) -> IndexingReport:
        """Replace the collection's content with `documents`.

        Raises:
            InvalidInput: duplicate document ids
            IndexingFailed: any failure after the collection was touched
        """
        seen: set[str] = set()
        for doc in documents:
            if doc.id in seen:
                raise InvalidInput(f"Duplicate document id: {doc.id}")
            seen.add(doc.id)

        report = IndexingReport(collection_name=self.collection_name)
        indexed_at = datetime.now(timezone.utc).isoformat()

        try:
            self.vector_store.drop_collection(self.collection_name)
            self.vector_store.ensure_collection(
                self.collection_name, self.embedder.dimensions, DEFAULT_METRIC
            )

            groups: dict[str, list[Document]] = {}
            for doc in documents:
                groups.setdefault(doc.group_id, []).append(doc)

            with ThreadPoolExecutor(max_workers=self.concurrency) as executor:
                futures = [
                    executor.submit(self._index_group, group_docs, indexed_at)
                    for group_docs in groups.values()
                ]
                try:
                    for future in futures:
                        docs_done, chunks_done, warnings = future.result()
                        report.documents_processed += docs_done
                        report.chunks_indexed += chunks_done
                        report.warnings.extend(warnings)
                except Exception:
                    for future in futures:
                        future.cancel()
                    raise

        except Exception as e:
            logger.error(
                "Reindex of '%s' failed after %d documents: %s",
                self.collection_name,
                report.documents_processed,
                e,
            )
            raise IndexingFailed(f"Reindex failed: {e}", report) from e

        logger.info(
            "Indexed %d documents as %d chunks into '%s'",
            report.documents_processed,
            report.chunks_indexed,
            self.collection_name,
        )
        return report

    def _index_group(
        self, documents: list[Document], indexed_at: str
    ) -> tuple[int, int, list[str]]:
        """Chunk, embed and upsert one document group."""
        pending: list[tuple[Document, Chunk]] = []
        totals: dict[str, int] = {}
        warnings: list[str] = []
        for doc in documents:
            chunks = list(self.chunker.chunk(doc))
            totals[doc.id] = len(chunks)
            for chunk in chunks:
                if chunk.truncated:
                    warnings.append(f"{chunk.chunk_id}: hard-split oversized text")
                pending.append((doc, chunk))

        if not pending:
            return len(documents), 0, warnings

        texts = [f"{doc.title}\n\n{chunk.text}" for doc, chunk in pending]
        vectors = self.embedder.embed(DocumentEmbeddingRequest(texts=texts))

        records = [
            IndexedRecord(
                id=make_record_id(chunk.chunk_id),
                vector=vector,
                payload=ChunkPayload(
                    document_id=doc.id,
                    group_id=doc.group_id,
                    title=doc.title,
                    text=chunk.text,
                    chunk_ordinal=chunk.ordinal,
                    total_chunks=totals[doc.id],
                    chunk_id=chunk.chunk_id,
                    indexed_at=indexed_at,
                ),
            )
            for (doc, chunk), vector in zip(pending, vectors)
        ]
        self.vector_store.upsert(self.collection_name, records)
        logger.debug("Indexed group with %d documents, %d chunks", len(documents), len(records))
        return len(documents), len(records), warnings
