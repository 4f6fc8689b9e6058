"""In-process vector store with the same contract as the Neo4j store."""

from __future__ import annotations

import logging
import threading

import numpy as np

from core.config import settings
from core.errors import CollectionNotFound, DimensionMismatch
from core.fallback import Deadline
from core.models import IndexedRecord, SearchHit
from storage.vector_store import DEFAULT_METRIC, validate_collection_name

logger = logging.getLogger(__name__)


class _Collection:
    def __init__(self, dimension: int, metric: str):
        self.dimension = dimension
        self.metric = metric
        self.records: dict[int, IndexedRecord] = {}


class InMemoryVectorStore:
    """Cosine-similarity store kept in process memory (numpy brute force).

    Used for local development without Neo4j and for end-to-end tests.
    """

    def __init__(self):
        self._collections: dict[str, _Collection] = {}
        self._lock = threading.Lock()

    def close(self) -> None:
        pass

    def collection_exists(self, name: str) -> bool:
        return validate_collection_name(name) in self._collections

    def ensure_collection(self, name: str, dimension: int, metric: str = DEFAULT_METRIC) -> bool:
        validate_collection_name(name)
        if dimension <= 0:
            raise DimensionMismatch(f"Invalid vector dimension: {dimension}")
        metric = metric.lower()
        with self._lock:
            existing = self._collections.get(name)
            if existing is not None and (existing.dimension, existing.metric) == (dimension, metric):
                return False
            if existing is not None:
                logger.warning(
                    "Collection '%s' is (%d, %s), expected (%d, %s); recreating",
                    name, existing.dimension, existing.metric, dimension, metric,
                )
            self._collections[name] = _Collection(dimension, metric)
        logger.info("Collection '%s' created (%d dims, %s)", name, dimension, metric)
        return True

    def drop_collection(self, name: str) -> int:
        validate_collection_name(name)
        with self._lock:
            collection = self._collections.pop(name, None)
        return len(collection.records) if collection else 0

    def _get(self, name: str) -> _Collection:
        collection = self._collections.get(validate_collection_name(name))
        if collection is None:
            raise CollectionNotFound(f"Collection '{name}' does not exist; run indexing first")
        return collection

    def upsert(self, name: str, records: list[IndexedRecord], batch_size: int | None = None) -> int:
        if not records:
            return 0
        with self._lock:
            collection = self._get(name)
            for record in records:
                if len(record.vector) != collection.dimension:
                    raise DimensionMismatch(
                        f"Record {record.id} has {len(record.vector)} dimensions, "
                        f"collection '{name}' expects {collection.dimension}"
                    )
            for record in records:
                collection.records[record.id] = record
        logger.info("Upserted %d records into '%s'", len(records), name)
        return len(records)

    def search(
        self,
        name: str,
        query_vector: list[float],
        top_k: int | None = None,
        min_score: float | None = None,
        deadline: Deadline | None = None,
        document_id: str | None = None,
        group_id: str | None = None,
    ) -> list[SearchHit]:
        if top_k is None:
            top_k = settings.top_k
        if min_score is None:
            min_score = settings.min_score

        with self._lock:
            collection = self._get(name)
            records = list(collection.records.values())
        if len(query_vector) != collection.dimension:
            raise DimensionMismatch(
                f"Query vector has {len(query_vector)} dimensions, "
                f"collection '{name}' expects {collection.dimension}"
            )
        if document_id is not None:
            records = [r for r in records if r.payload.document_id == document_id]
        if group_id is not None:
            records = [r for r in records if r.payload.group_id == group_id]
        if not records or top_k <= 0:
            return []

        query = np.asarray(query_vector, dtype=float)
        matrix = np.asarray([r.vector for r in records], dtype=float)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = np.where(norms > 0, matrix @ query / norms, 0.0)

        order = np.argsort(-scores, kind="stable")
        hits = []
        for i in order:
            score = float(scores[i])
            if score < min_score:
                break
            hits.append(SearchHit(id=records[i].id, score=score, payload=records[i].payload))
            if len(hits) == top_k:
                break
        return hits

    def count(self, name: str) -> int:
        return len(self._get(name).records)
