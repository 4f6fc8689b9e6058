"""Neo4j vector index store: one index + node label per collection."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

import neo4j
from neo4j.exceptions import (
    ClientError,
    DriverError,
    Neo4jError,
    ServiceUnavailable,
    SessionExpired,
    TransientError,
)
from pydantic import ValidationError

from core.config import settings
from core.errors import (
    CollectionNotFound,
    DimensionMismatch,
    InvalidInput,
    RAGError,
    StoreUnavailable,
)
from core.fallback import Deadline, FallbackPolicy
from core.models import ChunkPayload, IndexedRecord, SearchHit

if TYPE_CHECKING:
    from neo4j import Driver

logger = logging.getLogger(__name__)

EMBEDDING_PROPERTY = "embedding"
DEFAULT_METRIC = "cosine"
_COLLECTION_NAME = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")
_PAYLOAD_FIELDS = (
    "chunkId", "lessonId", "moduleId", "title", "content", "chunkIndex", "totalChunks", "createdAt",
)
# queryNodes ranks before WHERE filters apply, so filtered searches over-fetch.
FILTER_OVERSAMPLE = 4


def node_label(collection: str) -> str:
    """Node label backing a collection: course_content -> CourseContent."""
    return "".join(part[:1].upper() + part[1:] for part in collection.split("_") if part)


def validate_collection_name(name: str) -> str:
    if not _COLLECTION_NAME.match(name or ""):
        raise InvalidInput(f"Invalid collection name: {name!r}")
    return name


def translate_neo4j_error(exc: Exception) -> RAGError:
    """Map a Neo4j driver exception onto the pipeline error taxonomy."""
    if isinstance(exc, (ServiceUnavailable, SessionExpired, TransientError)):
        return StoreUnavailable(f"Neo4j unavailable: {exc}")
    if isinstance(exc, ClientError):
        code = getattr(exc, "code", "") or ""
        message = getattr(exc, "message", "") or str(exc)
        if "TransactionTimedOut" in code:
            return StoreUnavailable(f"Neo4j query timed out: {message}")
        if "no such vector schema index" in message.lower():
            return CollectionNotFound(message)
    if isinstance(exc, DriverError):
        return StoreUnavailable(f"Neo4j driver error: {exc}")
    return RAGError(f"Neo4j error: {exc}")


class VectorStore:
    """Neo4j-backed vector store with cosine similarity search.

    Neo4j reports cosine scores normalised to [0, 1]; they are converted
    back to cosine similarity in [-1, 1] on the way in and out.
    """

    def __init__(self, driver: Driver | None = None, policy: FallbackPolicy | None = None):
        if driver is None:
            from neo4j import GraphDatabase

            self._driver = GraphDatabase.driver(
                settings.neo4j_uri,
                auth=(settings.neo4j_user, settings.neo4j_password),
                connection_timeout=settings.search_timeout,
            )
        else:
            self._driver = driver
        self.policy = policy or FallbackPolicy(
            timeout=settings.search_timeout, backoff=settings.retry_backoff
        )

    def close(self) -> None:
        self._driver.close()

    def _run(self, operation: str, cypher: str, deadline: Deadline | None = None, **params):
        """Run one auto-commit query under the fallback policy, return records."""

        def attempt(timeout: float) -> list:
            try:
                with self._driver.session() as session:
                    result = session.run(neo4j.Query(cypher, timeout=timeout), **params)
                    return list(result)
            except (Neo4jError, DriverError) as e:
                raise translate_neo4j_error(e) from e

        return self.policy.call(operation, attempt, deadline)

    def _index_config(self, name: str, deadline: Deadline | None = None) -> tuple[int, str] | None:
        """(dimension, similarity) of the collection's index, None if absent."""
        records = self._run(
            "describe_collection",
            "SHOW VECTOR INDEXES YIELD name, options WHERE name = $name RETURN options",
            deadline,
            name=name,
        )
        if not records:
            return None
        config = (records[0]["options"] or {}).get("indexConfig", {})
        return (
            int(config.get("vector.dimensions", 0)),
            str(config.get("vector.similarity_function", "")).lower(),
        )

    def collection_exists(self, name: str) -> bool:
        return self._index_config(validate_collection_name(name)) is not None

    def ensure_collection(self, name: str, dimension: int, metric: str = DEFAULT_METRIC) -> bool:
        """Make the collection match (dimension, metric). Returns True if created.

        A collection with a different dimension or metric is dropped and
        recreated; it is never migrated in place.
        """
        validate_collection_name(name)
        if dimension <= 0:
            raise DimensionMismatch(f"Invalid vector dimension: {dimension}")
        metric = metric.lower()

        existing = self._index_config(name)
        if existing == (dimension, metric):
            logger.debug("Collection '%s' already matches (%d, %s)", name, dimension, metric)
            return False
        if existing is not None:
            logger.warning(
                "Collection '%s' is (%d, %s), expected (%d, %s); recreating",
                name, existing[0], existing[1], dimension, metric,
            )
            self.drop_collection(name)

        label = node_label(name)
        self._run(
            "create_collection",
            f"""
            CREATE VECTOR INDEX `{name}` IF NOT EXISTS
            FOR (n:`{label}`)
            ON (n.{EMBEDDING_PROPERTY})
            OPTIONS {{
                indexConfig: {{
                    `vector.dimensions`: $dimensions,
                    `vector.similarity_function`: $similarity
                }}
            }}
            """,
            dimensions=dimension,
            similarity=metric,
        )
        self._run("await_collection", "CALL db.awaitIndex($name, 300)", name=name)
        logger.info("Collection '%s' created (%d dims, %s)", name, dimension, metric)
        return True

    def drop_collection(self, name: str) -> int:
        """Delete the index and every record of the collection. Returns count deleted."""
        validate_collection_name(name)
        self._run("drop_index", f"DROP INDEX `{name}` IF EXISTS")
        records = self._run(
            "drop_records",
            f"""
            MATCH (c:`{node_label(name)}`)
            WITH c, count(c) AS total
            DETACH DELETE c
            RETURN total
            """,
        )
        count = sum(r["total"] for r in records)
        logger.info("Dropped collection '%s' (%d records)", name, count)
        return count

    def upsert(self, name: str, records: list[IndexedRecord], batch_size: int | None = None) -> int:
        """Insert or overwrite records by id, in batches. Returns count written."""
        validate_collection_name(name)
        if not records:
            return 0
        if batch_size is None:
            batch_size = settings.upsert_batch_size

        config = self._index_config(name)
        if config is None:
            raise CollectionNotFound(f"Collection '{name}' does not exist")
        dimension = config[0]
        for record in records:
            if len(record.vector) != dimension:
                raise DimensionMismatch(
                    f"Record {record.id} has {len(record.vector)} dimensions, "
                    f"collection '{name}' expects {dimension}"
                )

        cypher = f"""
            UNWIND $rows AS row
            MERGE (c:`{node_label(name)}` {{id: row.id}})
            SET c += row.payload,
                c.{EMBEDDING_PROPERTY} = row.vector
            """
        for start in range(0, len(records), batch_size):
            batch = records[start : start + batch_size]
            rows = [
                {
                    "id": r.id,
                    "vector": r.vector,
                    "payload": r.payload.model_dump(by_alias=True),
                }
                for r in batch
            ]
            self._run("upsert", cypher, rows=rows)
            logger.debug("Upserted %d records into '%s'", len(batch), name)

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
        """Top-k hits with cosine score >= min_score, best first.

        `document_id` / `group_id` restrict hits to one lesson / module.
        """
        validate_collection_name(name)
        if top_k is None:
            top_k = settings.top_k
        if min_score is None:
            min_score = settings.min_score
        if top_k <= 0:
            return []

        config = self._index_config(name, deadline)
        if config is None:
            raise CollectionNotFound(f"Collection '{name}' does not exist; run indexing first")
        if len(query_vector) != config[0]:
            raise DimensionMismatch(
                f"Query vector has {len(query_vector)} dimensions, "
                f"collection '{name}' expects {config[0]}"
            )

        conditions = ["score >= $raw_min_score"]
        if document_id is not None:
            conditions.append("node.lessonId = $document_id")
        if group_id is not None:
            conditions.append("node.moduleId = $group_id")
        filtered = len(conditions) > 1
        where = " AND ".join(conditions)

        fields = ", ".join(f".{f}" for f in _PAYLOAD_FIELDS)
        records = self._run(
            "search",
            f"""
            CALL db.index.vector.queryNodes($index, $candidates, $embedding)
            YIELD node, score
            WHERE {where}
            RETURN node.id AS id, node {{{fields}}} AS payload, score
            ORDER BY score DESC
            LIMIT $top_k
            """,
            deadline,
            index=name,
            candidates=top_k * FILTER_OVERSAMPLE if filtered else top_k,
            top_k=top_k,
            embedding=query_vector,
            raw_min_score=(min_score + 1.0) / 2.0,
            document_id=document_id,
            group_id=group_id,
        )

        hits = []
        for record in records:
            score = 2.0 * record["score"] - 1.0
            if score < min_score:
                continue
            try:
                payload = ChunkPayload.model_validate(dict(record["payload"]))
            except ValidationError as e:
                logger.warning("Skipping record %s with malformed payload: %s", record["id"], e)
                continue
            hits.append(SearchHit(id=record["id"], score=score, payload=payload))
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:top_k]

    def count(self, name: str) -> int:
        """Return number of records in the collection."""
        validate_collection_name(name)
        records = self._run(
            "count", f"MATCH (c:`{node_label(name)}`) RETURN count(c) AS total"
        )
        return records[0]["total"] if records else 0
