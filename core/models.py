"""Data models for the course assistant pipelines."""

from __future__ import annotations

import hashlib
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class Document(BaseModel):
    """A lesson from the course corpus. Immutable once loaded."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    group_id: str = ""
    text: str


class Chunk(BaseModel):
    """A bounded excerpt of a document."""

    document_id: str
    ordinal: int
    text: str
    truncated: bool = False

    @property
    def chunk_id(self) -> str:
        return make_chunk_id(self.document_id, self.ordinal)


def make_chunk_id(document_id: str, ordinal: int) -> str:
    return f"{document_id}-chunk-{ordinal}"


def make_record_id(chunk_id: str) -> int:
    """Stable numeric record id (63-bit) derived from the chunk id."""
    digest = hashlib.md5(chunk_id.encode()).digest()
    return int.from_bytes(digest[:8], "big") >> 1


class DocumentEmbeddingRequest(BaseModel):
    """Texts embedded at indexing time."""

    kind: Literal["document"] = "document"
    texts: list[str]


class QueryEmbeddingRequest(BaseModel):
    """A user question embedded at search time."""

    kind: Literal["query"] = "query"
    text: str

    @property
    def texts(self) -> list[str]:
        return [self.text]


EmbeddingRequest = DocumentEmbeddingRequest | QueryEmbeddingRequest


class ChunkPayload(BaseModel):
    """Payload stored with every vector. Aliases are the wire field names."""

    model_config = ConfigDict(populate_by_name=True)

    document_id: str = Field(alias="lessonId")
    group_id: str = Field(default="", alias="moduleId")
    title: str
    text: str = Field(alias="content")
    chunk_ordinal: int = Field(default=0, alias="chunkIndex")
    total_chunks: int = Field(default=1, alias="totalChunks")
    chunk_id: str = Field(default="", alias="chunkId")
    indexed_at: str = Field(default="", alias="createdAt")


class IndexedRecord(BaseModel):
    """Durable unit in the vector store."""

    id: int
    vector: list[float]
    payload: ChunkPayload


class SearchHit(BaseModel):
    """A single search result; score is cosine similarity in [-1, 1]."""

    id: int
    score: float
    payload: ChunkPayload


class Citation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str
    document_id: str = Field(alias="lessonId")


class ChatTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class AnswerStatus(str, Enum):
    OK = "ok"
    RETRIEVAL_DEGRADED = "retrieval_degraded"
    SERVICE_DEGRADED = "service_degraded"


class AnswerResult(BaseModel):
    """Final answer with the citations of the context it was grounded on."""

    text: str
    citations: list[Citation] = Field(default_factory=list)
    status: AnswerStatus = AnswerStatus.OK

    @property
    def degraded(self) -> bool:
        return self.status is not AnswerStatus.OK


class IndexingReport(BaseModel):
    collection_name: str
    documents_processed: int = 0
    chunks_indexed: int = 0
    warnings: list[str] = Field(default_factory=list)
