"""Request/response schemas for the HTTP surface."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator

from core.models import AnswerResult, ChatTurn, IndexingReport


class ChatRequest(BaseModel):
    """Chat request. `message` is accepted as an alias of `question`.

    `lessonId` / `moduleId` optionally narrow retrieval to one lesson or
    module; `sessionId` identifies the caller and is echoed back.
    """

    model_config = ConfigDict(populate_by_name=True)

    question: str = ""
    history: list[ChatTurn] = Field(default_factory=list)
    session_id: str | None = Field(default=None, alias="sessionId")
    lesson_id: str | None = Field(default=None, alias="lessonId")
    module_id: str | None = Field(default=None, alias="moduleId")

    @model_validator(mode="before")
    @classmethod
    def _accept_message_alias(cls, data):
        if isinstance(data, dict) and not data.get("question") and data.get("message"):
            data = {**data, "question": data["message"]}
        return data


class Source(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str
    lesson_id: str = Field(alias="lessonId")


class ChatResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    sources: list[Source] = Field(default_factory=list)
    degraded: bool = False
    status: str = "ok"
    session_id: str | None = Field(default=None, alias="sessionId")

    @classmethod
    def from_result(cls, result: AnswerResult, session_id: str | None = None) -> ChatResponse:
        return cls(
            message=result.text,
            sources=[Source(title=c.title, lesson_id=c.document_id) for c in result.citations],
            degraded=result.degraded,
            status=result.status.value,
            session_id=session_id,
        )


class IndexResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str
    collection_name: str = Field(alias="collectionName")
    documents_indexed: int = Field(alias="documentsIndexed")
    chunks_indexed: int = Field(alias="chunksIndexed")
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def from_report(cls, report: IndexingReport) -> IndexResponse:
        return cls(
            message=f"Successfully indexed {report.documents_processed} documents",
            collection_name=report.collection_name,
            documents_indexed=report.documents_processed,
            chunks_indexed=report.chunks_indexed,
            warnings=report.warnings,
        )


class HealthResponse(BaseModel):
    status: str
    backend: str
    collection: str
    records: int | None = None
