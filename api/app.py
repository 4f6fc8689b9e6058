"""
Course Assistant API

FastAPI surface for the course chatbot: an operator-triggered indexing
endpoint and a chat endpoint that always answers, degrading instead of
returning 5xx when upstream services fail.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.schemas import ChatRequest, ChatResponse, HealthResponse, IndexResponse
from core.config import settings
from core.errors import FALLBACK_MESSAGE, InvalidInput, RAGError
from core.fallback import Deadline
from core.models import AnswerStatus
from core.services import Services
from ingestion.loader import load_corpus

logger = logging.getLogger(__name__)


def create_app(services_factory: Callable[[], Services] = Services.init) -> FastAPI:
    """Build the app; `services_factory` runs once at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.services = services_factory()
        logger.info("Course Assistant API ready")
        yield
        app.state.services.close()

    app = FastAPI(
        title="Course Assistant API",
        description="Retrieval-augmented Q&A over the robotics course lessons.",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    def get_services(request: Request) -> Services:
        return request.app.state.services

    @app.post("/api/index-content", response_model=IndexResponse, tags=["indexing"])
    def index_content(request: Request):
        """Rebuild the collection from the configured corpus."""
        services = get_services(request)
        try:
            documents = load_corpus(settings.corpus_path)
            report = services.indexing.reindex(documents)
        except (FileNotFoundError, RAGError) as e:
            logger.error("Indexing error: %s", e)
            return JSONResponse(status_code=500, content={"error": str(e)})
        return IndexResponse.from_report(report)

    @app.post("/api/chat", response_model=ChatResponse, tags=["chat"])
    def chat(body: ChatRequest, request: Request):
        """Answer a student question with lesson citations."""
        services = get_services(request)
        try:
            result = services.retrieval.answer(
                body.question,
                body.history,
                Deadline(settings.request_timeout),
                document_id=body.lesson_id,
                group_id=body.module_id,
            )
        except InvalidInput as e:
            return JSONResponse(status_code=400, content={"error": str(e)})
        except Exception as e:
            logger.exception("Chat request failed: %s", e)
            return ChatResponse(
                message=FALLBACK_MESSAGE,
                degraded=True,
                status=AnswerStatus.SERVICE_DEGRADED.value,
                session_id=body.session_id,
            )
        return ChatResponse.from_result(result, body.session_id)

    @app.get("/api/health", response_model=HealthResponse, tags=["health"])
    def health(request: Request) -> HealthResponse:
        services = get_services(request)
        records = None
        try:
            if services.vector_store.collection_exists(settings.collection_name):
                records = services.vector_store.count(settings.collection_name)
            else:
                logger.warning("Collection '%s' not indexed yet", settings.collection_name)
        except RAGError as e:
            logger.warning("Health check could not count records: %s", e)
        return HealthResponse(
            status="healthy" if records is not None else "degraded",
            backend=settings.vector_backend,
            collection=settings.collection_name,
            records=records,
        )

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.app:create_app", factory=True, host="0.0.0.0", port=8000, log_level="info")
