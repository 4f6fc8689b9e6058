"""Query pipeline: embed question -> search -> assemble context -> generate."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from core.config import settings
from core.errors import FALLBACK_MESSAGE, CollectionNotFound, InvalidInput, RAGError
from core.fallback import Deadline
from core.models import AnswerResult, AnswerStatus, ChatTurn, QueryEmbeddingRequest, SearchHit
from retrieval.context import assemble_context, derive_citations

if TYPE_CHECKING:
    from generation.generator import AnswerGenerator
    from ingestion.embedder import EmbeddingProvider
    from storage.vector_store import VectorStore

logger = logging.getLogger(__name__)


def normalize_history(history: list[Any] | None, max_turns: int) -> list[ChatTurn]:
    """Validate prior turns and keep only the most recent `max_turns`."""
    if not history:
        return []
    try:
        turns = [ChatTurn.model_validate(t) for t in history]
    except ValidationError as e:
        raise InvalidInput(f"Malformed chat history: {e}") from e
    return turns[-max_turns:] if max_turns > 0 else []


class RetrievalPipeline:
    """Answers a question from the indexed course content.

    Retrieval is optional and generation is mandatory: if embedding or search
    fails the question is still answered without context, and if generation
    fails the caller gets the fallback message. Holds no per-request state,
    so one instance serves concurrent requests.
    """

    def __init__(
        self,
        embedder: EmbeddingProvider,
        vector_store: VectorStore,
        generator: AnswerGenerator,
        collection_name: str | None = None,
        top_k: int | None = None,
        min_score: float | None = None,
        history_turns: int | None = None,
        context_char_budget: int | None = None,
    ):
        self.embedder = embedder
        self.vector_store = vector_store
        self.generator = generator
        self.collection_name = collection_name or settings.collection_name
        self.top_k = top_k if top_k is not None else settings.top_k
        self.min_score = min_score if min_score is not None else settings.min_score
        self.history_turns = (
            history_turns if history_turns is not None else settings.history_turns
        )
        self.context_char_budget = context_char_budget or settings.context_char_budget

    def retrieve(
        self,
        question: str,
        deadline: Deadline | None = None,
        document_id: str | None = None,
        group_id: str | None = None,
    ) -> list[SearchHit]:
        """Embed the question in query mode and search the collection."""
        vector = self.embedder.embed(QueryEmbeddingRequest(text=question), deadline)[0]
        hits = self.vector_store.search(
            self.collection_name,
            vector,
            top_k=self.top_k,
            min_score=self.min_score,
            deadline=deadline,
            document_id=document_id,
            group_id=group_id,
        )
        logger.info("Retrieved %d hits above %.2f", len(hits), self.min_score)
        return hits

    def answer(
        self,
        question: str,
        history: list[Any] | None = None,
        deadline: Deadline | None = None,
        document_id: str | None = None,
        group_id: str | None = None,
    ) -> AnswerResult:
        """Answer `question`, citing the lessons whose text was used.

        `document_id` / `group_id` narrow retrieval to one lesson / module.

        Raises:
            InvalidInput: empty question or malformed history (no network call made)
        """
        if not question or not question.strip():
            raise InvalidInput("Question must not be empty")
        question = question.strip()
        turns = normalize_history(history, self.history_turns)
        if len(question) == 1:
            logger.debug("Single-character question accepted: %r", question)

        status = AnswerStatus.OK
        try:
            hits = self.retrieve(question, deadline, document_id, group_id)
        except CollectionNotFound as e:
            logger.error("Answering without context, collection missing: %s", e)
            hits, status = [], AnswerStatus.RETRIEVAL_DEGRADED
        except RAGError as e:
            logger.warning("Retrieval failed, answering without context: %s", e)
            hits, status = [], AnswerStatus.RETRIEVAL_DEGRADED
        except Exception:
            logger.exception("Unexpected retrieval error, answering without context")
            hits, status = [], AnswerStatus.RETRIEVAL_DEGRADED

        context, included = assemble_context(hits, self.context_char_budget)

        try:
            text = self.generator.generate(question, context, turns, deadline)
        except RAGError as e:
            logger.error("Generation failed, returning fallback message: %s", e)
            return AnswerResult(
                text=FALLBACK_MESSAGE, citations=[], status=AnswerStatus.SERVICE_DEGRADED
            )
        except Exception:
            logger.exception("Unexpected generation error, returning fallback message")
            return AnswerResult(
                text=FALLBACK_MESSAGE, citations=[], status=AnswerStatus.SERVICE_DEGRADED
            )

        return AnswerResult(text=text, citations=derive_citations(included), status=status)
