"""Embedding provider on the OpenAI embeddings API."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import openai

from core.config import settings
from core.errors import (
    ConfigurationError,
    DimensionMismatch,
    InvalidInput,
    ProviderUnavailable,
    RAGError,
    RateLimited,
)
from core.fallback import Deadline, FallbackPolicy
from core.models import DocumentEmbeddingRequest, EmbeddingRequest, QueryEmbeddingRequest

if TYPE_CHECKING:
    from openai import OpenAI

logger = logging.getLogger(__name__)


def translate_openai_error(exc: openai.OpenAIError) -> RAGError:
    """Map an OpenAI SDK exception onto the pipeline error taxonomy."""
    if isinstance(exc, openai.RateLimitError):
        return RateLimited(f"OpenAI rate limit: {exc}", _retry_after(exc))
    if isinstance(exc, openai.APIConnectionError):  # includes APITimeoutError
        return ProviderUnavailable(f"OpenAI unreachable: {exc}")
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return ConfigurationError(f"OpenAI credentials rejected: {exc}")
    if isinstance(exc, openai.APIStatusError):
        if exc.status_code >= 500:
            return ProviderUnavailable(f"OpenAI error {exc.status_code}: {exc}")
        return InvalidInput(f"OpenAI rejected request ({exc.status_code}): {exc}")
    return ProviderUnavailable(f"OpenAI error: {exc}")


def _retry_after(exc: openai.APIStatusError) -> float | None:
    response = getattr(exc, "response", None)
    if response is None:
        return None
    value = response.headers.get("retry-after")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def create_openai_client() -> OpenAI:
    """OpenAI client with SDK retries disabled; FallbackPolicy owns retrying."""
    from openai import OpenAI

    kwargs: dict = {"api_key": settings.openai_api_key, "max_retries": 0}
    if settings.openai_base_url:
        kwargs["base_url"] = settings.openai_base_url
    return OpenAI(**kwargs)


class EmbeddingProvider:
    """Turns texts into fixed-length vectors.

    Document and query requests are distinct types: each carries its own input
    prefix, so a question can never be embedded the way a lesson chunk is.
    """

    def __init__(
        self,
        openai_client: OpenAI | None = None,
        model: str | None = None,
        dimensions: int | None = None,
        batch_size: int | None = None,
        max_input_chars: int | None = None,
        policy: FallbackPolicy | None = None,
    ):
        self.openai_client = openai_client or create_openai_client()
        self.model = model or settings.embedding_model
        self.dimensions = dimensions or settings.embedding_dimensions
        self.batch_size = batch_size or settings.embedding_batch_size
        self.max_input_chars = max_input_chars or settings.embedding_max_input_chars
        self.policy = policy or FallbackPolicy(
            timeout=settings.embedding_timeout, backoff=settings.retry_backoff
        )

    def embed(
        self, request: EmbeddingRequest, deadline: Deadline | None = None
    ) -> list[list[float]]:
        """Embed every text of the request, one vector per input, same order."""
        texts = request.texts
        if not texts:
            raise InvalidInput("Nothing to embed: empty text list")
        if any(not t or not t.strip() for t in texts):
            raise InvalidInput("Cannot embed empty text")

        if isinstance(request, QueryEmbeddingRequest):
            prefix = settings.embedding_query_prefix
        else:
            prefix = settings.embedding_document_prefix
        inputs = [self._prepare(prefix + t) for t in texts]

        vectors: list[list[float]] = []
        for start in range(0, len(inputs), self.batch_size):
            batch = inputs[start : start + self.batch_size]
            vectors.extend(
                self.policy.call(
                    f"embed[{request.kind}]",
                    lambda timeout, batch=batch: self._create(batch, timeout),
                    deadline,
                )
            )
            logger.debug("Embedded batch of %d %s texts", len(batch), request.kind)

        return vectors

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return self.embed(DocumentEmbeddingRequest(texts=texts))

    def embed_query(self, text: str, deadline: Deadline | None = None) -> list[float]:
        return self.embed(QueryEmbeddingRequest(text=text), deadline)[0]

    def _prepare(self, text: str) -> str:
        if len(text) > self.max_input_chars:
            logger.debug("Truncating embedding input from %d chars", len(text))
            return text[: self.max_input_chars]
        return text

    def _create(self, inputs: list[str], timeout: float) -> list[list[float]]:
        try:
            response = self.openai_client.with_options(timeout=timeout).embeddings.create(
                model=self.model,
                input=inputs,
                dimensions=self.dimensions,
            )
        except openai.OpenAIError as e:
            raise translate_openai_error(e) from e

        data = sorted(response.data, key=lambda d: d.index)
        if len(data) != len(inputs):
            raise ProviderUnavailable(
                f"Expected {len(inputs)} embeddings, provider returned {len(data)}"
            )
        vectors = [list(d.embedding) for d in data]
        for vector in vectors:
            if len(vector) != self.dimensions:
                raise DimensionMismatch(
                    f"Embedding has {len(vector)} dimensions, expected {self.dimensions}"
                )
        return vectors
