"""Shared fakes: a deterministic OpenAI stand-in and wired-up pipelines."""

import hashlib
import math
import re
from pathlib import Path
from types import SimpleNamespace

import pytest

from core.fallback import FallbackPolicy
from core.models import Document
from generation.generator import AnswerGenerator
from ingestion.chunker import Chunker
from ingestion.embedder import EmbeddingProvider
from ingestion.loader import load_corpus
from ingestion.pipeline import IndexingPipeline
from retrieval.retriever import RetrievalPipeline
from storage.memory_store import InMemoryVectorStore

DIMENSIONS = 1024
COLLECTION = "course_content"
CORPUS_PATH = Path(__file__).resolve().parent.parent / "data" / "course_content.json"
_STOPWORDS = {"the", "and", "are", "what", "for", "with", "like", "used", "in", "of", "to", "a", "is"}


def bag_of_words_vector(text: str, dimensions: int = DIMENSIONS) -> list[float]:
    """Hashed, crudely stemmed bag-of-words vector, L2-normalised."""
    vector = [0.0] * dimensions
    for token in re.findall(r"[a-z]+", text.lower()):
        if token in _STOPWORDS or token.startswith("search"):
            continue
        if len(token) > 3 and token.endswith("s"):
            token = token[:-1]
        vector[int(hashlib.md5(token.encode()).hexdigest(), 16) % dimensions] += 1.0
    norm = math.sqrt(sum(v * v for v in vector)) or 1.0
    return [v / norm for v in vector]


class FakeEmbeddings:
    def __init__(self):
        self.calls: list[list[str]] = []

    def create(self, model, input, dimensions):
        self.calls.append(list(input))
        return SimpleNamespace(
            data=[
                SimpleNamespace(index=i, embedding=bag_of_words_vector(text, dimensions))
                for i, text in enumerate(input)
            ]
        )


class FakeCompletions:
    def __init__(self):
        self.calls: list[dict] = []
        self.error: Exception | None = None

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="Sensors give robots perception."))]
        )


class FakeOpenAI:
    def __init__(self):
        self.embeddings = FakeEmbeddings()
        self.chat = SimpleNamespace(completions=FakeCompletions())
        self.timeouts: list[float] = []
        self.closed = False

    def with_options(self, timeout=None, **kwargs):
        self.timeouts.append(timeout)
        return self

    def close(self):
        self.closed = True


def no_wait_policy(timeout: float = 5.0) -> FallbackPolicy:
    return FallbackPolicy(timeout=timeout, backoff=0.01, sleep=lambda s: None)


@pytest.fixture
def fake_openai():
    return FakeOpenAI()


@pytest.fixture
def memory_store():
    return InMemoryVectorStore()


@pytest.fixture
def embedder(fake_openai):
    return EmbeddingProvider(
        fake_openai, model="test-embed", dimensions=DIMENSIONS, policy=no_wait_policy()
    )


@pytest.fixture
def generator(fake_openai):
    return AnswerGenerator(fake_openai, model="test-llm", policy=no_wait_policy(30.0))


@pytest.fixture
def indexing(embedder, memory_store):
    return IndexingPipeline(
        embedder, memory_store, chunker=Chunker(max_chars=1000), collection_name=COLLECTION
    )


@pytest.fixture
def retrieval(embedder, memory_store, generator):
    return RetrievalPipeline(
        embedder, memory_store, generator, collection_name=COLLECTION, top_k=5, min_score=0.2
    )


@pytest.fixture
def course_documents() -> list[Document]:
    return load_corpus(CORPUS_PATH)
