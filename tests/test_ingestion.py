"""Unit tests for chunking, corpus loading, embedding and indexing."""

import json
from unittest.mock import MagicMock, Mock

import httpx
import openai
import pytest

from conftest import COLLECTION, DIMENSIONS, no_wait_policy
from core.errors import (
    DimensionMismatch,
    IndexingFailed,
    InvalidInput,
    ProviderUnavailable,
    RateLimited,
    StoreUnavailable,
)
from core.models import Document, DocumentEmbeddingRequest, QueryEmbeddingRequest
from ingestion.chunker import Chunker, chunk_text
from ingestion.embedder import EmbeddingProvider, translate_openai_error
from ingestion.loader import load_corpus, load_lesson_file
from ingestion.pipeline import IndexingPipeline


def _squash(text: str) -> str:
    return "".join(text.split())


def _doc(text: str, doc_id: str = "doc-1") -> Document:
    return Document(id=doc_id, title="Title", group_id="module-1", text=text)


class TestChunker:
    def test_empty_document_yields_nothing(self):
        assert list(Chunker(max_chars=100).chunk(_doc(""))) == []
        assert list(Chunker(max_chars=100).chunk(_doc("   \n\n  "))) == []

    def test_short_document_single_chunk(self):
        chunks = list(Chunker(max_chars=100).chunk(_doc("One short paragraph.")))
        assert len(chunks) == 1
        assert chunks[0].text == "One short paragraph."
        assert chunks[0].chunk_id == "doc-1-chunk-0"
        assert chunks[0].truncated is False

    def test_paragraphs_packed_within_budget(self):
        paragraphs = [f"Paragraph number {i} talks about motors." for i in range(10)]
        text = "\n\n".join(paragraphs)
        chunks = list(Chunker(max_chars=120).chunk(_doc(text)))

        assert len(chunks) > 1
        assert all(len(c.text) <= 120 for c in chunks)
        assert _squash("".join(c.text for c in chunks)) == _squash(text)
        assert [c.ordinal for c in chunks] == list(range(len(chunks)))

    def test_long_paragraph_split_on_sentences(self):
        text = " ".join(f"Sentence {i} explains servo control." for i in range(20))
        chunks = list(Chunker(max_chars=100).chunk(_doc(text)))

        assert all(len(c.text) <= 100 for c in chunks)
        assert all(c.text.endswith(".") for c in chunks)
        assert _squash("".join(c.text for c in chunks)) == _squash(text)

    def test_long_sentence_split_between_words(self):
        text = " ".join(["kinematics"] * 50)
        chunks = list(Chunker(max_chars=60).chunk(_doc(text)))

        assert all(len(c.text) <= 60 for c in chunks)
        assert all(not c.truncated for c in chunks)
        for c in chunks:
            assert set(c.text.split()) == {"kinematics"}

    def test_unbreakable_token_hard_split_and_flagged(self, caplog):
        text = "x" * 250
        chunks = list(Chunker(max_chars=100).chunk(_doc(text)))

        assert [len(c.text) for c in chunks] == [100, 100, 50]
        assert all(c.truncated for c in chunks)
        assert "".join(c.text for c in chunks) == text
        assert "hard-split" in caplog.text

    def test_chunking_is_restartable(self):
        chunker = Chunker(max_chars=50)
        doc = _doc("First sentence here. Second sentence here. Third sentence here.")
        assert list(chunker.chunk(doc)) == list(chunker.chunk(doc))

    def test_overlap_repeats_tail_within_budget(self):
        text = " ".join(f"Sentence {i} is about sensors." for i in range(12))
        chunks = list(Chunker(max_chars=100, overlap_ratio=0.2).chunk(_doc(text)))

        assert len(chunks) > 1
        assert all(len(c.text) <= 100 for c in chunks)
        for prev, nxt in zip(chunks, chunks[1:]):
            first_word = nxt.text.split()[0]
            assert first_word in prev.text

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            Chunker(max_chars=0)
        with pytest.raises(ValueError):
            Chunker(max_chars=100, overlap_ratio=0.6)

    def test_chunk_text_never_exceeds_budget(self):
        text = "Short.\n\n" + "A much longer sentence that goes on. " * 30 + "\n\nEnd."
        for size in (40, 80, 200):
            assert all(len(t) <= size for t, _ in chunk_text(text, size))


class TestLoader:
    def test_load_json_corpus(self, tmp_path):
        path = tmp_path / "corpus.json"
        path.write_text(
            json.dumps(
                [{"id": "l1", "title": "Motors", "moduleId": "module-3", "content": "DC motors."}]
            )
        )
        docs = load_corpus(path)

        assert docs == [Document(id="l1", title="Motors", group_id="module-3", text="DC motors.")]

    def test_load_course_corpus(self, course_documents):
        assert len(course_documents) == 14
        titles = {d.title for d in course_documents}
        assert "Sensor Types and Selection" in titles

    def test_load_directory(self, tmp_path):
        module = tmp_path / "module-2"
        module.mkdir()
        (module / "sensors.md").write_text("# Sensor Types\n\nLiDAR and IMU.")
        (tmp_path / "intro.txt").write_text("Welcome to the course.")
        (tmp_path / "notes.pdf").write_text("ignored")

        docs = {d.id: d for d in load_corpus(tmp_path)}

        assert set(docs) == {"sensors", "intro"}
        assert docs["sensors"].title == "Sensor Types"
        assert docs["sensors"].group_id == "module-2"
        assert docs["intro"].title == "Intro"
        assert docs["intro"].group_id == ""

    def test_missing_path(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_corpus(tmp_path / "nope.json")

    def test_malformed_entries(self, tmp_path):
        path = tmp_path / "corpus.json"
        path.write_text(json.dumps([{"title": "no id"}]))
        with pytest.raises(InvalidInput):
            load_corpus(path)

        path.write_text("{not json")
        with pytest.raises(InvalidInput):
            load_corpus(path)

    def test_load_lesson_file_without_heading(self, tmp_path):
        path = tmp_path / "motion-planning.md"
        path.write_text("Paths and trajectories.")
        assert load_lesson_file(path).title == "Motion Planning"


def _embedding_response(vectors):
    response = Mock()
    response.data = [Mock(embedding=v, index=i) for i, v in enumerate(vectors)]
    return response


@pytest.fixture
def mock_client():
    client = MagicMock()
    api = client.with_options.return_value.embeddings

    def create(model, input, dimensions):
        return _embedding_response([[0.1, 0.2, 0.3] for _ in input])

    api.create.side_effect = create
    return client


def _status_error(cls, status, headers=None):
    request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
    response = httpx.Response(status, headers=headers or {}, request=request)
    return cls("error", response=response, body=None)


class TestEmbeddingProvider:
    def _provider(self, client, **kwargs):
        return EmbeddingProvider(client, model="m", dimensions=3, policy=no_wait_policy(), **kwargs)

    def test_document_and_query_requests_differ(self, mock_client):
        provider = self._provider(mock_client)
        provider.embed(DocumentEmbeddingRequest(texts=["servo"]))
        provider.embed(QueryEmbeddingRequest(text="servo"))

        calls = mock_client.with_options.return_value.embeddings.create.call_args_list
        doc_input = calls[0].kwargs["input"][0]
        query_input = calls[1].kwargs["input"][0]
        assert doc_input.startswith("search_document: ")
        assert query_input.startswith("search_query: ")

    def test_one_vector_per_input_in_order(self, mock_client):
        mock_client.with_options.return_value.embeddings.create.side_effect = None
        mock_client.with_options.return_value.embeddings.create.return_value = Mock(
            data=[Mock(embedding=[0.0, 0.0, 2.0], index=1), Mock(embedding=[1.0, 0.0, 0.0], index=0)]
        )
        vectors = self._provider(mock_client).embed_documents(["a", "b"])
        assert vectors == [[1.0, 0.0, 0.0], [0.0, 0.0, 2.0]]

    def test_batches_respect_batch_size(self, mock_client):
        provider = self._provider(mock_client, batch_size=2)
        vectors = provider.embed_documents(["a", "b", "c", "d", "e"])

        assert len(vectors) == 5
        assert mock_client.with_options.return_value.embeddings.create.call_count == 3

    def test_empty_list_is_invalid_without_network(self, mock_client):
        with pytest.raises(InvalidInput):
            self._provider(mock_client).embed_documents([])
        with pytest.raises(InvalidInput):
            self._provider(mock_client).embed_documents(["ok", "  "])
        mock_client.with_options.return_value.embeddings.create.assert_not_called()

    def test_long_input_truncated_at_end(self, mock_client):
        provider = self._provider(mock_client, max_input_chars=30)
        provider.embed_documents(["y" * 100])

        sent = mock_client.with_options.return_value.embeddings.create.call_args.kwargs["input"][0]
        assert len(sent) == 30
        assert sent.startswith("search_document: ")

    def test_dimension_mismatch_is_fatal(self, mock_client):
        mock_client.with_options.return_value.embeddings.create.side_effect = None
        mock_client.with_options.return_value.embeddings.create.return_value = _embedding_response(
            [[0.1, 0.2]]
        )
        with pytest.raises(DimensionMismatch):
            self._provider(mock_client).embed_query("question")
        assert mock_client.with_options.return_value.embeddings.create.call_count == 1

    def test_timeout_passed_to_client(self, mock_client):
        self._provider(mock_client).embed_query("question")
        mock_client.with_options.assert_called_with(timeout=5.0)

    def test_transient_error_retried_once(self, mock_client):
        request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
        api = mock_client.with_options.return_value.embeddings
        api.create.side_effect = [
            openai.APITimeoutError(request=request),
            _embedding_response([[0.1, 0.2, 0.3]]),
        ]
        assert self._provider(mock_client).embed_query("q") == [0.1, 0.2, 0.3]
        assert api.create.call_count == 2

    def test_persistent_outage_surfaces_provider_unavailable(self, mock_client):
        request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
        api = mock_client.with_options.return_value.embeddings
        api.create.side_effect = openai.APIConnectionError(request=request)
        with pytest.raises(ProviderUnavailable):
            self._provider(mock_client).embed_query("q")
        assert api.create.call_count == 2


class TestTranslateOpenAIError:
    def test_rate_limit_carries_retry_after(self):
        error = translate_openai_error(
            _status_error(openai.RateLimitError, 429, {"retry-after": "3"})
        )
        assert isinstance(error, RateLimited)
        assert error.retry_after == 3.0

    def test_bad_request_is_invalid_input(self):
        error = translate_openai_error(_status_error(openai.BadRequestError, 400))
        assert isinstance(error, InvalidInput)
        assert not error.retryable

    def test_server_error_is_unavailable(self):
        error = translate_openai_error(_status_error(openai.InternalServerError, 503))
        assert isinstance(error, ProviderUnavailable)


class TestIndexingPipeline:
    def test_reindex_course_corpus(self, indexing, memory_store, course_documents):
        """14 lessons at 1024 dims -> one record per lesson, payload carries lesson id."""
        report = indexing.reindex(course_documents)

        assert report.documents_processed == 14
        assert report.chunks_indexed == 14
        assert memory_store.count(COLLECTION) == 14

        records = memory_store._collections[COLLECTION].records.values()
        assert {r.payload.document_id for r in records} == {d.id for d in course_documents}
        assert all(len(r.vector) == DIMENSIONS for r in records)
        sensor = next(r for r in records if r.payload.document_id == "lesson-2-1")
        assert sensor.payload.title == "Sensor Types and Selection"
        assert sensor.payload.group_id == "module-2"
        assert sensor.payload.indexed_at
        assert sensor.payload.total_chunks == 1

    def test_documents_embedded_in_document_mode(self, indexing, fake_openai, course_documents):
        indexing.reindex(course_documents)
        sent = [text for call in fake_openai.embeddings.calls for text in call]
        assert len(sent) == 14
        assert all(text.startswith("search_document: ") for text in sent)

    def test_reindex_is_idempotent(self, indexing, memory_store, course_documents):
        indexing.reindex(course_documents)
        first = {
            rid: r.vector for rid, r in memory_store._collections[COLLECTION].records.items()
        }
        indexing.reindex(course_documents)
        second = {
            rid: r.vector for rid, r in memory_store._collections[COLLECTION].records.items()
        }

        assert first.keys() == second.keys()
        for rid in first:
            assert second[rid] == pytest.approx(first[rid])

    def test_reindex_replaces_stale_content(self, indexing, memory_store, course_documents):
        indexing.reindex(course_documents)
        indexing.reindex(course_documents[:3])
        assert memory_store.count(COLLECTION) == 3

    def test_large_document_is_chunked(self, indexing, memory_store):
        text = "\n\n".join(f"Paragraph {i} covers PID tuning in depth. " * 8 for i in range(10))
        report = indexing.reindex([Document(id="big", title="PID", group_id="m", text=text)])

        assert report.chunks_indexed > 1
        ordinals = sorted(
            r.payload.chunk_ordinal for r in memory_store._collections[COLLECTION].records.values()
        )
        assert ordinals == list(range(report.chunks_indexed))
        totals = {
            r.payload.total_chunks for r in memory_store._collections[COLLECTION].records.values()
        }
        assert totals == {report.chunks_indexed}

    def test_empty_corpus_creates_empty_collection(self, indexing, memory_store):
        report = indexing.reindex([])
        assert report.chunks_indexed == 0
        assert memory_store.count(COLLECTION) == 0

    def test_duplicate_ids_rejected(self, indexing):
        doc = Document(id="dup", title="T", text="x")
        with pytest.raises(InvalidInput):
            indexing.reindex([doc, doc])

    def test_failure_reported_as_failed_reindex(self, embedder, course_documents):
        store = MagicMock()
        store.upsert.side_effect = StoreUnavailable("down")
        pipeline = IndexingPipeline(embedder, store, collection_name=COLLECTION, concurrency=2)

        with pytest.raises(IndexingFailed) as exc_info:
            pipeline.reindex(course_documents)

        assert exc_info.value.report.collection_name == COLLECTION
        store.drop_collection.assert_called_once_with(COLLECTION)
        store.ensure_collection.assert_called_once_with(COLLECTION, DIMENSIONS, "cosine")
